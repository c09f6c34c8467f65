"""
Pytest configuration and shared fixtures

Stand-ins for aiomysql connections so the collectors and the exporter can be
exercised without a running searchd.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

import exporter
from mycnf import ConnectionParams

STATUS_ROWS = [
    ("uptime", "12345"),
    ("connections", "77"),
    ("maxed_out", "0"),
    ("command_search", "10"),
    ("command_excerpt", "3"),
    ("agent_connect", "0"),
    ("queries", "10"),
    ("query_wall", "0.125"),
    ("avg_query_wall", "0.012"),
    ("version", "2.2.11-id64-release (95ae9a6)"),
]


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self.conn = conn
        self._rows: list[Any] = []

    async def __aenter__(self) -> "FakeCursor":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def execute(self, sql: str) -> None:
        self.conn.queries.append(sql)
        if self.conn.delay:
            await asyncio.sleep(self.conn.delay)
        outcome = self.conn.results.get(sql, [])
        if isinstance(outcome, BaseException):
            raise outcome
        self._rows = list(outcome)

    async def fetchall(self) -> list[Any]:
        return self._rows


class FakeConnection:
    """Answers queries from a ``sql -> rows | exception`` table."""

    def __init__(self, results: dict[str, Any] | None = None, delay: float = 0.0) -> None:
        self.results = results or {}
        self.delay = delay
        self.queries: list[str] = []
        self.closed = False

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def params() -> ConnectionParams:
    return ConnectionParams(user="sphinx", password="secret", host="127.0.0.1", port=9306)


@pytest.fixture
def status_conn() -> FakeConnection:
    """A healthy server answering the liveness probe and SHOW STATUS"""
    return FakeConnection({"SELECT 1": [(1,)], "SHOW STATUS": STATUS_ROWS})


@pytest.fixture
def connect(monkeypatch):
    """Route exporter connections to a FakeConnection (or an exception) of the test's choosing"""
    state: dict[str, Any] = {"conn": None, "calls": 0}

    async def fake_open(params, timeout):
        state["calls"] += 1
        target = state["conn"]
        if isinstance(target, BaseException):
            raise target
        return target

    monkeypatch.setattr(exporter, "open_connection", fake_open)

    def use(target: Any) -> dict[str, Any]:
        state["conn"] = target
        return state

    return use
