"""Collector for Sphinx searchd using the SphinxQL `SHOW STATUS` command."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from .base import (
    COUNTER,
    METRIC_KINDS,
    NAMESPACE,
    BaseCollector,
    CollectorResult,
    MetricDesc,
    Sample,
    parse_status,
)

log = logging.getLogger(__name__)

STATUS_QUERY = "SHOW STATUS"
SUBSYSTEM = "status"
COMMAND_PREFIX = "command_"

SKIP_UNPARSABLE = "unparsable"
SKIP_UNREGISTERED = "unregistered"

_COMMAND = MetricDesc(SUBSYSTEM, "command", "Commands", labels=("command",))

_COMMANDS = (
    "search",
    "excerpt",
    "update",
    "delete",
    "keywords",
    "persist",
    "status",
    "flushattrs",
)

_HELP = {
    "uptime": "Uptime of Sphinx Server.",
    "connections": "Connections to Sphinx Server.",
    "maxed_out": "Rejected Queries.",
    "agent_connect": "Agent Connect.",
    "agent_retry": "Agent Retry.",
    "queries": "Queries.",
    "dist_queries": "Distributed Queries.",
    "query_wall": "Wall Time spent on queries.",
    "query_cpu": "CPU Time spent on queries.",
    "dist_wall": "Wall Time Spent on distributed Queries.",
    "dist_local": "Time spent on dist local queries.",
    "dist_wait": "Total waiting time on agents.",
    "query_reads": "Query reads.",
    "query_readkb": "Query read KB.",
    "query_readtime": "Query read time.",
}


def build_status_descs(
    kinds: Mapping[str, str] | None = None,
    namespace: str = NAMESPACE,
) -> Mapping[str, MetricDesc]:
    """Build the read-only status key -> descriptor table.

    ``kinds`` overrides the metric kind per descriptor name, e.g.
    ``{"uptime": "gauge"}``. All ``command_*`` keys share the descriptor
    named ``command`` and are overridden together.
    """
    kinds = dict(kinds or {})
    known = set(_HELP) | {_COMMAND.name}
    unknown = sorted(set(kinds) - known)
    if unknown:
        raise ValueError(f"unknown status metric(s): {', '.join(unknown)}")
    for name, kind in kinds.items():
        if kind not in METRIC_KINDS:
            raise ValueError(f"invalid kind {kind!r} for {name}, expected one of {METRIC_KINDS}")

    def desc(base: MetricDesc) -> MetricDesc:
        return dataclasses.replace(
            base, namespace=namespace, kind=kinds.get(base.name, COUNTER)
        )

    command = desc(_COMMAND)
    table: dict[str, MetricDesc] = {}
    for key, help_text in _HELP.items():
        table[key] = desc(MetricDesc(SUBSYSTEM, key, help_text))
    for cmd in _COMMANDS:
        table[COMMAND_PREFIX + cmd] = command
    return MappingProxyType(table)


STATUS_DESCS = build_status_descs()


def resolve_key(
    descs: Mapping[str, MetricDesc], key: str
) -> tuple[MetricDesc, tuple[str, ...]] | None:
    """Look up a status key, returning its descriptor and label values.

    Only keys registered under their exact (lowercased) name resolve.
    For ``command_*`` keys the suffix becomes the ``command`` label.
    """
    key = key.lower()
    desc = descs.get(key)
    if desc is None:
        return None
    if key.startswith(COMMAND_PREFIX):
        return desc, (key[len(COMMAND_PREFIX):],)
    return desc, ()


class GlobalStatusCollector(BaseCollector):
    def __init__(
        self,
        descs: Mapping[str, MetricDesc] | None = None,
        timeout: float = 5.0,
    ) -> None:
        super().__init__("global_status", timeout)
        self.descs = STATUS_DESCS if descs is None else descs

    async def _fetch(self, conn: Any) -> list[Any]:
        async with conn.cursor() as cur:
            await cur.execute(STATUS_QUERY)
            return list(await cur.fetchall())

    async def scrape(self, conn: Any) -> CollectorResult:
        result = CollectorResult(collector=self.name)
        try:
            rows = await asyncio.wait_for(self._fetch(conn), self.timeout)
        except Exception as e:
            result.error = f"{STATUS_QUERY} failed: {e}"
            return result

        for row in rows:
            try:
                key, raw = row
            except (TypeError, ValueError):
                result.error = f"malformed {STATUS_QUERY} row: {row!r}"
                return result
            if isinstance(key, (bytes, bytearray)):
                key = key.decode("utf-8", "replace")
            key = str(key).lower()

            value, ok = parse_status(raw)
            if not ok:
                log.debug("Skipping unparsable status %s=%r", key, raw)
                result.skip(SKIP_UNPARSABLE)
                continue

            resolved = resolve_key(self.descs, key)
            if resolved is None:
                log.debug("Skipping unregistered status %s", key)
                result.skip(SKIP_UNREGISTERED)
                continue

            desc, label_values = resolved
            result.samples.append(Sample(desc, desc.kind, value, label_values))

        return result
