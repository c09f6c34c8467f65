"""Base collector ABC, shared data types and the status value parser."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

NAMESPACE = "sphinx"

COUNTER = "counter"
GAUGE = "gauge"
METRIC_KINDS = (COUNTER, GAUGE)

# Binlog-style values such as "binlog.000123": a dotted suffix of digits.
_LOG_SEQUENCE_RE = re.compile(r"^(?P<prefix>.+)\.(?P<seq>\d+)$")
# "42.5" or "1.2.3" are numbers (or broken ones), not sequences.
_DECIMAL_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")

_TEXT_VALUES = {
    "Yes": 1.0,
    "ON": 1.0,
    "No": 0.0,
    "OFF": 0.0,
    # Slave_IO_Running reports "Connecting" while not fully running.
    "Connecting": 0.0,
    # wsrep_cluster_status
    "Primary": 1.0,
    "Non-Primary": 0.0,
    "Disconnected": 0.0,
}


@dataclass(frozen=True)
class MetricDesc:
    subsystem: str
    name: str
    help: str
    labels: tuple[str, ...] = ()
    kind: str = COUNTER
    namespace: str = NAMESPACE

    @property
    def fqname(self) -> str:
        return "_".join(p for p in (self.namespace, self.subsystem, self.name) if p)


@dataclass(frozen=True)
class Sample:
    desc: MetricDesc
    kind: str
    value: float
    label_values: tuple[str, ...] = ()


@dataclass
class CollectorResult:
    collector: str
    samples: list[Sample] = field(default_factory=list)
    error: str | None = None
    skipped: dict[str, int] = field(default_factory=dict)

    def skip(self, reason: str) -> None:
        self.skipped[reason] = self.skipped.get(reason, 0) + 1


def parse_status(raw: Any) -> tuple[float, bool]:
    """Convert a raw status value into ``(value, ok)``.

    Never raises. A value that cannot be classified comes back as
    ``(0.0, False)`` and the caller is expected to skip the row.
    """
    if raw is None:
        return 0.0, False
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return 0.0, False
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw), True
    text = str(raw)

    if text in _TEXT_VALUES:
        return _TEXT_VALUES[text], True

    match = _LOG_SEQUENCE_RE.match(text)
    if match and not _DECIMAL_RE.fullmatch(match.group("prefix")):
        return float(match.group("seq")), True

    # float() is more lenient than the server's number format.
    if not text or text != text.strip() or "_" in text:
        return 0.0, False
    try:
        return float(text), True
    except ValueError:
        return 0.0, False


class BaseCollector(ABC):
    """Abstract base for all status collectors."""

    def __init__(self, name: str, timeout: float = 5.0) -> None:
        self.name = name
        self.timeout = timeout

    @property
    def error_label(self) -> str:
        return f"collect.{self.name}"

    @abstractmethod
    async def scrape(self, conn: Any) -> CollectorResult:
        """Read samples over an open connection. Must not raise, return error in result."""
        ...
