"""Scrape orchestration: connection lifecycle, liveness probe and meta metrics.

``SphinxExporter`` is a prometheus_client custom collector. Each ``collect()``
opens a fresh SphinxQL connection, probes it with ``SELECT 1``, runs the
status collectors and appends the exporter's own bookkeeping metrics.

The set of status metrics depends on what the live server reports, so
``describe()`` cannot be answered statically: it runs one real scrape and
returns the families it produced with their samples stripped. Registering
the exporter therefore talks to the monitored server.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import aiomysql
from prometheus_client import Counter, Gauge
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from collectors import BaseCollector, GlobalStatusCollector, MetricDesc, Sample, build_status_descs
from collectors.base import COUNTER, NAMESPACE
from collectors.global_status import SKIP_UNPARSABLE, SKIP_UNREGISTERED
from mycnf import ConnectionParams

__version__ = "0.2.0"

log = logging.getLogger(__name__)

UP_QUERY = "SELECT 1"


@dataclass
class ExporterConfig:
    listen_address: str = ":9104"
    telemetry_path: str = "/metrics"
    my_cnf: str = "~/.my.cnf"
    dsn: str | None = None
    namespace: str = NAMESPACE
    subsystem: str = "exporter"
    timeout: float = 5.0
    metric_kinds: dict[str, str] = field(default_factory=dict)


async def open_connection(params: ConnectionParams, timeout: float) -> Any:
    return await aiomysql.connect(connect_timeout=timeout, **params.connect_kwargs())


def build_families(samples: Iterable[Sample]) -> list[Metric]:
    """Group samples into metric families, in order of first appearance."""
    families: dict[MetricDesc, Metric] = {}
    for s in samples:
        family = families.get(s.desc)
        if family is None:
            cls = CounterMetricFamily if s.kind == COUNTER else GaugeMetricFamily
            family = cls(s.desc.fqname, s.desc.help, labels=list(s.desc.labels))
            families[s.desc] = family
        family.add_metric(list(s.label_values), s.value)
    return list(families.values())


class SphinxExporter:
    """Collects Sphinx metrics. Implements the prometheus_client collector protocol."""

    def __init__(
        self,
        params: ConnectionParams,
        namespace: str = NAMESPACE,
        subsystem: str = "exporter",
        collectors: list[BaseCollector] | None = None,
        timeout: float = 5.0,
        descs: Mapping[str, MetricDesc] | None = None,
    ) -> None:
        self.params = params
        self.timeout = timeout
        if collectors is None:
            if descs is None:
                descs = build_status_descs(namespace=namespace)
            collectors = [GlobalStatusCollector(descs, timeout=timeout)]
        self.collectors = collectors

        # Not attached to any registry: collect() forwards them itself.
        self.duration = Gauge(
            "last_scrape_duration_seconds",
            "Duration of the last scrape of metrics from Sphinx.",
            namespace=namespace,
            subsystem=subsystem,
            registry=None,
        )
        self.total_scrapes = Counter(
            "scrapes_total",
            "Total number of times Sphinx was scraped for metrics.",
            namespace=namespace,
            subsystem=subsystem,
            registry=None,
        )
        self.scrape_errors = Counter(
            "scrape_errors_total",
            "Total number of times an error occurred scraping a Sphinx.",
            ["collector"],
            namespace=namespace,
            subsystem=subsystem,
            registry=None,
        )
        self.error = Gauge(
            "last_scrape_error",
            "Whether the last scrape of metrics from Sphinx resulted in an error (1 for error, 0 for success).",
            namespace=namespace,
            subsystem=subsystem,
            registry=None,
        )
        self.up = Gauge(
            "up",
            "Whether the Sphinx server is up.",
            namespace=namespace,
            registry=None,
        )
        self.skipped_rows = Counter(
            "status_rows_skipped_total",
            "Status rows dropped because the value was unparsable or the key unregistered.",
            ["reason"],
            namespace=namespace,
            subsystem=subsystem,
            registry=None,
        )
        for c in self.collectors:
            self.scrape_errors.labels(collector=c.error_label)
        for reason in (SKIP_UNPARSABLE, SKIP_UNREGISTERED):
            self.skipped_rows.labels(reason=reason)

    async def ping(self, conn: Any) -> bool:
        """Liveness probe. Sets the up gauge and reports whether to go on."""
        try:
            async with conn.cursor() as cur:
                await asyncio.wait_for(cur.execute(UP_QUERY), self.timeout)
                await cur.fetchall()
        except Exception as e:
            log.error("Error pinging sphinx: %s", e)
            self.up.set(0)
            return False
        self.up.set(1)
        return True

    async def scrape(self) -> list[Metric]:
        """Run one scrape cycle and return the status metric families.

        Meta metrics are updated as a side effect on every path.
        """
        self.total_scrapes.inc()
        begun = time.perf_counter()
        failed = False
        samples: list[Sample] = []

        try:
            conn = await open_connection(self.params, self.timeout)
        except Exception as e:
            log.error("Error opening connection to database: %s", e)
            failed = True
            self.up.set(0)
        else:
            try:
                # A dead or hung server surfaces here, not at connect.
                if not await self.ping(conn):
                    failed = True
                else:
                    for c in self.collectors:
                        result = await c.scrape(conn)
                        samples.extend(result.samples)
                        for reason, n in result.skipped.items():
                            self.skipped_rows.labels(reason=reason).inc(n)
                        if result.error:
                            log.error("Error scraping for %s: %s", c.error_label, result.error)
                            self.scrape_errors.labels(collector=c.error_label).inc()
            finally:
                conn.close()

        self.duration.set(time.perf_counter() - begun)
        self.error.set(1 if failed else 0)
        return build_families(samples)

    def meta_families(self) -> list[Metric]:
        families: list[Metric] = []
        for m in (
            self.duration,
            self.total_scrapes,
            self.error,
            self.scrape_errors,
            self.up,
            self.skipped_rows,
        ):
            families.extend(m.collect())
        return families

    def collect(self) -> Iterable[Metric]:
        # Called from a worker thread, never from inside a running event loop.
        families = asyncio.run(self.scrape())
        yield from families
        yield from self.meta_families()

    def describe(self) -> list[Metric]:
        """Probe the server with a full collect and return descriptors only."""
        return [Metric(m.name, m.documentation, m.type, m.unit) for m in self.collect()]
