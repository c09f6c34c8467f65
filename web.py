#!/usr/bin/env python3
"""Sphinx exporter: Prometheus metrics for Sphinx searchd over SphinxQL.

Usage:
    python web.py                                   # DATA_SOURCE_NAME or ~/.my.cnf, port 9104
    python web.py -c config/exporter.yaml           # settings from a YAML file
    python web.py --web.listen-address 127.0.0.1:9200 --web.telemetry-path /probe
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import platform
import sys
from pathlib import Path

import uvicorn
import yaml
from fastapi import FastAPI
from fastapi.responses import HTMLResponse, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Info,
    disable_created_metrics,
    generate_latest,
)

from collectors import build_status_descs
from exporter import ExporterConfig, SphinxExporter, __version__
from mycnf import ConfigError, resolve_connection

log = logging.getLogger("sphinx_exporter")

LANDING_PAGE = """<html>
<head><title>Sphinx exporter</title></head>
<body>
<h1>Sphinx exporter</h1>
<p><a href='{path}'>Metrics</a></p>
</body>
</html>
"""


# ---------------------------------------------------------------------------
# Config loader
# ---------------------------------------------------------------------------

def load_config(path: Path | None) -> ExporterConfig:
    """Parse exporter.yaml into an ExporterConfig. A missing path gives defaults."""
    if path is None:
        return ExporterConfig()
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"failed reading config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must be a mapping")

    known = {f.name for f in dataclasses.fields(ExporterConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown config key(s) in {path}: {', '.join(unknown)}")

    cfg = ExporterConfig(**data)
    try:
        cfg.timeout = float(cfg.timeout)
    except (TypeError, ValueError):
        raise ConfigError(f"timeout must be a number, got {cfg.timeout!r}") from None
    if cfg.timeout <= 0:
        raise ConfigError("timeout must be positive")
    if not isinstance(cfg.metric_kinds, dict):
        raise ConfigError("metric_kinds must be a mapping")
    if not str(cfg.telemetry_path).startswith("/"):
        raise ConfigError("telemetry_path must start with '/'")
    return cfg


def parse_listen_address(addr: str) -> tuple[str, int]:
    """Split ``host:port``; an empty host (``:9104``) binds all interfaces."""
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ConfigError(f"listen address {addr!r} needs a port")
    try:
        port_num = int(port)
    except ValueError:
        raise ConfigError(f"invalid port in listen address {addr!r}") from None
    return host.strip("[]") or "0.0.0.0", port_num


def build_exporter(cfg: ExporterConfig) -> SphinxExporter:
    params = resolve_connection(cfg.dsn, cfg.my_cnf)
    try:
        descs = build_status_descs(cfg.metric_kinds, namespace=cfg.namespace)
    except ValueError as e:
        raise ConfigError(str(e)) from e
    return SphinxExporter(
        params,
        namespace=cfg.namespace,
        subsystem=cfg.subsystem,
        timeout=cfg.timeout,
        descs=descs,
    )


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

def create_app(
    exporter: SphinxExporter,
    telemetry_path: str = "/metrics",
    registry: CollectorRegistry | None = None,
) -> FastAPI:
    """Register the exporter and serve it. Registration runs one live scrape."""
    if registry is None:
        registry = CollectorRegistry()
    build = Info("sphinx_exporter_build", "Build information of sphinx_exporter.", registry=registry)
    build.info({"version": __version__, "pythonversion": platform.python_version()})
    registry.register(exporter)

    app = FastAPI(title="Sphinx exporter", docs_url=None, redoc_url=None, openapi_url=None)
    landing = LANDING_PAGE.format(path=telemetry_path)

    @app.get("/", response_class=HTMLResponse)
    async def index():
        return HTMLResponse(landing)

    # Plain def: FastAPI runs it on a worker thread, which the blocking scrape needs.
    @app.get(telemetry_path)
    def metrics():
        return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    return app


# ---------------------------------------------------------------------------
# CLI entrypoint
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Prometheus exporter for Sphinx searchd")
    parser.add_argument("--version", action="store_true", help="Print version information.")
    parser.add_argument("-c", "--config", help="Path to exporter.yaml config file")
    parser.add_argument(
        "--web.listen-address", dest="listen_address",
        help="Address to listen on for web interface and telemetry (default: :9104).",
    )
    parser.add_argument(
        "--web.telemetry-path", dest="telemetry_path",
        help="Path under which to expose metrics (default: /metrics).",
    )
    parser.add_argument(
        "--config.my-cnf", dest="my_cnf",
        help="Path to .my.cnf file to read MySQL credentials from (default: ~/.my.cnf).",
    )
    parser.add_argument(
        "--log.level", dest="log_level", default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Only log messages with the given severity or above.",
    )
    args = parser.parse_args(argv)

    if args.version:
        print(f"sphinx_exporter {__version__} (python {platform.python_version()})")
        sys.exit(0)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Counters expose only _total, without the _created companion series.
    disable_created_metrics()

    try:
        cfg = load_config(Path(args.config) if args.config else None)
        for key in ("listen_address", "telemetry_path", "my_cnf"):
            if getattr(args, key):
                setattr(cfg, key, getattr(args, key))
        if os.environ.get("DATA_SOURCE_NAME"):
            cfg.dsn = os.environ["DATA_SOURCE_NAME"]
        host, port = parse_listen_address(cfg.listen_address)
        log.info("Starting sphinx_exporter %s", __version__)
        app = create_app(build_exporter(cfg), cfg.telemetry_path)
    except ConfigError as e:
        log.critical("%s", e)
        sys.exit(1)

    log.info("Listening on %s", cfg.listen_address)
    uvicorn.run(app, host=host, port=port, log_level=args.log_level)


if __name__ == "__main__":
    main()
