from .base import BaseCollector, CollectorResult, MetricDesc, Sample, parse_status
from .global_status import STATUS_DESCS, GlobalStatusCollector, build_status_descs, resolve_key

__all__ = [
    "BaseCollector",
    "CollectorResult",
    "MetricDesc",
    "Sample",
    "parse_status",
    "STATUS_DESCS",
    "GlobalStatusCollector",
    "build_status_descs",
    "resolve_key",
]
