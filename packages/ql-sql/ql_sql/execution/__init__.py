"""Target-database access: connection borrowing, catalog metadata, plan probes."""

from .connections import ConnectionProvider, PoolConnectionProvider, normalize_dsn
from .metadata import MetadataCollector
from .plan_probe import PlanProbe, build_explain_command, parse_plan_text

__all__ = [
    "ConnectionProvider",
    "PoolConnectionProvider",
    "normalize_dsn",
    "MetadataCollector",
    "PlanProbe",
    "build_explain_command",
    "parse_plan_text",
]
