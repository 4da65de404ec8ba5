"""OpenTelemetry helpers for rxinterpals components.

Logging goes through :class:`OTelLogger`; console output through
:class:`ConsoleLogRecordExporter`; optional counters through
:class:`MetricsHelper`.
"""

from .config import (
    configure_metrics,
    configure_telemetry,
    get_default_providers,
)
from .exporters import (
    LOG_FORMAT,
    ConsoleLogRecordExporter,
)
from .logger import (
    LogContext,
    OTelLogger,
    format_log_record,
    format_log_record_json,
)
from .metrics import MetricsHelper

__all__ = [
    # config
    "configure_telemetry",
    "configure_metrics",
    "get_default_providers",
    # logger
    "OTelLogger",
    "LogContext",
    "format_log_record",
    "format_log_record_json",
    # exporters
    "ConsoleLogRecordExporter",
    "LOG_FORMAT",
    # metrics
    "MetricsHelper",
]
