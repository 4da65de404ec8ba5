"""OTel provider configuration for rxinterpals components.

Provides :func:`configure_telemetry` (logger provider),
:func:`configure_metrics` (meter provider), and
:func:`get_default_providers` (lazy singleton with console output).
"""

from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import (
    BatchLogRecordProcessor,
    LogRecordExporter,
    SimpleLogRecordProcessor,
)
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource

from .exporters import ConsoleLogRecordExporter

DEFAULT_SERVICE_NAME = "rxinterpals"


def _resource(service_name: str, service_version: str) -> Resource:
    return Resource.create(
        {
            "service.name": service_name,
            "service.version": service_version,
        }
    )


def configure_telemetry(
    service_name: str = DEFAULT_SERVICE_NAME,
    service_version: str = "",
    log_exporter: LogRecordExporter | None = None,
    batch_logs: bool = True,
) -> LoggerProvider:
    """
    Configure an OTel LoggerProvider for rxinterpals components.

    Returns the provider for explicit injection into the client; does NOT
    set the global provider.

    Args:
        service_name: Service identifier for resource attributes.
        service_version: Service version for resource attributes.
        log_exporter: Optional log exporter (e.g. ``ConsoleLogRecordExporter``
            or an OTLP exporter).
        batch_logs: If True, use BatchLogRecordProcessor (better for network
            exporters). If False, use SimpleLogRecordProcessor (immediate,
            better for console).

    Example:
        >>> logger_provider = configure_telemetry(
        ...     service_name="my-bot",
        ...     log_exporter=ConsoleLogRecordExporter(),
        ...     batch_logs=False,
        ... )
        >>> client = InterpalsClient(credentials, logger_provider=logger_provider)
    """
    logger_provider = LoggerProvider(resource=_resource(service_name, service_version))
    if log_exporter:
        if batch_logs:
            logger_provider.add_log_record_processor(
                BatchLogRecordProcessor(log_exporter)
            )
        else:
            logger_provider.add_log_record_processor(
                SimpleLogRecordProcessor(log_exporter)
            )

    return logger_provider


_default_logger_provider: LoggerProvider | None = None


def get_default_providers(
    service_name: str = DEFAULT_SERVICE_NAME,
) -> LoggerProvider:
    """Get or create the default LoggerProvider with console output.

    Lazily initialized on first call; later calls return the same provider.
    Components use it when no ``logger_provider`` is injected.
    """
    global _default_logger_provider

    if _default_logger_provider is None:
        _default_logger_provider = configure_telemetry(
            service_name=service_name,
            log_exporter=ConsoleLogRecordExporter(),
            batch_logs=False,
        )

    return _default_logger_provider


def configure_metrics(
    service_name: str = DEFAULT_SERVICE_NAME,
    service_version: str = "",
    metric_exporter: MetricExporter | None = None,
    export_interval_ms: int = 10_000,
) -> MeterProvider:
    """Configure and return an OTel MeterProvider.

    If ``metric_exporter`` is None, metrics go to ``ConsoleMetricExporter``
    every ``export_interval_ms`` milliseconds.
    """
    exporter = (
        metric_exporter if metric_exporter is not None else ConsoleMetricExporter()
    )
    reader = PeriodicExportingMetricReader(
        exporter, export_interval_millis=export_interval_ms
    )
    return MeterProvider(
        resource=_resource(service_name, service_version), metric_readers=[reader]
    )
