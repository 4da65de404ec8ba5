"""Console log-record exporter for CLI-friendly output."""

import sys
from collections.abc import Sequence
from typing import Literal

from opentelemetry.sdk._logs._internal import ReadableLogRecord
from opentelemetry.sdk._logs.export import (
    LogRecordExporter,
    LogRecordExportResult,
)

from .logger import format_log_record, format_log_record_json

LOG_FORMAT = Literal["text", "json"]


class ConsoleLogRecordExporter(LogRecordExporter):
    """OTel LogRecordExporter that writes to stderr.

    Unlike OTel's ConsoleLogExporter which dumps verbose JSON objects, this
    exporter writes one line per record, either human-readable (``"text"``)
    or compact JSON (``"json"``).

    Example output:
        2026-02-03T10:30:00Z [INFO] rxinterpals/gateway Gateway : Connected
    """

    def __init__(self, format: LOG_FORMAT = "text"):
        if format not in ("text", "json"):
            raise ValueError(f"Unsupported log format '{format}'.")
        self._formatter = (
            format_log_record_json if format == "json" else format_log_record
        )

    def export(self, batch: Sequence[ReadableLogRecord]) -> LogRecordExportResult:
        try:
            for readable_record in batch:
                sys.stderr.write(self._formatter(readable_record.log_record))
            sys.stderr.flush()
            return LogRecordExportResult.SUCCESS
        except Exception:
            return LogRecordExportResult.FAILURE

    def shutdown(self) -> None:
        pass

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        sys.stderr.flush()
        return True
