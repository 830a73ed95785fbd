"""Logging and tracing for spotinfo.

Log lines go to stderr, never stdout: stdout carries CLI results and the MCP
stdio transport. Lines are ``key=value`` pairs by default, or one JSON object
per line with ``json_log``. With ``enabled`` and a Honeycomb API key, spans
and log records are also shipped over OTLP/HTTP.
"""

import json
import logging
import os
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from opentelemetry import trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from spotinfo.config import ObservabilityConfig

logger = logging.getLogger(__name__)

API_KEY_ENV = "HONEYCOMB_API_KEY"


def error_fields(error: BaseException) -> dict[str, str]:
    """Describe an exception as flat log/span fields."""
    return {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "stack_trace": "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        ),
    }


class StderrHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Handler bound to whatever ``sys.stderr`` is at emit time.

    Test runners and the MCP stdio server swap ``sys.stderr``; a plain
    StreamHandler would keep writing to the stream captured at creation.
    """

    def __init__(self) -> None:
        super().__init__(sys.stderr)

    @property  # type: ignore[override]
    def stream(self) -> Any:
        return sys.stderr

    @stream.setter
    def stream(self, value: Any) -> None:
        pass


class StructuredLogger:
    """Thin wrapper over a stdlib logger that renders context fields.

    Every line carries a UTC timestamp and the level; ``region`` is placed
    before the message so lines about one region line up when grepping.
    """

    def __init__(
        self,
        name: str,
        config: ObservabilityConfig,
        otel_handler: logging.Handler | None = None,
    ) -> None:
        self.config = config
        self.logger = logging.getLogger(name)
        self.logger.setLevel(config.log_level)

        if not self.logger.handlers:
            self.logger.addHandler(StderrHandler())
            self.logger.propagate = False
        if otel_handler is not None and otel_handler not in self.logger.handlers:
            self.logger.addHandler(otel_handler)

    def set_level(self, level: str) -> None:
        self.logger.setLevel(level.upper())

    def _format_message(self, message: str, level: str = "INFO", **context: Any) -> str:
        timestamp = datetime.now(UTC).isoformat()

        if self.config.json_log:
            document = {
                "timestamp": timestamp,
                "level": level,
                "logger": self.logger.name,
                "message": message,
                **context,
            }
            return json.dumps(document, default=str)

        region = context.pop("region", None)
        fields = [f"timestamp={timestamp}", f"level={level}"]
        if region is not None:
            fields.append(f"region={region}")
        fields.append(f"msg={message}")
        fields.extend(f"{key}={value}" for key, value in context.items())
        return " ".join(fields)

    def _emit(self, level: int, message: str, context: dict[str, Any]) -> None:
        # Formatting is skipped entirely for disabled levels
        if self.logger.isEnabledFor(level):
            rendered = self._format_message(message, logging.getLevelName(level), **context)
            self.logger.log(level, rendered)

    def debug(self, message: str, **context: Any) -> None:
        self._emit(logging.DEBUG, message, context)

    def info(self, message: str, **context: Any) -> None:
        self._emit(logging.INFO, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._emit(logging.WARNING, message, context)

    def error(self, message: str, error: BaseException | None = None, **context: Any) -> None:
        """Log an error, attaching type, message and traceback of ``error``."""
        if error is not None:
            context.update(error_fields(error))
        self.logger.error(self._format_message(message, "ERROR", **context))


class ObservabilityManager:
    """Owns the OTLP providers and the per-module structured loggers."""

    def __init__(self, config: ObservabilityConfig) -> None:
        self.config = config
        self._tracer_provider: TracerProvider | None = None
        self._logger_provider: LoggerProvider | None = None
        self._otel_handler: LoggingHandler | None = None
        self._loggers: dict[str, StructuredLogger] = {}
        self._initialized = False

    def _api_key(self) -> str | None:
        return self.config.honeycomb_api_key or os.environ.get(API_KEY_ENV)

    def _export_tracing(self, resource: Resource, headers: dict[str, str]) -> None:
        exporter = OTLPSpanExporter(
            endpoint=f"{self.config.exporter_endpoint}/v1/traces", headers=headers
        )
        self._tracer_provider = TracerProvider(resource=resource)
        self._tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(self._tracer_provider)

    def _export_logs(self, resource: Resource, headers: dict[str, str]) -> None:
        exporter = OTLPLogExporter(
            endpoint=f"{self.config.exporter_endpoint}/v1/logs", headers=headers
        )
        self._logger_provider = LoggerProvider(resource=resource)
        self._logger_provider.add_log_record_processor(BatchLogRecordProcessor(exporter))
        set_logger_provider(self._logger_provider)
        self._otel_handler = LoggingHandler(
            level=self.config.log_level, logger_provider=self._logger_provider
        )

    def initialize(self) -> None:
        """Start OTLP export of traces and logs.

        Does nothing when export is disabled or no API key is available,
        either from the configuration or from ``HONEYCOMB_API_KEY``.
        """
        if not self.config.enabled:
            logger.debug("OpenTelemetry export is disabled")
            return
        if self._initialized:
            logger.warning("Observability already initialized")
            return

        api_key = self._api_key()
        if not api_key:
            logger.warning(
                "Honeycomb API key not configured; set honeycomb_api_key or %s. "
                "OpenTelemetry export stays off.",
                API_KEY_ENV,
            )
            return

        resource = Resource.create(
            {
                "service.name": self.config.service_name,
                "deployment.environment": self.config.environment,
            }
        )
        headers = {"x-honeycomb-team": api_key}
        self._export_tracing(resource, headers)
        self._export_logs(resource, headers)

        self._initialized = True
        logger.info(
            "Observability initialized: service=%s, environment=%s",
            self.config.service_name,
            self.config.environment,
        )

    def shutdown(self) -> None:
        """Flush and stop the OTLP providers."""
        for provider in (self._tracer_provider, self._logger_provider):
            if provider is not None:
                provider.shutdown()  # type: ignore[no-untyped-call]
        if self._initialized:
            self._initialized = False
            logger.info("Observability shutdown")

    def get_tracer(self, name: str) -> trace.Tracer:
        return trace.get_tracer(name)

    def get_logger(self, name: str) -> StructuredLogger:
        structured = self._loggers.get(name)
        if structured is None:
            structured = StructuredLogger(name, self.config, self._otel_handler)
            self._loggers[name] = structured
        return structured

    def _reconfigure(self, **update: Any) -> None:
        self.config = self.config.model_copy(update=update)
        for structured in self._loggers.values():
            structured.config = self.config

    def set_level(self, level: str) -> None:
        """Apply ``level`` to loggers already handed out and to later ones."""
        self._reconfigure(log_level=level.upper())
        for structured in self._loggers.values():
            structured.set_level(level)

    def set_json_log(self, enabled: bool) -> None:
        self._reconfigure(json_log=enabled)

    @contextmanager
    def trace_operation(self, operation_name: str, **attributes: Any) -> Iterator[Any]:
        """Run the block inside a span named ``operation_name``.

        Yields the span, or None while export is off. Exceptions are recorded
        on the span and re-raised.
        """
        if not self._initialized:
            yield None
            return

        tracer = self.get_tracer(__name__)
        with tracer.start_as_current_span(operation_name) as span:
            for key, value in attributes.items():
                span.set_attribute(key, str(value))
            try:
                yield span
            except Exception as e:
                span.set_attribute("error", True)
                for key, value in error_fields(e).items():
                    span.set_attribute(f"error.{key.removeprefix('error_')}", value)
                raise


_observability_manager: ObservabilityManager | None = None


def get_observability_manager(
    config: ObservabilityConfig | None = None,
) -> ObservabilityManager:
    """Return the process-wide manager, creating it on first use.

    ``config`` only matters on the first call; later calls return the
    existing manager unchanged.
    """
    global _observability_manager

    if _observability_manager is None:
        if config is None:
            from spotinfo.config import default_config

            config = default_config.observability
        _observability_manager = ObservabilityManager(config)
        _observability_manager.initialize()

    return _observability_manager


__all__ = [
    "ObservabilityManager",
    "StderrHandler",
    "StructuredLogger",
    "error_fields",
    "get_observability_manager",
]
