"""Logging context with composable output sinks.

A Logger is built from configuration, set up once before any git or
API operation, handed to every component that logs, and closed on
exit so file and OTLP processors flush. There is no module-level
logger instance.
"""

from __future__ import annotations

import contextlib
import os
import re
from abc import abstractmethod
from pathlib import Path
from typing import Any

import click
from opentelemetry.proto.logs.v1 import logs_pb2
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult
from pydantic import Field, PrivateAttr, model_validator

from backport.core.base import BaseConfig

REDACTED = "<REDACTED>"


class LevelFilteringExporter(SpanExporter):
    """Span exporter that drops spans below a minimum level."""

    # Level names mapped to OpenTelemetry severity numbers
    _level_thresholds = {
        'spew': logs_pb2.SEVERITY_NUMBER_TRACE,
        'trace': logs_pb2.SEVERITY_NUMBER_TRACE3,
        'debug': logs_pb2.SEVERITY_NUMBER_DEBUG,
        'info': logs_pb2.SEVERITY_NUMBER_INFO,
        'warn': logs_pb2.SEVERITY_NUMBER_WARN,
        'error': logs_pb2.SEVERITY_NUMBER_ERROR,
        'fatal': logs_pb2.SEVERITY_NUMBER_FATAL,
    }

    def __init__(self, exporter: SpanExporter, min_level: str | None):
        self._exporter = exporter
        self._min_severity = self._level_thresholds.get(
            (min_level or "info").lower(), logs_pb2.SEVERITY_NUMBER_INFO
        )

    @classmethod
    def level_name(cls, level_num: int) -> str:
        """Map a severity number back to the closest level name."""
        for name in ['fatal', 'error', 'warn', 'info', 'debug', 'trace']:
            if level_num >= cls._level_thresholds[name]:
                return name
        return 'spew'

    def export(self, spans: list[ReadableSpan]) -> SpanExportResult:
        filtered = [
            span for span in spans
            if (span.attributes or {}).get(
                'logfire.level_num', logs_pb2.SEVERITY_NUMBER_INFO
            ) >= self._min_severity
        ]
        if filtered:
            return self._exporter.export(filtered)
        return SpanExportResult.SUCCESS

    def shutdown(self) -> None:
        self._exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self._exporter.force_flush(timeout_millis)


class Sink(BaseConfig):
    """Base class for log output sinks.

    Each sink is an independent destination. Sinks are closed through
    the BaseCloseable cascade when the owning Logger closes.
    """

    enabled: bool = Field(default=True, description="Enable this sink")
    level: str | None = Field(
        default=None,
        description=(
            "Log level for this sink. If None, inherits from Logger.level. "
            "Valid: spew, trace, debug, info, warn, error, fatal"
        )
    )
    format_template: str | None = Field(
        default=None,
        description="Format template string (None for JSON output)"
    )

    _processor: Any = PrivateAttr(default=None)

    @staticmethod
    def _extract_span_data(span) -> dict:
        from datetime import UTC, datetime

        attrs = span.attributes or {}
        filepath = attrs.get("code.filepath", "")
        lineno = attrs.get("code.lineno", "")
        level_num = attrs.get(
            "logfire.level_num", logs_pb2.SEVERITY_NUMBER_INFO
        )
        return {
            'timestamp': datetime.fromtimestamp(
                span.start_time / 1e9, tz=UTC
            ),
            'level': LevelFilteringExporter.level_name(level_num),
            'message': attrs.get("logfire.msg", span.name),
            'location': f"{filepath}:{lineno}" if filepath else "",
            'function': attrs.get("code.function", ""),
        }

    def _format_span(self, span) -> str:
        if not self.format_template:
            return span.to_json() + os.linesep

        try:
            formatted = self.format_template.format(
                **self._extract_span_data(span)
            )
        except KeyError as e:
            return f"ERROR: Invalid template field {e}\n"

        # Append the keyword attributes passed to the logging call
        skip_prefixes = ('otel.', 'telemetry.', 'service.', 'process.',
                         'code.', 'logfire.')
        custom_attrs = {
            key: value
            for key, value in (span.attributes or {}).items()
            if not key.startswith(skip_prefixes)
        }
        if custom_attrs:
            attrs_str = ' '.join(
                f"{k}={v!r}" for k, v in sorted(custom_attrs.items())
            )
            formatted = f"{formatted} | {attrs_str}"

        return formatted + '\n'

    @abstractmethod
    def create_processor(self, log_root: Path, run_name: str):
        """Create the span processor for this sink, or None."""

    def close(self):
        if self._processor:
            with contextlib.suppress(Exception):
                self._processor.shutdown()


class ConsoleSink(Sink):
    """Console output through logfire's console exporter."""

    enabled: bool = Field(
        default=False,
        description=(
            "Print log records to the terminal. User-facing progress "
            "is always printed; this adds the structured log stream."
        ),
    )
    verbose: bool = Field(default=False, description="Show span details")
    colors: str = Field(
        default="auto",
        description="Color mode: auto, always, never"
    )

    def create_processor(self, log_root: Path, run_name: str):
        return None


class OTLPSink(Sink):
    """OTLP telemetry export (SigNoz, Jaeger, ...)."""

    enabled: bool = Field(default=False, description="Enable OTLP export")
    endpoint: str = Field(
        default="http://localhost:4317",
        description="OTLP gRPC endpoint"
    )
    insecure: bool = Field(
        default=True,
        description="Use insecure connection (no TLS)"
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Optional headers for authentication"
    )

    def create_processor(self, log_root: Path, run_name: str):
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        exporter = OTLPSpanExporter(
            endpoint=self.endpoint,
            insecure=self.insecure,
            headers=self.headers or None,
        )
        if self.level:
            exporter = LevelFilteringExporter(exporter, self.level)
        return BatchSpanProcessor(exporter)


class FileSink(Sink):
    """Plain-text log file, one line per record."""

    enabled: bool = Field(default=True, description="Enable file logging")
    level: str | None = Field(
        default="debug",
        description="The log file records everything down to debug",
    )
    path: str = Field(
        default="{log_root}/{run_name}.log",
        description="Log file path template"
    )
    format_template: str | None = Field(
        default="{timestamp:%Y-%m-%d %H:%M:%S} {level}: {message}",
    )

    _file: Any = PrivateAttr(default=None)
    _resolved_path: Path | None = PrivateAttr(default=None)

    @property
    def resolved_path(self) -> Path | None:
        """Path of the open log file, once set up."""
        return self._resolved_path

    def create_processor(self, log_root: Path, run_name: str):
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            ConsoleSpanExporter,
        )

        log_path = Path(
            self.path.format(log_root=log_root, run_name=run_name)
        )
        log_path.parent.mkdir(parents=True, exist_ok=True)
        self._resolved_path = log_path

        # Line buffered so a crash still leaves complete lines behind
        self._file = open(log_path, "a", buffering=1, encoding="utf-8")  # noqa: SIM115

        exporter = ConsoleSpanExporter(
            out=self._file,
            formatter=self._format_span,
        )
        return BatchSpanProcessor(LevelFilteringExporter(exporter, self.level))

    def close(self):
        # Processor first so pending spans reach the file
        super().close()
        if self._file and not self._file.closed:
            with contextlib.suppress(Exception):
                self._file.flush()
                self._file.close()


class LogfireSink(Sink):
    """Logfire.dev cloud sink."""

    enabled: bool = Field(
        default=False,
        description="Send telemetry to logfire.dev cloud"
    )
    token: str | None = Field(
        default=None,
        description="API token (or use LOGFIRE_TOKEN env var)"
    )

    def create_processor(self, log_root: Path, run_name: str):
        return None


class Logger(BaseConfig):
    """Logging context with composable sinks.

    Usage:
        logger = Logger()
        logger.setup(log_root, "backport-kibana")
        with logger:
            logger.info("Backporting", target_branch="7.x")

    Secrets registered with redact() are replaced by <REDACTED> in
    every message and in console output.
    """

    level: str = Field(
        default="info",
        description=(
            "Default log level for all sinks. Individual sinks can override. "
            "Valid: spew, trace, debug, info, warn, error, fatal"
        )
    )
    console: ConsoleSink = Field(default_factory=ConsoleSink)
    otlp: OTLPSink = Field(default_factory=OTLPSink)
    file: FileSink = Field(default_factory=FileSink)
    logfire: LogfireSink = Field(default_factory=LogfireSink)

    _secrets: list[str] = PrivateAttr(default_factory=list)
    _is_setup: bool = PrivateAttr(default=False)

    @model_validator(mode='after')
    def _cascade_level_to_sinks(self) -> 'Logger':
        for sink in [self.console, self.file, self.otlp]:
            if sink.level is None:
                sink.level = self.level
        return self

    @property
    def log_file(self) -> Path | None:
        """Path of the log file, or None when file logging is off."""
        return self.file.resolved_path

    def setup(self, log_root: Path, run_name: str) -> 'Logger':
        """Create processors for all enabled sinks and configure logfire.

        Must run before the first log call of a run.
        """
        import logfire
        from logfire import ConsoleOptions

        for sink in [self.console, self.otlp, self.file, self.logfire]:
            if sink.enabled:
                sink._processor = sink.create_processor(log_root, run_name)

        processors = [
            sink._processor
            for sink in [self.otlp, self.file]
            if sink.enabled and sink._processor
        ]

        console_config = (
            ConsoleOptions(
                min_log_level=self.console.level,
                verbose=self.console.verbose,
                colors=self.console.colors,
                include_timestamps=True,
            )
            if self.console.enabled
            else False
        )

        logfire.configure(
            service_name=run_name,
            send_to_logfire=self.logfire.enabled,
            token=self.logfire.token if self.logfire.enabled else None,
            console=console_config,
            additional_span_processors=processors or None,
        )
        logfire.instrument_pydantic_ai()
        self._is_setup = True
        return self

    def redact(self, secret: str | None) -> None:
        """Register a secret that must never appear in output."""
        if secret and secret not in self._secrets:
            self._secrets.append(secret)

    def scrub(self, text: str) -> str:
        for secret in self._secrets:
            text = re.sub(re.escape(secret), REDACTED, text)
        return text

    def _scrub_kwargs(self, kwargs: dict) -> dict:
        return {
            key: self.scrub(value) if isinstance(value, str) else value
            for key, value in kwargs.items()
        }

    def echo(self, msg: str = "", **style) -> None:
        """Print a user-facing line to the terminal.

        Args:
            msg: Text to print
            **style: click.style() keywords (bold, italic, fg, ...)
        """
        text = self.scrub(msg)
        click.echo(click.style(text, **style) if style else text)

    def info(self, msg: str, **kwargs):
        import logfire
        logfire.info(self.scrub(msg), **self._scrub_kwargs(kwargs))

    def debug(self, msg: str, **kwargs):
        import logfire
        logfire.debug(self.scrub(msg), **self._scrub_kwargs(kwargs))

    def trace(self, msg: str, **kwargs):
        self.log('trace', msg, **kwargs)

    def spew(self, msg: str, **kwargs):
        """Below trace: subprocess chatter and raw command output."""
        self.log('spew', msg, **kwargs)

    def warn(self, msg: str, **kwargs):
        import logfire
        logfire.warn(self.scrub(msg), **self._scrub_kwargs(kwargs))

    warning = warn

    def error(self, msg: str, **kwargs):
        import logfire
        logfire.error(self.scrub(msg), **self._scrub_kwargs(kwargs))

    def span(self, msg: str, **kwargs):
        """Span context manager for a traced operation."""
        import logfire
        return logfire.span(self.scrub(msg), **self._scrub_kwargs(kwargs))

    def log(self, level: str, msg: str, **kwargs):
        import logfire
        logfire.log(
            level=LevelFilteringExporter._level_thresholds.get(level, level),
            msg_template=self.scrub(msg),
            attributes=self._scrub_kwargs(kwargs) or None,
        )

    def close(self):
        """Flush logfire and close every sink."""
        if self._is_setup:
            import logfire
            with contextlib.suppress(Exception):
                logfire.force_flush()
        super().close()


__all__ = [
    "ConsoleSink",
    "FileSink",
    "LevelFilteringExporter",
    "Logger",
    "LogfireSink",
    "OTLPSink",
    "Sink",
]
