"""tracekeeper: span aggregation and priority sampling for distributed tracing."""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from tracekeeper.tracer import FinishedSpan, Span, SpanBuffer, SpanContext, Trace, Tracer
from tracekeeper.config import TracerConfig, build_sampler, load_config_with_priority
from tracekeeper.errors import ConfigError, ExportError, MalformedContextError, TraceKeeperError
from tracekeeper.exporter import ConsoleExporter, InMemoryExporter, TraceExporter
from tracekeeper.processors import BatchTraceProcessor, SamplingPriority

__version__ = "0.3.0"

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_tracer: Optional[Tracer] = None
_processor: Optional[BatchTraceProcessor] = None


def init(config_file: Optional[str] = None, exporter: Optional[TraceExporter] = None, **overrides: Any) -> Tracer:
    """
    Initialize the process-wide tracer.

    Calling init() again returns the existing tracer; call stop_tracing()
    first to re-initialize with a different configuration.

    Args:
        config_file: Path to a TOML config file (searched for if omitted)
        exporter: Exporter for completed traces (console exporter if enabled in config)
        **overrides: Config fields that take priority over file and environment

    Raises:
        ConfigError: if the configuration is invalid
    """
    global _tracer, _processor
    with _lock:
        if _tracer is not None:
            logger.debug("init() called while tracing is active; returning existing tracer")
            return _tracer

        config = load_config_with_priority(config_file=config_file, overrides=overrides)
        if config.debug:
            logging.getLogger("tracekeeper").setLevel(logging.DEBUG)

        if exporter is None and config.enable_console_exporter:
            exporter = ConsoleExporter()
        buffer = SpanBuffer(sampler=build_sampler(config), exporter=exporter)
        _tracer = Tracer(config.service, buffer=buffer, env=config.env, version=config.version)
        _processor = BatchTraceProcessor(buffer, schedule_delay_millis=config.flush_interval_ms)
        logger.debug(f"Tracing initialized for service {config.service!r}")
        return _tracer


def get_tracer() -> Tracer:
    """Return the process-wide tracer, initializing it with defaults if needed."""
    with _lock:
        tracer = _tracer
    return tracer if tracer is not None else init()


def stop_tracing() -> None:
    """Flush completed traces, stop the background flusher and forget the tracer."""
    global _tracer, _processor
    with _lock:
        processor, _processor = _processor, None
        _tracer = None
    if processor is not None:
        processor.shutdown()


__all__ = [
    "__version__",
    "init",
    "get_tracer",
    "stop_tracing",
    "ConfigError",
    "ConsoleExporter",
    "ExportError",
    "FinishedSpan",
    "InMemoryExporter",
    "MalformedContextError",
    "SamplingPriority",
    "Span",
    "SpanBuffer",
    "SpanContext",
    "Trace",
    "TraceExporter",
    "TraceKeeperError",
    "Tracer",
    "TracerConfig",
]
