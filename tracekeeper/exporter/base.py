"""Exporter interface for completed traces."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Iterable, List

if TYPE_CHECKING:
    from tracekeeper.tracer.span_buffer import Trace


class TraceExporter:
    """Receives completed traces from SpanBuffer.flush()."""

    def export(self, traces: Iterable["Trace"]) -> bool:
        """
        Export completed traces.

        Returns:
            True on success. Failures may also be raised as ExportError.
        """
        raise NotImplementedError

    def shutdown(self) -> None:
        return None


class InMemoryExporter(TraceExporter):
    """Keeps exported traces in memory, for tests and local inspection."""

    def __init__(self) -> None:
        self._traces: List["Trace"] = []
        self._lock = threading.Lock()

    def export(self, traces: Iterable["Trace"]) -> bool:
        with self._lock:
            self._traces.extend(traces)
        return True

    @property
    def traces(self) -> List["Trace"]:
        with self._lock:
            return list(self._traces)

    def clear(self) -> None:
        with self._lock:
            self._traces.clear()
