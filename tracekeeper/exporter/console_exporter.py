"""Console exporter for developer visibility."""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING, Iterable

from tracekeeper.errors import ExportError
from tracekeeper.exporter.base import TraceExporter

if TYPE_CHECKING:
    from tracekeeper.tracer.span_buffer import Trace


class ConsoleExporter(TraceExporter):
    """Prints one JSON line per finished span to stdout (or provided stream)."""

    def __init__(self, stream=None) -> None:
        self.stream = stream or sys.stdout

    def export(self, traces: Iterable["Trace"]) -> bool:
        try:
            for trace in traces:
                for span in trace.finished_spans:
                    print(json.dumps(span.to_dict(), sort_keys=True), file=self.stream)
            self.stream.flush()
        except (OSError, ValueError) as e:
            raise ExportError("failed to write traces to console", details={"error": str(e)}) from e
        return True
