"""Exporters receiving completed traces."""

from tracekeeper.exporter.base import InMemoryExporter, TraceExporter
from tracekeeper.exporter.console_exporter import ConsoleExporter

__all__ = ["TraceExporter", "InMemoryExporter", "ConsoleExporter"]
