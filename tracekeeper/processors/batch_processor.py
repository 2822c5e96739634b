"""Background flushing of completed traces to the exporter."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from tracekeeper.tracer.span_buffer import SpanBuffer

logger = logging.getLogger(__name__)


class BatchTraceProcessor:
    """
    Periodically moves completed traces from a SpanBuffer to its exporter.

    The worker is a daemon thread; shutdown() stops it and performs a final
    flush so no completed trace is left behind.
    """

    def __init__(self, buffer: "SpanBuffer", *, schedule_delay_millis: int = 1000) -> None:
        self.buffer = buffer
        self.schedule_delay = schedule_delay_millis / 1000.0

        self._event = threading.Event()
        self._shutdown = False
        self._worker = threading.Thread(target=self._worker_loop, name="tracekeeper-flush", daemon=True)
        self._worker.start()

    def force_flush(self, timeout: Optional[float] = None) -> None:
        """Flush until no completed trace is left or the timeout expires."""
        deadline = time.time() + timeout if timeout else None
        while True:
            flushed_any = self._flush_once()
            if not flushed_any:
                return
            if deadline and time.time() >= deadline:
                return

    def shutdown(self) -> None:
        """Stop the worker and flush what is left."""
        if self._shutdown:
            return
        self._shutdown = True
        self._event.set()
        self._worker.join(timeout=self.schedule_delay * 2)
        self.force_flush()
        exporter = self.buffer.exporter
        if exporter is not None:
            exporter.shutdown()

    # Internal
    def _worker_loop(self) -> None:
        """Background worker that periodically flushes traces."""
        while not self._shutdown:
            self._event.wait(timeout=self.schedule_delay)
            self._event.clear()
            self._flush_once()

    def _flush_once(self) -> bool:
        try:
            return self.buffer.flush() > 0
        except Exception:
            logger.exception("Trace flush failed")
            return False
