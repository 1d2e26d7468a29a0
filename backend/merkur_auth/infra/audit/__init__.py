"""Audit sinks: structured-log delivery and a background dispatcher."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from merkur_auth.core.logger import log_event
from merkur_auth.services._shared.ports.audit_sink import AuditSink, AuthEvent

audit_logger = logging.getLogger("merkur_auth.audit")


class LoggingAuditSink(AuditSink):
    """Write each event as a JSON log line on the ``merkur_auth.audit`` logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or audit_logger

    def emit(self, event: AuthEvent) -> None:
        log_event(
            self.logger,
            event.action,
            user_id=event.user_id,
            ip_address=event.ip_address,
            reason=event.reason,
            at=event.timestamp.isoformat(),
        )


class AsyncAuditDispatcher(AuditSink):
    """
    Fire-and-forget wrapper: ``emit`` returns immediately and the wrapped
    sink runs on a small thread pool.

    Failures are logged and dropped; they never reach the request thread.

    :param sink: Sink doing the actual delivery.
    :param max_workers: Pool size (``AUDIT_WORKERS``).
    """

    def __init__(self, sink: AuditSink, *, max_workers: int = 2) -> None:
        self.sink = sink
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="audit")
        self._pending: set[Future[None]] = set()
        self._lock = threading.Lock()
        self._closed = False

    def emit(self, event: AuthEvent) -> None:
        with self._lock:
            if self._closed:
                audit_logger.warning("audit dispatcher closed; dropping %s", event.action)
                return
            future = self._executor.submit(self.sink.emit, event)
            self._pending.add(future)
        future.add_done_callback(self._done)

    def _done(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            audit_logger.error("audit delivery failed: %r", exc)

    def flush(self, timeout: float | None = None) -> None:
        """Block until every event submitted so far has been delivered."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            # Delivery errors were already logged by _done
            future.exception(timeout=timeout)

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)


__all__ = ["AsyncAuditDispatcher", "LoggingAuditSink", "audit_logger"]
