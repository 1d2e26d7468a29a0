"""Tests for the logging audit sink and the background dispatcher."""

from __future__ import annotations

import logging
import threading

from merkur_auth.infra.audit import AsyncAuditDispatcher, LoggingAuditSink
from merkur_auth.services._shared.ports.audit_sink import AuditAction, AuthEvent


class RecordingSink:
    def __init__(self):
        self.events: list[AuthEvent] = []
        self.threads: set[str] = set()

    def emit(self, event: AuthEvent) -> None:
        self.threads.add(threading.current_thread().name)
        self.events.append(event)


class ExplodingSink:
    def emit(self, event: AuthEvent) -> None:
        raise RuntimeError("sink down")


def test_logging_sink_writes_structured_fields(caplog):
    sink = LoggingAuditSink()
    with caplog.at_level(logging.INFO, logger="merkur_auth.audit"):
        sink.emit(AuthEvent(action=AuditAction.LOGIN_FAILED, user_id=3, reason="bad_password"))

    record = caplog.records[-1]
    assert record.getMessage() == "auth.login.failed"
    assert record.event == "auth.login.failed"
    assert record.user_id == 3
    assert record.reason == "bad_password"
    assert not hasattr(record, "ip_address")


def test_dispatcher_delivers_off_the_calling_thread():
    sink = RecordingSink()
    dispatcher = AsyncAuditDispatcher(sink, max_workers=1)
    try:
        for _ in range(3):
            dispatcher.emit(AuthEvent(action=AuditAction.LOGOUT_SUCCESS, user_id=1))
        dispatcher.flush(timeout=5)
    finally:
        dispatcher.close()

    assert len(sink.events) == 3
    assert threading.current_thread().name not in sink.threads


def test_dispatcher_swallows_sink_failures(caplog):
    dispatcher = AsyncAuditDispatcher(ExplodingSink(), max_workers=1)
    with caplog.at_level(logging.ERROR, logger="merkur_auth.audit"):
        dispatcher.emit(AuthEvent(action=AuditAction.LOGIN_SUCCESS, user_id=1))
        dispatcher.flush(timeout=5)
        dispatcher.close()

    assert any("audit delivery failed" in r.getMessage() for r in caplog.records)


def test_closed_dispatcher_drops_events():
    sink = RecordingSink()
    dispatcher = AsyncAuditDispatcher(sink, max_workers=1)
    dispatcher.close()

    dispatcher.emit(AuthEvent(action=AuditAction.LOGIN_SUCCESS, user_id=1))
    assert sink.events == []
