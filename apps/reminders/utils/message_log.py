"""Append-only delivery log with the same in-memory fallback as the queue.

The durable sink writes ``message_logs`` rows; when that table is missing the
records go to a bounded in-memory list (newest first, oldest dropped).
"""
from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from apps.reminders import db
from apps.reminders.models.message_log import MessageLog
from apps.reminders.utils.queue_store import StoreResult
from apps.reminders.utils.time import utc_now


LOG_STATUSES = ('success', 'error', 'skipped')
DEFAULT_MEMORY_LIMIT = 200
DEFAULT_LIST_LIMIT = 200


@dataclass
class MessageLogRecord:
    barbershop_id: str
    status: str
    message: str
    appointment_id: Optional[str] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    notification_type: Optional[str] = None
    details: Optional[str] = None
    sent_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'barbershop_id': self.barbershop_id,
            'appointment_id': self.appointment_id,
            'client_name': self.client_name,
            'client_phone': self.client_phone,
            'notification_type': self.notification_type,
            'status': self.status,
            'message': self.message,
            'details': self.details,
            'sent_at': self.sent_at.isoformat() if self.sent_at else None,
        }


class SqlLogBackend:
    name = 'database'

    def append(self, records: List[MessageLogRecord]) -> StoreResult:
        try:
            db.session.add_all([
                MessageLog(
                    id=r.id,
                    barbershop_id=r.barbershop_id,
                    appointment_id=r.appointment_id,
                    client_name=r.client_name,
                    client_phone=r.client_phone,
                    notification_type=r.notification_type,
                    status=r.status,
                    message=r.message,
                    details=r.details,
                    sent_at=r.sent_at,
                )
                for r in records
            ])
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            return StoreResult.unavailable(exc)
        return StoreResult.success(len(records))

    def list(self, barbershop_id=None, limit=DEFAULT_LIST_LIMIT) -> StoreResult:
        try:
            q = MessageLog.query
            if barbershop_id:
                q = q.filter(MessageLog.barbershop_id == barbershop_id)
            rows = q.order_by(MessageLog.sent_at.desc()).limit(limit).all()
        except SQLAlchemyError as exc:
            db.session.rollback()
            return StoreResult.unavailable(exc)
        return StoreResult.success([
            MessageLogRecord(
                id=row.id,
                barbershop_id=row.barbershop_id,
                appointment_id=row.appointment_id,
                client_name=row.client_name,
                client_phone=row.client_phone,
                notification_type=row.notification_type,
                status=row.status,
                message=row.message,
                details=row.details,
                sent_at=row.sent_at,
            )
            for row in rows
        ])


class MemoryLogBackend:
    name = 'memory'

    def __init__(self, max_entries: int = DEFAULT_MEMORY_LIMIT):
        self._records = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def append(self, records: List[MessageLogRecord]) -> StoreResult:
        with self._lock:
            for record in records:
                self._records.appendleft(record)
        return StoreResult.success(len(records))

    def list(self, barbershop_id=None, limit=DEFAULT_LIST_LIMIT) -> StoreResult:
        with self._lock:
            records = [r for r in self._records if not barbershop_id or r.barbershop_id == barbershop_id]
        records.sort(key=lambda r: r.sent_at, reverse=True)
        return StoreResult.success(records[:limit])


class MessageLogSink:
    def __init__(self, primary, fallback=None):
        self.primary = primary
        self.fallback = fallback

    def _call(self, operation, *args):
        result = getattr(self.primary, operation)(*args)
        if result.error_kind == 'unavailable' and self.fallback is not None:
            current_app.logger.warning(
                "Message log %s failed on %s (%s); using %s fallback",
                operation,
                self.primary.name,
                result.error,
                self.fallback.name,
            )
            result = getattr(self.fallback, operation)(*args)
        return result

    def append(self, records: Iterable[MessageLogRecord]) -> int:
        """Write every record of a run in one go. Never raises for storage."""
        records = list(records)
        if not records:
            return 0
        result = self._call('append', records)
        if not result.ok:
            current_app.logger.error("Could not record %s message log entries: %s", len(records), result.error)
            return 0
        return result.value

    def list(self, barbershop_id: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[MessageLogRecord]:
        """Newest first."""
        result = self._call('list', barbershop_id, limit)
        return result.value if result.ok else []


def build_message_log(backend: str, memory_limit: int = DEFAULT_MEMORY_LIMIT) -> MessageLogSink:
    memory = MemoryLogBackend(max_entries=memory_limit)
    if backend == 'memory':
        return MessageLogSink(memory)
    return MessageLogSink(SqlLogBackend(), fallback=memory)


def init_app(app):
    app.extensions['reminder_log'] = build_message_log(
        app.config.get('REMINDER_QUEUE_BACKEND', 'database'),
        int(app.config.get('REMINDER_LOG_MEMORY_LIMIT', DEFAULT_MEMORY_LIMIT) or DEFAULT_MEMORY_LIMIT),
    )


def get_message_log() -> MessageLogSink:
    return current_app.extensions['reminder_log']


def list_logs(barbershop_id: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[MessageLogRecord]:
    return get_message_log().list(barbershop_id, limit)
