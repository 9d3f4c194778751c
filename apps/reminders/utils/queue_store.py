"""Reminder queue storage with a transparent in-memory fallback.

Two backends implement the same operations and report failures as a
``StoreResult`` instead of raising:

- ``SqlQueueBackend`` persists rows in ``reminder_queue``. A missing table
  (the migration has not run yet) comes back as
  ``error_kind='unavailable'``; every other database error is rolled back
  and raised to the caller.
- ``MemoryQueueBackend`` keeps entries in a per-process dict. Queue state is
  lost on restart.

``QueueStore`` is what the rest of the engine talks to. It runs every
operation on its primary backend and, when the primary reports
``unavailable``, logs a warning and replays the same call on the fallback.
Which backends are wired together is decided in ``init_app`` from
``REMINDER_QUEUE_BACKEND``; nothing here is a module-level singleton.
"""
from __future__ import annotations

import functools
import itertools
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError, SQLAlchemyError

from apps.reminders import db
from apps.reminders.models.reminder_queue import ReminderQueueEntry
from apps.reminders.utils.errors import StoreUnavailable
from apps.reminders.utils.time import utc_now


OPEN_STATUSES = ('pending', 'error')

MANUAL_CANCEL_REASON = 'cancelled manually'

UNSET: Any = object()


@dataclass
class QueueEntry:
    id: str
    barbershop_id: str
    appointment_id: str
    notification_type: str
    scheduled_for: datetime
    status: str = 'pending'
    attempts: int = 0
    last_error: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'barbershop_id': self.barbershop_id,
            'appointment_id': self.appointment_id,
            'notification_type': self.notification_type,
            'scheduled_for': self.scheduled_for.isoformat() if self.scheduled_for else None,
            'status': self.status,
            'attempts': self.attempts,
            'last_error': self.last_error,
            'sent_at': self.sent_at.isoformat() if self.sent_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class StoreResult:
    value: Any = None
    error_kind: Optional[str] = None  # unavailable | not_found
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @classmethod
    def success(cls, value=None) -> 'StoreResult':
        return cls(value=value)

    @classmethod
    def unavailable(cls, exc: Exception) -> 'StoreResult':
        return cls(error_kind='unavailable', error=str(exc)[:240])

    @classmethod
    def not_found(cls) -> 'StoreResult':
        return cls(error_kind='not_found')


def _upsert_plan(rows, status: str, scheduled_for: datetime):
    """Where an upsert lands among the rows stored for its key.

    ``rows`` are in creation order. Returns ``('update', row)``,
    ``('keep', row)`` or ``('create', None)``:

    - an open (pending/error) row is rescheduled in place;
    - a sent row is kept as is;
    - a cancelled upsert reuses the latest cancelled row instead of adding one;
    - otherwise cancelled rows do not block a new pending entry, except an
      operator cancel of the very same slot.
    """
    for row in rows:
        if row.status in OPEN_STATUSES:
            return 'update', row
    for row in rows:
        if row.status == 'sent':
            return 'keep', row
    cancelled = [row for row in rows if row.status == 'cancelled']
    if status == 'cancelled' and cancelled:
        return 'keep', cancelled[-1]
    for row in cancelled:
        if row.last_error == MANUAL_CANCEL_REASON and row.scheduled_for == scheduled_for:
            return 'keep', row
    return 'create', None


_MISSING_TABLE_MARKERS = ('no such table', 'does not exist', "doesn't exist", 'undefinedtable')


def _is_missing_table(exc: SQLAlchemyError) -> bool:
    """True for "table not created yet" errors, the only case the fallback covers."""
    if not isinstance(exc, (ProgrammingError, OperationalError)):
        return False
    message = str(getattr(exc, 'orig', None) or exc).lower()
    return any(marker in message for marker in _MISSING_TABLE_MARKERS)


class QueueBackend(ABC):
    name = 'backend'

    @abstractmethod
    def upsert(self, barbershop_id, appointment_id, notification_type, scheduled_for, status='pending', now=None,
               last_error=None) -> StoreResult:
        ...

    @abstractmethod
    def list_due(self, barbershop_id, as_of) -> StoreResult:
        ...

    @abstractmethod
    def list_all(self, barbershop_id, status=None) -> StoreResult:
        ...

    @abstractmethod
    def list_for_appointment(self, appointment_id) -> StoreResult:
        ...

    @abstractmethod
    def get(self, entry_id) -> StoreResult:
        ...

    @abstractmethod
    def update_status(self, entry_id, status, attempts=UNSET, last_error=UNSET, sent_at=UNSET) -> StoreResult:
        ...

    @abstractmethod
    def cancel_by_key(self, barbershop_id, appointment_id, notification_type, reason=None) -> StoreResult:
        ...

    @abstractmethod
    def remove_for_appointment(self, appointment_id, notification_type=None, reason=None) -> StoreResult:
        ...

    @abstractmethod
    def cancel_by_id(self, entry_id, reason=None) -> StoreResult:
        ...


# -- Durable backend -----------------------------------------------------------

def _entry_from_row(row: ReminderQueueEntry) -> QueueEntry:
    return QueueEntry(
        id=row.id,
        barbershop_id=row.barbershop_id,
        appointment_id=row.appointment_id,
        notification_type=row.notification_type,
        scheduled_for=row.scheduled_for,
        status=row.status,
        attempts=row.attempts or 0,
        last_error=row.last_error,
        sent_at=row.sent_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _guarded(method):
    """Report a missing table as ``unavailable``; re-raise anything else."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            db.session.rollback()
            if not _is_missing_table(exc):
                raise
            return StoreResult.unavailable(exc)
    return wrapper


class SqlQueueBackend(QueueBackend):
    name = 'database'

    def _locked(self, query):
        # Postgres: lock the row for the read-modify-write. SQLite has no
        # FOR UPDATE, the single writer there is fine.
        if db.engine.dialect.name == 'postgresql':
            query = query.with_for_update()
        return query

    def _upsert_row(self, barbershop_id, appointment_id, notification_type, scheduled_for, status, now, last_error):
        rows = self._locked(ReminderQueueEntry.query.filter_by(
            appointment_id=appointment_id,
            notification_type=notification_type,
        ).order_by(ReminderQueueEntry.created_at.asc())).all()
        action, existing = _upsert_plan(rows, status, scheduled_for)
        if action == 'keep':
            db.session.rollback()
            return existing
        if action == 'update':
            existing.scheduled_for = scheduled_for
            existing.status = status
            if last_error is not None:
                existing.last_error = last_error
            existing.updated_at = now
            db.session.commit()
            return existing
        row = ReminderQueueEntry(
            barbershop_id=barbershop_id,
            appointment_id=appointment_id,
            notification_type=notification_type,
            scheduled_for=scheduled_for,
            status=status,
            attempts=0,
            last_error=last_error,
            created_at=now,
            updated_at=now,
        )
        db.session.add(row)
        db.session.commit()
        return row

    @_guarded
    def upsert(self, barbershop_id, appointment_id, notification_type, scheduled_for, status='pending', now=None,
               last_error=None):
        now = now or utc_now()
        args = (barbershop_id, appointment_id, notification_type, scheduled_for, status, now, last_error)
        try:
            row = self._upsert_row(*args)
        except IntegrityError:
            # A concurrent sync opened the same key first; merge into it.
            db.session.rollback()
            row = self._upsert_row(*args)
        return StoreResult.success(_entry_from_row(row))

    @_guarded
    def list_due(self, barbershop_id, as_of):
        rows = ReminderQueueEntry.query.filter(
            ReminderQueueEntry.barbershop_id == barbershop_id,
            ReminderQueueEntry.status == 'pending',
            ReminderQueueEntry.scheduled_for <= as_of,
        ).order_by(
            ReminderQueueEntry.scheduled_for.asc(),
            ReminderQueueEntry.created_at.asc(),
        ).all()
        return StoreResult.success([_entry_from_row(r) for r in rows])

    @_guarded
    def list_all(self, barbershop_id, status=None):
        q = ReminderQueueEntry.query.filter(ReminderQueueEntry.barbershop_id == barbershop_id)
        if status:
            q = q.filter(ReminderQueueEntry.status == status)
        rows = q.order_by(
            ReminderQueueEntry.scheduled_for.asc(),
            ReminderQueueEntry.created_at.asc(),
        ).all()
        return StoreResult.success([_entry_from_row(r) for r in rows])

    @_guarded
    def list_for_appointment(self, appointment_id):
        rows = ReminderQueueEntry.query.filter_by(appointment_id=appointment_id).order_by(
            ReminderQueueEntry.scheduled_for.asc(),
        ).all()
        return StoreResult.success([_entry_from_row(r) for r in rows])

    @_guarded
    def get(self, entry_id):
        row = db.session.get(ReminderQueueEntry, entry_id)
        if not row:
            return StoreResult.not_found()
        return StoreResult.success(_entry_from_row(row))

    @_guarded
    def update_status(self, entry_id, status, attempts=UNSET, last_error=UNSET, sent_at=UNSET):
        row = self._locked(ReminderQueueEntry.query.filter_by(id=entry_id)).first()
        if not row:
            db.session.rollback()
            return StoreResult.not_found()
        row.status = status
        if attempts is not UNSET:
            row.attempts = attempts
        if last_error is not UNSET:
            row.last_error = last_error[:240] if last_error else None
        if sent_at is not UNSET:
            row.sent_at = sent_at
        row.updated_at = utc_now()
        db.session.commit()
        return StoreResult.success(_entry_from_row(row))

    def _cancel_where(self, filters, reason):
        count = ReminderQueueEntry.query.filter(
            *filters,
            ReminderQueueEntry.status.in_(OPEN_STATUSES),
        ).update({
            'status': 'cancelled',
            'last_error': reason,
            'updated_at': utc_now(),
        }, synchronize_session=False)
        db.session.commit()
        return count

    @_guarded
    def cancel_by_key(self, barbershop_id, appointment_id, notification_type, reason=None):
        count = self._cancel_where([
            ReminderQueueEntry.barbershop_id == barbershop_id,
            ReminderQueueEntry.appointment_id == appointment_id,
            ReminderQueueEntry.notification_type == notification_type,
        ], reason)
        return StoreResult.success(count)

    @_guarded
    def remove_for_appointment(self, appointment_id, notification_type=None, reason=None):
        filters = [ReminderQueueEntry.appointment_id == appointment_id]
        if notification_type:
            filters.append(ReminderQueueEntry.notification_type == notification_type)
        return StoreResult.success(self._cancel_where(filters, reason or MANUAL_CANCEL_REASON))

    @_guarded
    def cancel_by_id(self, entry_id, reason=None):
        if not db.session.get(ReminderQueueEntry, entry_id):
            return StoreResult.not_found()
        count = self._cancel_where([ReminderQueueEntry.id == entry_id], reason or MANUAL_CANCEL_REASON)
        return StoreResult.success(count)


# -- In-memory backend ---------------------------------------------------------

class MemoryQueueBackend(QueueBackend):
    """Process-local queue; every mutation happens under one lock."""

    name = 'memory'

    def __init__(self):
        self._entries: Dict[str, QueueEntry] = {}
        self._order: Dict[str, int] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def _sorted(self, entries):
        return sorted(
            (replace(e) for e in entries),
            key=lambda e: (e.scheduled_for, self._order[e.id]),
        )

    def upsert(self, barbershop_id, appointment_id, notification_type, scheduled_for, status='pending', now=None,
               last_error=None):
        now = now or utc_now()
        with self._lock:
            rows = sorted(
                (e for e in self._entries.values()
                 if e.appointment_id == appointment_id and e.notification_type == notification_type),
                key=lambda e: self._order[e.id],
            )
            action, existing = _upsert_plan(rows, status, scheduled_for)
            if action == 'keep':
                return StoreResult.success(replace(existing))
            if action == 'update':
                existing.scheduled_for = scheduled_for
                existing.status = status
                if last_error is not None:
                    existing.last_error = last_error
                existing.updated_at = now
                return StoreResult.success(replace(existing))
            entry = QueueEntry(
                id=str(uuid.uuid4()),
                barbershop_id=barbershop_id,
                appointment_id=appointment_id,
                notification_type=notification_type,
                scheduled_for=scheduled_for,
                status=status,
                attempts=0,
                last_error=last_error,
                created_at=now,
                updated_at=now,
            )
            self._entries[entry.id] = entry
            self._order[entry.id] = next(self._seq)
            return StoreResult.success(replace(entry))

    def list_due(self, barbershop_id, as_of):
        with self._lock:
            due = [
                e for e in self._entries.values()
                if e.barbershop_id == barbershop_id and e.status == 'pending' and e.scheduled_for <= as_of
            ]
            return StoreResult.success(self._sorted(due))

    def list_all(self, barbershop_id, status=None):
        with self._lock:
            entries = [
                e for e in self._entries.values()
                if e.barbershop_id == barbershop_id and (not status or e.status == status)
            ]
            return StoreResult.success(self._sorted(entries))

    def list_for_appointment(self, appointment_id):
        with self._lock:
            entries = [e for e in self._entries.values() if e.appointment_id == appointment_id]
            return StoreResult.success(self._sorted(entries))

    def get(self, entry_id):
        with self._lock:
            entry = self._entries.get(entry_id)
            if not entry:
                return StoreResult.not_found()
            return StoreResult.success(replace(entry))

    def update_status(self, entry_id, status, attempts=UNSET, last_error=UNSET, sent_at=UNSET):
        with self._lock:
            entry = self._entries.get(entry_id)
            if not entry:
                return StoreResult.not_found()
            entry.status = status
            if attempts is not UNSET:
                entry.attempts = attempts
            if last_error is not UNSET:
                entry.last_error = last_error[:240] if last_error else None
            if sent_at is not UNSET:
                entry.sent_at = sent_at
            entry.updated_at = utc_now()
            return StoreResult.success(replace(entry))

    def _cancel_locked(self, predicate, reason):
        now = utc_now()
        count = 0
        for entry in self._entries.values():
            if entry.status in OPEN_STATUSES and predicate(entry):
                entry.status = 'cancelled'
                entry.last_error = reason
                entry.updated_at = now
                count += 1
        return count

    def _cancel_matching(self, predicate, reason):
        with self._lock:
            return self._cancel_locked(predicate, reason)

    def cancel_by_key(self, barbershop_id, appointment_id, notification_type, reason=None):
        count = self._cancel_matching(
            lambda e: (
                e.barbershop_id == barbershop_id
                and e.appointment_id == appointment_id
                and e.notification_type == notification_type
            ),
            reason,
        )
        return StoreResult.success(count)

    def remove_for_appointment(self, appointment_id, notification_type=None, reason=None):
        count = self._cancel_matching(
            lambda e: e.appointment_id == appointment_id and (
                not notification_type or e.notification_type == notification_type
            ),
            reason or MANUAL_CANCEL_REASON,
        )
        return StoreResult.success(count)

    def cancel_by_id(self, entry_id, reason=None):
        with self._lock:
            if entry_id not in self._entries:
                return StoreResult.not_found()
            count = self._cancel_locked(lambda e: e.id == entry_id, reason or MANUAL_CANCEL_REASON)
        return StoreResult.success(count)


# -- Public store --------------------------------------------------------------

# Operations addressing one entry by id: an id minted while running on the
# fallback is unknown to the durable table, so a miss there checks the fallback.
_BY_ID_OPERATIONS = ('get', 'update_status', 'cancel_by_id')


class QueueStore:
    """Queue contract used by the synchronizer, the worker and the routes."""

    def __init__(self, primary: QueueBackend, fallback: Optional[QueueBackend] = None):
        self.primary = primary
        self.fallback = fallback

    @property
    def backend_name(self) -> str:
        return self.primary.name

    def _call(self, operation: str, *args, **kwargs) -> StoreResult:
        result = getattr(self.primary, operation)(*args, **kwargs)
        if result.error_kind == 'unavailable':
            if self.fallback is None:
                raise StoreUnavailable(f"{operation} failed on {self.primary.name}: {result.error}")
            current_app.logger.warning(
                "Reminder queue %s failed on %s (%s); using %s fallback",
                operation,
                self.primary.name,
                result.error,
                self.fallback.name,
            )
            return getattr(self.fallback, operation)(*args, **kwargs)
        if result.error_kind == 'not_found' and self.fallback is not None and operation in _BY_ID_OPERATIONS:
            return getattr(self.fallback, operation)(*args, **kwargs)
        return result

    def upsert(self, barbershop_id: str, appointment_id: str, notification_type: str,
               scheduled_for: datetime, status: str = 'pending',
               now: Optional[datetime] = None, last_error: Optional[str] = None) -> QueueEntry:
        """Create or reschedule the entry for (appointment, type).

        An open row is rescheduled in place and a ``sent`` row is returned
        untouched. A ``cancelled`` row does not block a new pending entry
        unless an operator cancelled that same slot. ``now`` stamps
        ``created_at``/``updated_at`` and defaults to the wall clock.
        """
        return self._call(
            'upsert', barbershop_id, appointment_id, notification_type, scheduled_for, status, now, last_error
        ).value

    def list_due(self, barbershop_id: str, as_of: datetime) -> List[QueueEntry]:
        """Pending entries with ``scheduled_for <= as_of``, earliest first."""
        return self._call('list_due', barbershop_id, as_of).value

    def list_all(self, barbershop_id: str, status: Optional[str] = None) -> List[QueueEntry]:
        return self._call('list_all', barbershop_id, status).value

    def list_for_appointment(self, appointment_id: str) -> List[QueueEntry]:
        return self._call('list_for_appointment', appointment_id).value

    def get(self, entry_id: str) -> Optional[QueueEntry]:
        return self._call('get', entry_id).value

    def update_status(self, entry_id: str, status: str, attempts=UNSET, last_error=UNSET,
                      sent_at=UNSET) -> Optional[QueueEntry]:
        result = self._call('update_status', entry_id, status, attempts, last_error, sent_at)
        if result.error_kind == 'not_found':
            current_app.logger.warning("Reminder queue entry %s not found for status %s", entry_id, status)
        return result.value

    def cancel_by_key(self, barbershop_id: str, appointment_id: str, notification_type: str,
                      reason: Optional[str] = None) -> int:
        return self._call('cancel_by_key', barbershop_id, appointment_id, notification_type, reason).value

    def remove_for_appointment(self, appointment_id: str, notification_type: Optional[str] = None,
                               reason: Optional[str] = None) -> int:
        """Cancel (never delete) the open entries of a deleted appointment."""
        return self._call('remove_for_appointment', appointment_id, notification_type, reason).value

    def cancel_by_id(self, entry_id: str, reason: Optional[str] = None) -> Optional[int]:
        return self._call('cancel_by_id', entry_id, reason).value


def build_queue_store(backend: str) -> QueueStore:
    if backend == 'memory':
        return QueueStore(MemoryQueueBackend())
    return QueueStore(SqlQueueBackend(), fallback=MemoryQueueBackend())


def init_app(app):
    app.extensions['reminder_queue'] = build_queue_store(app.config.get('REMINDER_QUEUE_BACKEND', 'database'))


def get_queue_store() -> QueueStore:
    return current_app.extensions['reminder_queue']
