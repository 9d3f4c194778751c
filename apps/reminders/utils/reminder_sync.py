"""Keep an appointment's queue entries in line with its state and templates.

Called whenever the booking side creates, edits, completes, cancels or
deletes an appointment, and in bulk for a whole barbershop when its
templates change. Every call is idempotent: re-running it for an unchanged
appointment leaves at most one open entry per notification kind.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flask import current_app

from apps.reminders.utils.errors import TenantNotFound
from apps.reminders.utils.queue_store import OPEN_STATUSES, QueueStore, get_queue_store
from apps.reminders.utils.repositories import get_barbershop, list_appointments_since
from apps.reminders.utils.templates import (
    SURVEY_QUEUE_SUFFIX,
    MessageTemplate,
    NotificationKind,
    match_by_kind,
    normalize_text,
    primary_kind,
    queue_types_for_kind,
    templates_for_barbershop,
)
from apps.reminders.utils.time import utc_now


REASON_APPOINTMENT_CANCELLED = 'appointment cancelled'
REASON_APPOINTMENT_COMPLETED = 'appointment completed'
REASON_REMINDER_DISABLED = 'reminder disabled or without lead time'
REASON_SURVEY_DISABLED = 'survey disabled'
REASON_INSUFFICIENT_LEAD_TIME = 'insufficient lead time'
REASON_APPOINTMENT_DELETED = 'appointment deleted'


def _survey_delay_hours() -> int:
    return int(current_app.config.get('REMINDER_SURVEY_DELAY_HOURS', 24))


def survey_queue_type(survey_template: MessageTemplate, reminder_queue_type: Optional[str]) -> str:
    """Queue type for the survey, never equal to the reminder's one."""
    queue_type = survey_template.queue_type(NotificationKind.SURVEY)
    if not reminder_queue_type or normalize_text(queue_type) != normalize_text(reminder_queue_type):
        return queue_type
    if survey_template.name and normalize_text(survey_template.name) != normalize_text(reminder_queue_type):
        return survey_template.name
    return f"{queue_type}{SURVEY_QUEUE_SUFFIX}"


def active_templates(templates: List[MessageTemplate]) -> Tuple[Optional[MessageTemplate], Optional[MessageTemplate]]:
    """The (reminder, survey) templates that currently produce queue entries."""
    reminder_template = match_by_kind(
        templates,
        NotificationKind.REMINDER,
        require_enabled=True,
        require_positive_reminder_window=True,
    )
    survey_template = match_by_kind(templates, NotificationKind.SURVEY, require_enabled=True)
    return reminder_template, survey_template


def active_queue_types(templates: List[MessageTemplate]) -> Dict[str, NotificationKind]:
    """Map each queue type the sync currently writes to its notification kind."""
    reminder_template, survey_template = active_templates(templates)
    types: Dict[str, NotificationKind] = {}
    reminder_type = None
    if reminder_template:
        reminder_type = reminder_template.queue_type(NotificationKind.REMINDER)
        types[reminder_type] = NotificationKind.REMINDER
    if survey_template:
        types[survey_queue_type(survey_template, reminder_type)] = NotificationKind.SURVEY
    return types


class _AppointmentQueue:
    """Open queue entries of one appointment, grouped by notification kind."""

    def __init__(self, store: QueueStore, barbershop_id: str, appointment_id: str,
                 templates: List[MessageTemplate]):
        self.store = store
        self.barbershop_id = barbershop_id
        self.appointment_id = appointment_id
        self.templates = templates
        self.entries = store.list_for_appointment(appointment_id)
        self.open_types = [e.notification_type for e in self.entries if e.status in OPEN_STATUSES]
        self.cancelled: List[str] = []

    def has_cancelled(self, notification_type: str) -> bool:
        return notification_type in self.cancelled or any(
            e.notification_type == notification_type and e.status == 'cancelled' for e in self.entries
        )

    def types_of_kind(self, kind: NotificationKind, keep: Optional[str] = None) -> List[str]:
        known = set(queue_types_for_kind(self.templates, kind))
        return [
            t for t in self.open_types
            if t != keep and (t in known or primary_kind(t) == kind) and t not in self.cancelled
        ]

    def cancel_kind(self, kind: NotificationKind, reason: str, keep: Optional[str] = None):
        # ``keep`` is the other kind's active queue type; cancelling it would
        # make the upsert that follows a no-op.
        for notification_type in self.types_of_kind(kind, keep=keep):
            if self.store.cancel_by_key(self.barbershop_id, self.appointment_id, notification_type, reason):
                self.cancelled.append(notification_type)


def sync_queue_for_appointment_with_templates(
    appointment,
    templates: Iterable[MessageTemplate],
    barbershop_id: str,
    now: Optional[datetime] = None,
    store: Optional[QueueStore] = None,
) -> Dict[str, Any]:
    """Reconcile one appointment's reminder/survey entries.

    Returns ``{'scheduled': [QueueEntry...], 'cancelled': [notification_type...]}``.
    """
    store = store or get_queue_store()
    now = now or utc_now()
    templates = list(templates)
    scheduled = []

    reminder_template, survey_template = active_templates(templates)
    reminder_type = reminder_template.queue_type(NotificationKind.REMINDER) if reminder_template else None
    survey_type = survey_queue_type(survey_template, reminder_type) if survey_template else None

    queue = _AppointmentQueue(store, barbershop_id, appointment.id, templates)

    if appointment.status == 'cancelled':
        queue.cancel_kind(NotificationKind.REMINDER, REASON_APPOINTMENT_CANCELLED)
        queue.cancel_kind(NotificationKind.SURVEY, REASON_APPOINTMENT_CANCELLED)
        return {'scheduled': scheduled, 'cancelled': queue.cancelled}

    start_time = appointment.start_time

    if appointment.status == 'completed':
        queue.cancel_kind(NotificationKind.REMINDER, REASON_APPOINTMENT_COMPLETED, keep=survey_type)
    elif reminder_template is None:
        queue.cancel_kind(NotificationKind.REMINDER, REASON_REMINDER_DISABLED, keep=survey_type)
    else:
        scheduled_for = start_time - timedelta(hours=reminder_template.reminder_hours_before)
        if scheduled_for <= now:
            queue.cancel_kind(NotificationKind.REMINDER, REASON_INSUFFICIENT_LEAD_TIME, keep=survey_type)
            # Leave one cancelled entry behind so operators see why no reminder went out.
            already_cancelled = queue.has_cancelled(reminder_type)
            entry = store.upsert(
                barbershop_id, appointment.id, reminder_type, scheduled_for,
                status='cancelled', now=now, last_error=REASON_INSUFFICIENT_LEAD_TIME,
            )
            if entry.status == 'cancelled' and not already_cancelled:
                queue.cancelled.append(reminder_type)
        else:
            scheduled.append(store.upsert(barbershop_id, appointment.id, reminder_type, scheduled_for, now=now))

    if survey_template is None:
        queue.cancel_kind(NotificationKind.SURVEY, REASON_SURVEY_DISABLED, keep=reminder_type)
    else:
        scheduled_for = start_time + timedelta(hours=_survey_delay_hours())
        scheduled.append(store.upsert(barbershop_id, appointment.id, survey_type, scheduled_for, now=now))

    return {'scheduled': scheduled, 'cancelled': queue.cancelled}


def sync_queue_for_appointment(appointment, now: Optional[datetime] = None,
                               store: Optional[QueueStore] = None) -> Optional[Dict[str, Any]]:
    """Appointment hook: resolve the tenant's templates, then reconcile."""
    barbershop_id = getattr(appointment, 'barbershop_id', None)
    barbershop = get_barbershop(barbershop_id)
    if not barbershop:
        current_app.logger.warning(
            "Skipping reminder sync for appointment %s: barbershop %s not found",
            appointment.id,
            barbershop_id,
        )
        return None
    return sync_queue_for_appointment_with_templates(
        appointment,
        templates_for_barbershop(barbershop),
        barbershop.id,
        now=now,
        store=store,
    )


def remove_queue_for_appointment(appointment_id: str, notification_type: Optional[str] = None,
                                 store: Optional[QueueStore] = None) -> int:
    """Appointment deleted: cancel its open entries, keep the rows."""
    store = store or get_queue_store()
    return store.remove_for_appointment(appointment_id, notification_type, REASON_APPOINTMENT_DELETED)


def sync_queue_for_barbershop(barbershop_id: str, now: Optional[datetime] = None,
                              store: Optional[QueueStore] = None) -> Dict[str, int]:
    """Resync every appointment that can still produce a notification.

    The window starts one survey delay in the past: older appointments have
    nothing left to send.
    """
    barbershop = get_barbershop(barbershop_id)
    if not barbershop:
        raise TenantNotFound(barbershop_id)

    store = store or get_queue_store()
    now = now or utc_now()
    templates = templates_for_barbershop(barbershop)
    window_start = now - timedelta(hours=_survey_delay_hours())

    summary = {'appointments': 0, 'scheduled': 0, 'cancelled': 0}
    for appointment in list_appointments_since(barbershop.id, window_start):
        result = sync_queue_for_appointment_with_templates(appointment, templates, barbershop.id, now=now, store=store)
        summary['appointments'] += 1
        summary['scheduled'] += len(result['scheduled'])
        summary['cancelled'] += len(result['cancelled'])

    current_app.logger.info(
        "Reminder queue resynced for barbershop %s: %s appointments, %s scheduled, %s cancelled",
        barbershop.id,
        summary['appointments'],
        summary['scheduled'],
        summary['cancelled'],
    )
    return summary
