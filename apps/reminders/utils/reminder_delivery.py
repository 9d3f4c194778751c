"""Deliver due WhatsApp reminders and surveys for one barbershop at a time.

Shared by the manual ``/api/reminders/run`` endpoints and the background
reminder_worker.py. Entries are drained earliest-due first, one gateway call
at a time; a failing entry is marked ``error`` and the batch moves on.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import current_app

from apps.reminders import db
from apps.reminders.utils.errors import TenantNotFound
from apps.reminders.utils.message_log import MessageLogRecord, MessageLogSink, get_message_log
from apps.reminders.utils.queue_store import QueueEntry, QueueStore, get_queue_store
from apps.reminders.utils.reminder_sync import active_queue_types
from apps.reminders.utils.repositories import (
    get_appointments_by_ids,
    get_barbershop,
    list_barbers,
    list_barbershops,
    list_services,
)
from apps.reminders.utils.templates import (
    MessageTemplate,
    NotificationKind,
    primary_kind,
    resolve_for_delivery,
    templates_for_barbershop,
)
from apps.reminders.utils.time import to_local, utc_now
from apps.reminders.utils.whatsapp_gateway import resolve_credentials, send_whatsapp_message


REASON_APPOINTMENT_NOT_FOUND = 'appointment not found'
REASON_TEMPLATE_MISSING = 'template disabled or not found'
REASON_APPOINTMENT_CANCELLED = 'appointment cancelled'
REASON_APPOINTMENT_COMPLETED = 'appointment completed'
REASON_MISSING_CONTACT = 'missing contact'
REASON_INSUFFICIENT_LEAD_TIME = 'insufficient lead time'
REASON_ALREADY_STARTED = 'appointment already started'

DEFAULT_BARBER_NAME = 'Barbeiro'
DEFAULT_BARBERSHOP_NAME = 'sua barbearia'

PLACEHOLDER_PATTERN = re.compile(r'\{(\w+)\}')

_KIND_LABELS = {
    NotificationKind.REMINDER: 'Reminder',
    NotificationKind.SURVEY: 'Survey',
    NotificationKind.CONFIRMATION: 'Confirmation',
}


# -- Rendering ------------------------------------------------------------------

def format_currency(value) -> str:
    """Brazilian real: ``R$ 1.234,50``."""
    try:
        amount = Decimal(str(value if value is not None else 0)).quantize(Decimal('0.01'))
    except InvalidOperation:
        amount = Decimal('0.00')
    text = f"{amount:,.2f}"
    return 'R$ ' + text.replace(',', '_').replace('.', ',').replace('_', '.')


def format_address(barbershop) -> str:
    """``street, number complement - neighborhood - city - state``."""
    if not barbershop:
        return ''
    parts = {k: (v or '').strip() for k, v in barbershop.address_parts().items()}
    line = ', '.join(p for p in (parts['street'], parts['number']) if p)
    if parts['complement']:
        line = f"{line} {parts['complement']}".strip()
    rest = ' - '.join(p for p in (parts['neighborhood'], parts['city'], parts['state']) if p)
    return ' - '.join(p for p in (line, rest) if p)


def render_message(content: str, context: Dict[str, Any]) -> str:
    """Replace ``{token}`` placeholders; unknown or empty tokens become ''."""
    return PLACEHOLDER_PATTERN.sub(lambda m: str(context.get(m.group(1)) or ''), content or '')


def build_message_context(appointment, barbershop, barber_map: Dict[str, str],
                          service_map: Dict[str, Any]) -> Dict[str, str]:
    services = [service_map[sid] for sid in (appointment.service_ids or []) if sid in service_map]
    total = sum((Decimal(str(s.price or 0)) for s in services), Decimal('0'))
    tz_name = current_app.config.get('REMINDER_DISPLAY_TIMEZONE', 'America/Sao_Paulo')
    local_start = to_local(appointment.start_time, tz_name)
    return {
        'cliente': appointment.client_name,
        'servico': ', '.join(s.name for s in services),
        'valor': format_currency(total),
        'data': local_start.strftime('%d/%m/%Y'),
        'horario': local_start.strftime('%H:%M'),
        'barbeiro': barber_map.get(appointment.barber_id) or DEFAULT_BARBER_NAME,
        'barbearia': barbershop.name or DEFAULT_BARBERSHOP_NAME,
        'endereco': format_address(barbershop),
    }


# -- Entry transitions ------------------------------------------------------------

def _mark_sent(store: QueueStore, entry: QueueEntry, now: datetime):
    store.update_status(entry.id, 'sent', attempts=entry.attempts + 1, last_error=None, sent_at=now)


def _mark_cancelled(store: QueueStore, entry: QueueEntry, reason: str):
    store.update_status(entry.id, 'cancelled', last_error=reason)


def _mark_failed(store: QueueStore, entry: QueueEntry, reason: str):
    store.update_status(entry.id, 'error', attempts=entry.attempts + 1, last_error=reason)


def _entry_kind(notification_type: str, templates: List[MessageTemplate],
                active_types: Dict[str, NotificationKind],
                template: Optional[MessageTemplate]) -> Optional[NotificationKind]:
    """Kind the entry was queued as, taken from the template key that wrote it.

    A name such as "Lembrete Pesquisa" classifies as both kinds, so the text
    alone only decides when no template key matches.
    """
    if notification_type in active_types:
        return active_types[notification_type]
    # Reminder first: its checks are the stricter ones.
    for kind in (NotificationKind.REMINDER, NotificationKind.SURVEY):
        if any(t.matches(kind) and t.queue_type(kind) == notification_type for t in templates):
            return kind
    kind = primary_kind(notification_type)
    if kind is None and template is not None:
        kind = template.kind
    return kind


def _check_entry(entry: QueueEntry, appointment, template, kind, now: datetime):
    """First failed precondition as ``(status, reason)``, or ``None`` to send."""
    if appointment is None:
        return 'cancelled', REASON_APPOINTMENT_NOT_FOUND
    if template is None:
        return 'cancelled', REASON_TEMPLATE_MISSING
    if appointment.status == 'cancelled':
        return 'cancelled', REASON_APPOINTMENT_CANCELLED
    is_reminder = kind == NotificationKind.REMINDER
    if appointment.status == 'completed' and is_reminder:
        return 'cancelled', REASON_APPOINTMENT_COMPLETED
    if not appointment.client_phone:
        return 'error', REASON_MISSING_CONTACT
    if is_reminder and entry.created_at and entry.created_at > entry.scheduled_for:
        return 'cancelled', REASON_INSUFFICIENT_LEAD_TIME
    if is_reminder and appointment.start_time <= now:
        return 'cancelled', REASON_ALREADY_STARTED
    return None


def _log(barbershop_id, entry, appointment, status, message, details=None, now=None) -> MessageLogRecord:
    return MessageLogRecord(
        barbershop_id=barbershop_id,
        appointment_id=entry.appointment_id,
        client_name=getattr(appointment, 'client_name', None),
        client_phone=getattr(appointment, 'client_phone', None),
        notification_type=entry.notification_type,
        status=status,
        message=message,
        details=details,
        sent_at=now or utc_now(),
    )


def _result(entry: QueueEntry, status: str, message: Optional[str] = None) -> Dict[str, Any]:
    return {
        'entry_id': entry.id,
        'appointment_id': entry.appointment_id,
        'notification_type': entry.notification_type,
        'status': status,
        'success': status == 'sent',
        'message': message,
    }


# -- Main entry points --------------------------------------------------------------

def process_queue_for_barbershop(
    barbershop_id: str,
    now: Optional[datetime] = None,
    store: Optional[QueueStore] = None,
    message_log: Optional[MessageLogSink] = None,
) -> Dict[str, Any]:
    """Send every due entry of one barbershop.

    Returns ``{'message', 'barbershop_id', 'processed', 'skipped', 'results'}``:
    ``processed`` counts gateway attempts, ``skipped`` counts entries dropped
    by a validation check and ``results`` holds one outcome per due entry.

    Raises:
        TenantNotFound: the barbershop does not exist.
        SQLAlchemyError: the queue table exists but the database failed.
            Records logged before the failure are still written.
    """
    barbershop = get_barbershop(barbershop_id)
    if not barbershop:
        raise TenantNotFound(barbershop_id)

    store = store or get_queue_store()
    message_log = message_log or get_message_log()
    now = now or utc_now()

    entries = store.list_due(barbershop.id, now)
    if not entries:
        return {
            'message': 'No pending messages to send.',
            'barbershop_id': barbershop.id,
            'processed': 0,
            'skipped': 0,
            'results': [],
        }

    templates = templates_for_barbershop(barbershop)
    active_types = active_queue_types(templates)
    appointment_map = {a.id: a for a in get_appointments_by_ids(e.appointment_id for e in entries)}
    barber_map = {b.id: b.name for b in list_barbers(barbershop.id)}
    service_map = {s.id: s for s in list_services(barbershop.id)}
    credentials = resolve_credentials(barbershop)

    results: List[Dict[str, Any]] = []
    logs: List[MessageLogRecord] = []
    processed = 0

    try:
        for entry in entries:
            appointment = appointment_map.get(entry.appointment_id)
            template = resolve_for_delivery(templates, entry.notification_type) if appointment else None
            kind = _entry_kind(entry.notification_type, templates, active_types, template)
            label = _KIND_LABELS.get(kind, 'Message')

            failure = _check_entry(entry, appointment, template, kind, now)
            if failure:
                status, reason = failure
                if status == 'error':
                    _mark_failed(store, entry, reason)
                    logs.append(_log(
                        barbershop.id, entry, appointment, 'error', f"{label} not sent: {reason}", now=now,
                    ))
                else:
                    _mark_cancelled(store, entry, reason)
                    logs.append(_log(
                        barbershop.id, entry, appointment, 'skipped', f"{label} skipped: {reason}", now=now,
                    ))
                results.append(_result(entry, status, reason))
                continue

            processed += 1
            try:
                message = render_message(
                    template.content,
                    build_message_context(appointment, barbershop, barber_map, service_map),
                )
                outcome = send_whatsapp_message(credentials, appointment.client_phone, message)
            except Exception as exc:
                current_app.logger.exception("Reminder %s failed before reaching the gateway", entry.id)
                outcome = {'success': False, 'status_code': None, 'error': str(exc)[:240]}
                message = None

            if outcome.get('success'):
                logs.append(_log(
                    barbershop.id, entry, appointment, 'success', message,
                    details=f"Sent. Scheduled for: {entry.scheduled_for.isoformat()}",
                    now=now,
                ))
                _mark_sent(store, entry, now)
                results.append(_result(entry, 'sent'))
            else:
                error = outcome.get('error') or 'failed to send message'
                _mark_failed(store, entry, error)
                logs.append(_log(
                    barbershop.id, entry, appointment, 'error', error,
                    details=f"HTTP {outcome['status_code']}" if outcome.get('status_code') else None,
                    now=now,
                ))
                results.append(_result(entry, 'error', error))
    finally:
        # Queue errors other than a missing table abort the run; keep what was logged.
        message_log.append(logs)

    skipped = sum(1 for record in logs if record.status == 'skipped')

    current_app.logger.info(
        "Reminder run for barbershop %s: %s due, %s processed, %s skipped",
        barbershop.id,
        len(entries),
        processed,
        skipped,
    )
    return {
        'message': 'Message run finished.',
        'barbershop_id': barbershop.id,
        'processed': processed,
        'skipped': skipped,
        'results': results,
    }


def run_for_all_barbershops(
    now: Optional[datetime] = None,
    store: Optional[QueueStore] = None,
    message_log: Optional[MessageLogSink] = None,
) -> Dict[str, Any]:
    """Run every barbershop; one barbershop failing does not stop the others."""
    now = now or utc_now()
    summary: Dict[str, Any] = {'processed': 0, 'skipped': 0, 'barbershops': []}

    for barbershop in list_barbershops():
        try:
            result = process_queue_for_barbershop(barbershop.id, now=now, store=store, message_log=message_log)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Reminder run failed for barbershop %s", barbershop.id)
            summary['barbershops'].append({
                'barbershop_id': barbershop.id,
                'success': False,
                'error': str(exc)[:240],
            })
            continue
        summary['processed'] += result['processed']
        summary['skipped'] += result['skipped']
        summary['barbershops'].append({
            'barbershop_id': barbershop.id,
            'success': True,
            'processed': result['processed'],
            'skipped': result['skipped'],
        })

    return summary
