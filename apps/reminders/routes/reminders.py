"""Reminder queue routes: manual runs, queue inspection and appointment hooks."""
from flask import Blueprint, current_app, jsonify, request

from apps.reminders import db, limiter
from apps.reminders.utils.db_retry import with_db_retry
from apps.reminders.utils.errors import TenantNotFound
from apps.reminders.utils.message_log import list_logs
from apps.reminders.utils.queue_store import MANUAL_CANCEL_REASON, get_queue_store
from apps.reminders.utils.reminder_delivery import process_queue_for_barbershop, run_for_all_barbershops
from apps.reminders.utils.reminder_sync import (
    remove_queue_for_appointment,
    sync_queue_for_appointment,
    sync_queue_for_barbershop,
)
from apps.reminders.utils.repositories import get_appointment, get_appointments_by_ids, get_barbershop


reminders_bp = Blueprint('reminders', __name__, url_prefix='/api/reminders')


def _limit(limit_value):
    """Apply rate limit if limiter is available."""
    def decorator(f):
        if limiter:
            return limiter.limit(limit_value)(f)
        return f
    return decorator


def _run_rate_limit() -> str:
    return current_app.config.get('REMINDER_RUN_RATE_LIMIT') or '30 per minute'


def _barbershop_id_from_request():
    data = request.get_json(silent=True) or {}
    return (
        data.get('barbershop_id')
        or data.get('barbershopId')
        or request.args.get('barbershop_id')
        or ''
    ).strip()


@reminders_bp.route('/run', methods=['POST'])
@_limit(_run_rate_limit)
def run_reminders():
    """Send the due reminders of one barbershop now."""
    barbershop_id = _barbershop_id_from_request()
    if not barbershop_id:
        return jsonify({'error': 'barbershop_id is required'}), 400
    try:
        result = process_queue_for_barbershop(barbershop_id)
        return jsonify(result), 200
    except TenantNotFound as e:
        return jsonify({'error': 'Barbershop not found', 'details': str(e)}), 404
    except Exception as e:
        db.session.rollback()
        current_app.logger.error("Reminder run failed for barbershop %s: %s", barbershop_id, e)
        return jsonify({'error': 'Failed to run reminders', 'details': str(e)}), 500


@reminders_bp.route('/run-all', methods=['POST'])
@_limit(_run_rate_limit)
def run_all_reminders():
    try:
        return jsonify(run_for_all_barbershops()), 200
    except Exception as e:
        db.session.rollback()
        current_app.logger.error("Reminder run for all barbershops failed: %s", e)
        return jsonify({'error': 'Failed to run reminders', 'details': str(e)}), 500


@reminders_bp.route('/queue', methods=['GET'])
@with_db_retry(max_retries=3, initial_delay=0.5)
def list_queue():
    """Queue entries of a barbershop joined with their appointment's client.

    ``sync=1`` resynchronizes the barbershop's appointments first.
    """
    barbershop_id = (request.args.get('barbershop_id') or '').strip()
    if not barbershop_id:
        return jsonify({'error': 'barbershop_id is required'}), 400
    status = (request.args.get('status') or '').strip() or None
    resync = request.args.get('sync', 'false').lower() in ('1', 'true', 'yes')

    try:
        if resync:
            sync_queue_for_barbershop(barbershop_id)
        elif not get_barbershop(barbershop_id):
            raise TenantNotFound(barbershop_id)

        entries = get_queue_store().list_all(barbershop_id, status)
        appointment_map = {a.id: a for a in get_appointments_by_ids(e.appointment_id for e in entries)}

        items = []
        for entry in entries:
            data = entry.to_dict()
            appointment = appointment_map.get(entry.appointment_id)
            data['client_name'] = appointment.client_name if appointment else None
            data['client_phone'] = appointment.client_phone if appointment else None
            data['appointment_start'] = (
                appointment.start_time.isoformat() if appointment and appointment.start_time else None
            )
            items.append(data)

        return jsonify({'count': len(items), 'entries': items}), 200
    except TenantNotFound as e:
        return jsonify({'error': 'Barbershop not found', 'details': str(e)}), 404


@reminders_bp.route('/queue/<string:entry_id>', methods=['DELETE'])
def cancel_queue_entry(entry_id):
    store = get_queue_store()
    try:
        count = store.cancel_by_id(entry_id, MANUAL_CANCEL_REASON)
        if count is None:
            return jsonify({'error': 'Queue entry not found'}), 404
        entry = store.get(entry_id)
        if not count:
            return jsonify({
                'error': 'Queue entry is already sent or cancelled',
                'entry': entry.to_dict() if entry else None,
            }), 409
        return jsonify({'message': 'Queue entry cancelled', 'entry': entry.to_dict() if entry else None}), 200
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': 'Failed to cancel queue entry', 'details': str(e)}), 500


@reminders_bp.route('/appointments/<string:appointment_id>/sync', methods=['POST'])
def sync_appointment(appointment_id):
    """Hook for the booking side after an appointment is created or edited."""
    try:
        appointment = get_appointment(appointment_id)
        if not appointment:
            return jsonify({'error': 'Appointment not found'}), 404
        result = sync_queue_for_appointment(appointment)
        if result is None:
            return jsonify({'error': 'Barbershop not found'}), 404
        return jsonify({
            'appointment_id': appointment.id,
            'scheduled': [e.to_dict() for e in result['scheduled']],
            'cancelled': result['cancelled'],
        }), 200
    except Exception as e:
        db.session.rollback()
        current_app.logger.error("Reminder sync failed for appointment %s: %s", appointment_id, e)
        return jsonify({'error': 'Failed to sync appointment reminders', 'details': str(e)}), 500


@reminders_bp.route('/appointments/<string:appointment_id>', methods=['DELETE'])
def remove_appointment(appointment_id):
    """Hook for the booking side after an appointment is deleted."""
    try:
        count = remove_queue_for_appointment(appointment_id)
        return jsonify({'appointment_id': appointment_id, 'cancelled': count}), 200
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': 'Failed to remove appointment reminders', 'details': str(e)}), 500


@reminders_bp.route('/logs', methods=['GET'])
def list_message_logs():
    barbershop_id = (request.args.get('barbershop_id') or '').strip() or None
    try:
        limit = max(1, min(int(request.args.get('limit', 200)), 1000))
    except (TypeError, ValueError):
        return jsonify({'error': 'limit must be an integer'}), 400
    logs = list_logs(barbershop_id, limit)
    return jsonify({'count': len(logs), 'logs': [record.to_dict() for record in logs]}), 200
