"""Scheduled WhatsApp notification queue (at most one open row per appointment + type)."""
import uuid

from apps.reminders import db
from apps.reminders.utils.time import utc_now


QUEUE_STATUSES = ('pending', 'sent', 'cancelled', 'error')


class ReminderQueueEntry(db.Model):
    __tablename__ = 'reminder_queue'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    barbershop_id = db.Column(db.String(64), nullable=False)
    appointment_id = db.Column(db.String(64), nullable=False)
    notification_type = db.Column(db.String(150), nullable=False)
    scheduled_for = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, sent, cancelled, error
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    sent_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        # One open (pending/error) row per key; sent and cancelled rows are history.
        db.Index(
            'uq_reminder_queue_open_key',
            'appointment_id',
            'notification_type',
            unique=True,
            postgresql_where=db.text("status IN ('pending', 'error')"),
            sqlite_where=db.text("status IN ('pending', 'error')"),
        ),
        db.Index('ix_reminder_queue_shop_status_due', 'barbershop_id', 'status', 'scheduled_for'),
        db.Index('ix_reminder_queue_appointment', 'appointment_id'),
    )

    def to_dict(self):
        """Serialize queue entry (for admin/diagnostics)."""
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
