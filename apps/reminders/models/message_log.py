"""Append-only audit trail of WhatsApp delivery attempts."""
import uuid

from apps.reminders import db
from apps.reminders.utils.time import utc_now


class MessageLog(db.Model):
    __tablename__ = 'message_logs'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    barbershop_id = db.Column(db.String(64), nullable=False)
    appointment_id = db.Column(db.String(64), nullable=True)
    client_name = db.Column(db.String(200), nullable=True)
    client_phone = db.Column(db.String(20), nullable=True)
    notification_type = db.Column(db.String(150), nullable=True)
    status = db.Column(db.String(20), nullable=False)  # success | error | skipped
    message = db.Column(db.Text, nullable=False)
    details = db.Column(db.Text, nullable=True)
    sent_at = db.Column(db.DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        db.Index('ix_message_logs_shop_sent', 'barbershop_id', 'sent_at'),
    )

    def to_dict(self):
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
