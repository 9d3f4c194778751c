"""Appointment model (read-only from the reminder engine)."""
import uuid

from apps.reminders import db
from apps.reminders.utils.time import utc_now


APPOINTMENT_STATUSES = ('pending', 'confirmed', 'cancelled', 'completed')


class Appointment(db.Model):
    __tablename__ = 'appointments'

    id = db.Column(db.String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    barbershop_id = db.Column(db.String(64), db.ForeignKey('barbershops.id'), nullable=False)
    client_name = db.Column(db.String(200), nullable=False)
    client_phone = db.Column(db.String(20), nullable=True)
    barber_id = db.Column(db.String(64), nullable=True)
    service_ids = db.Column(db.JSON, nullable=True)
    start_time = db.Column(db.DateTime, nullable=False)  # naive UTC
    end_time = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, confirmed, cancelled, completed
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        db.Index('ix_appointments_shop_start', 'barbershop_id', 'start_time'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'barbershop_id': self.barbershop_id,
            'client_name': self.client_name,
            'client_phone': self.client_phone,
            'barber_id': self.barber_id,
            'service_ids': self.service_ids or [],
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'status': self.status,
        }
