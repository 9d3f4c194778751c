"""Tenant-side records read by the reminder engine.

Barbershops, barbers and services are owned by the booking application;
this service only reads them to resolve templates and render messages.
"""
import uuid

from apps.reminders import db
from apps.reminders.utils.time import utc_now


def _new_id() -> str:
    return uuid.uuid4().hex


class Barbershop(db.Model):
    __tablename__ = 'barbershops'

    id = db.Column(db.String(64), primary_key=True, default=_new_id)
    name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(20), nullable=True)

    # Address
    street = db.Column(db.String(200), nullable=True)
    number = db.Column(db.String(20), nullable=True)
    complement = db.Column(db.String(100), nullable=True)
    neighborhood = db.Column(db.String(100), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    cep = db.Column(db.String(12), nullable=True)

    # Tenant overrides of the default message templates (list of dicts)
    message_templates = db.Column(db.JSON, nullable=True)

    # WhatsApp gateway credentials; empty means "use the global ones"
    bitsafira_token = db.Column(db.String(255), nullable=True)
    bitsafira_instance_id = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)

    def address_parts(self):
        return {
            'street': self.street,
            'number': self.number,
            'complement': self.complement,
            'neighborhood': self.neighborhood,
            'city': self.city,
            'state': self.state,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'address': {**self.address_parts(), 'cep': self.cep},
            'message_templates': self.message_templates or [],
        }


class Barber(db.Model):
    __tablename__ = 'barbers'

    id = db.Column(db.String(64), primary_key=True, default=_new_id)
    barbershop_id = db.Column(db.String(64), db.ForeignKey('barbershops.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(20), nullable=True)


class Service(db.Model):
    __tablename__ = 'services'

    id = db.Column(db.String(64), primary_key=True, default=_new_id)
    barbershop_id = db.Column(db.String(64), db.ForeignKey('barbershops.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    duration = db.Column(db.Integer, nullable=False, default=30)  # minutes
