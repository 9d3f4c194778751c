"""Read-only queries over records owned by the booking application."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from apps.reminders import db
from apps.reminders.models.appointment import Appointment
from apps.reminders.models.barbershop import Barber, Barbershop, Service


def get_barbershop(barbershop_id: str) -> Optional[Barbershop]:
    if not barbershop_id:
        return None
    return db.session.get(Barbershop, barbershop_id)


def list_barbershops() -> List[Barbershop]:
    return Barbershop.query.order_by(Barbershop.created_at.asc()).all()


def get_appointment(appointment_id: str) -> Optional[Appointment]:
    if not appointment_id:
        return None
    return db.session.get(Appointment, appointment_id)


def get_appointments_by_ids(appointment_ids: Iterable[str]) -> List[Appointment]:
    ids = {i for i in appointment_ids if i}
    if not ids:
        return []
    return Appointment.query.filter(Appointment.id.in_(ids)).all()


def list_appointments_since(barbershop_id: str, window_start: datetime) -> List[Appointment]:
    return Appointment.query.filter(
        Appointment.barbershop_id == barbershop_id,
        Appointment.start_time >= window_start,
    ).order_by(Appointment.start_time.asc()).all()


def list_barbers(barbershop_id: str) -> List[Barber]:
    return Barber.query.filter_by(barbershop_id=barbershop_id).all()


def list_services(barbershop_id: str) -> List[Service]:
    return Service.query.filter_by(barbershop_id=barbershop_id).all()
