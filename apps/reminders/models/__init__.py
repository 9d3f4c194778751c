"""
Barbershop Reminders - Database Models
Import all models here for Flask-Migrate to detect them
"""
from apps.reminders import db

Base = db.Model

from .barbershop import Barbershop, Barber, Service
from .appointment import Appointment
from .reminder_queue import ReminderQueueEntry
from .message_log import MessageLog

__all__ = [
    'Barbershop',
    'Barber',
    'Service',
    'Appointment',
    'ReminderQueueEntry',
    'MessageLog',
]
