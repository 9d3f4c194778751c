"""Reminder Routes - Import all blueprints here."""

from .reminders import reminders_bp

__all__ = [
    'reminders_bp',
]
