"""Exceptions raised by the reminder engine."""


class ReminderError(Exception):
    """Base class for reminder engine failures."""


class TenantNotFound(ReminderError):
    """The barbershop a run was requested for does not exist."""

    def __init__(self, barbershop_id):
        super().__init__(f"Barbershop not found: {barbershop_id}")
        self.barbershop_id = barbershop_id


class GatewayError(ReminderError):
    """The messaging gateway rejected or failed a send."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class StoreUnavailable(ReminderError):
    """Durable store is unreachable and no fallback store is configured."""
