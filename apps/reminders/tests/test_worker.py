from datetime import timedelta

import pytest

from apps.reminders.scripts import reminder_worker
from apps.reminders.utils.errors import TenantNotFound
from apps.reminders.utils.time import utc_now

from factories import make_appointment, make_barbershop


def test_run_once_for_every_barbershop(app, store):
    shop = make_barbershop()
    now = utc_now()
    appt = make_appointment(shop, start_time=now + timedelta(hours=3))
    entry = store.upsert(shop.id, appt.id, 'Lembrete de Agendamento', now - timedelta(minutes=5),
                         now=now - timedelta(hours=1))

    summary = reminder_worker.run_once()

    assert summary['processed'] == 1
    assert summary['barbershops'][0]['success'] is True
    assert store.get(entry.id).status == 'sent'


def test_run_once_for_one_barbershop(app):
    shop = make_barbershop()

    summary = reminder_worker.run_once(shop.id)

    assert summary['barbershop_id'] == shop.id
    assert summary['processed'] == 0


def test_run_once_unknown_barbershop(app):
    with pytest.raises(TenantNotFound):
        reminder_worker.run_once('missing')
