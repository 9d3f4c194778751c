from datetime import timedelta

from apps.reminders.app import create_app
from apps.reminders.utils.time import utc_now

from conftest import ReminderTestConfig
from factories import make_appointment, make_barber, make_barbershop, make_service


REMINDER = 'Lembrete de Agendamento'
SURVEY = 'Pesquisa de Satisfação'


class RateLimitConfig(ReminderTestConfig):
    RATELIMIT_ENABLED = True
    REMINDER_RUN_RATE_LIMIT = '2 per minute'


def _shop_with_due_reminder(store):
    shop = make_barbershop()
    make_barber(shop)
    make_service(shop)
    now = utc_now()
    appt = make_appointment(shop, start_time=now + timedelta(hours=2))
    entry = store.upsert(shop.id, appt.id, REMINDER, now - timedelta(minutes=1), now=now - timedelta(hours=1))
    return shop, appt, entry


def test_health(client):
    resp = client.get('/health')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['status'] == 'ok'
    assert data['queue_backend'] == 'database'
    assert data['whatsapp']['provider'] == 'console'
    assert resp.headers['X-Content-Type-Options'] == 'nosniff'


def test_health_db(client):
    resp = client.get('/health/db')
    assert resp.status_code == 200
    assert resp.get_json()['database'] == 'connected'


def test_unknown_route_returns_json(client):
    resp = client.get('/api/reminders/nope')
    assert resp.status_code == 404
    assert resp.get_json() == {'error': 'Resource not found'}


def test_run_requires_barbershop_id(client):
    resp = client.post('/api/reminders/run', json={})
    assert resp.status_code == 400


def test_run_unknown_barbershop(client):
    resp = client.post('/api/reminders/run', json={'barbershop_id': 'missing'})
    assert resp.status_code == 404


def test_run_sends_due_entries(client, store):
    shop, _, entry = _shop_with_due_reminder(store)

    resp = client.post('/api/reminders/run', json={'barbershopId': shop.id})

    assert resp.status_code == 200
    data = resp.get_json()
    assert data['processed'] == 1
    assert data['results'][0]['entry_id'] == entry.id
    assert data['results'][0]['status'] == 'sent'
    assert store.get(entry.id).status == 'sent'


def test_run_all(client, store):
    shop, _, _ = _shop_with_due_reminder(store)
    make_barbershop('shop-2')

    resp = client.post('/api/reminders/run-all')

    assert resp.status_code == 200
    data = resp.get_json()
    assert data['processed'] == 1
    assert {b['barbershop_id'] for b in data['barbershops']} == {shop.id, 'shop-2'}


def test_queue_listing_validates_barbershop(client):
    assert client.get('/api/reminders/queue').status_code == 400
    assert client.get('/api/reminders/queue?barbershop_id=missing').status_code == 404
    assert client.get('/api/reminders/queue?barbershop_id=missing&sync=1').status_code == 404


def test_queue_listing_with_resync(client):
    shop = make_barbershop()
    make_appointment(shop, start_time=utc_now() + timedelta(days=3))

    resp = client.get(f'/api/reminders/queue?barbershop_id={shop.id}&sync=1')

    assert resp.status_code == 200
    data = resp.get_json()
    assert data['count'] == 2
    assert {e['notification_type'] for e in data['entries']} == {REMINDER, SURVEY}
    for entry in data['entries']:
        assert entry['client_name'] == 'João'
        assert entry['client_phone'] == '(19) 99876-5432'
        assert entry['appointment_start']

    pending = client.get(f'/api/reminders/queue?barbershop_id={shop.id}&status=sent').get_json()
    assert pending['count'] == 0


def test_cancel_queue_entry(client, store):
    _, _, entry = _shop_with_due_reminder(store)

    assert client.delete('/api/reminders/queue/unknown').status_code == 404

    resp = client.delete(f'/api/reminders/queue/{entry.id}')
    assert resp.status_code == 200
    assert resp.get_json()['entry']['status'] == 'cancelled'
    assert resp.get_json()['entry']['last_error'] == 'cancelled manually'

    again = client.delete(f'/api/reminders/queue/{entry.id}')
    assert again.status_code == 409
    assert again.get_json()['entry']['status'] == 'cancelled'


def test_appointment_sync_hook(client, store):
    shop = make_barbershop()
    appt = make_appointment(shop, start_time=utc_now() + timedelta(days=3))

    assert client.post('/api/reminders/appointments/missing/sync').status_code == 404

    resp = client.post(f'/api/reminders/appointments/{appt.id}/sync')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['appointment_id'] == appt.id
    assert {e['notification_type'] for e in data['scheduled']} == {REMINDER, SURVEY}
    assert data['cancelled'] == []


def test_appointment_delete_hook(client, store):
    shop = make_barbershop()
    appt = make_appointment(shop, start_time=utc_now() + timedelta(days=3))
    client.post(f'/api/reminders/appointments/{appt.id}/sync')

    resp = client.delete(f'/api/reminders/appointments/{appt.id}')

    assert resp.status_code == 200
    assert resp.get_json() == {'appointment_id': appt.id, 'cancelled': 2}
    assert {e.last_error for e in store.list_for_appointment(appt.id)} == {'appointment deleted'}


def test_logs(client, store):
    shop, _, _ = _shop_with_due_reminder(store)
    client.post('/api/reminders/run', json={'barbershop_id': shop.id})

    assert client.get('/api/reminders/logs?limit=abc').status_code == 400

    resp = client.get(f'/api/reminders/logs?barbershop_id={shop.id}')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['count'] == 1
    assert data['logs'][0]['status'] == 'success'
    assert data['logs'][0]['client_name'] == 'João'

    other = client.get('/api/reminders/logs?barbershop_id=shop-2').get_json()
    assert other['count'] == 0


def test_run_is_rate_limited():
    app = create_app(RateLimitConfig)
    client = app.test_client()
    headers = {'X-Forwarded-For': '203.0.113.21'}

    for _ in range(2):
        resp = client.post('/api/reminders/run', json={}, headers=headers)
        assert resp.status_code == 400

    resp = client.post('/api/reminders/run', json={}, headers=headers)
    assert resp.status_code == 429
    assert resp.is_json
    assert (resp.get_json() or {}).get('error') == 'Rate limit exceeded'
