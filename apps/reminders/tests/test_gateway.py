import pytest
import requests

from apps.reminders.utils import whatsapp_gateway
from apps.reminders.utils.whatsapp_gateway import (
    BITSAFIRA_SEND_PATHS,
    get_provider_status,
    mask_number,
    normalize_recipient,
    resolve_credentials,
    send_whatsapp_message,
)

from factories import make_barbershop


class FakeResponse:
    def __init__(self, status_code, body=None, text=''):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError('no json')
        return self._body


class FakePost:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, url, json=None, headers=None, timeout=None):
        self.calls.append({'url': url, 'json': json, 'headers': headers, 'timeout': timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def bitsafira(app):
    app.config['WHATSAPP_PROVIDER'] = 'bitsafira'
    app.config['BITSAFIRA_BASE_URL'] = 'https://gateway.test/'
    app.config['BITSAFIRA_TOKEN'] = 'global-token'
    app.config['BITSAFIRA_INSTANCE_ID'] = 'global-instance'
    return app


def test_normalize_recipient_adds_country_code():
    assert normalize_recipient('(19) 99876-5432') == '5519998765432'
    assert normalize_recipient('55 19 99876-5432') == '5519998765432'
    assert normalize_recipient('19998765432', country_code='') == '19998765432'
    assert normalize_recipient('') is None
    assert normalize_recipient('n/a') is None


def test_mask_number_keeps_last_four_digits():
    assert mask_number('5519998765432') == '*********5432'
    assert mask_number('123') == '***'
    assert mask_number(None) == '***'


def test_credentials_prefer_tenant_values(bitsafira):
    shop = make_barbershop(bitsafira_token='shop-token', bitsafira_instance_id='shop-instance')
    assert resolve_credentials(shop) == ('shop-token', 'shop-instance')

    shop.bitsafira_token = None
    assert resolve_credentials(shop) == ('global-token', 'shop-instance')


def test_bitsafira_success(bitsafira, monkeypatch):
    fake = FakePost(FakeResponse(201, {'ok': True}))
    monkeypatch.setattr(whatsapp_gateway.requests, 'post', fake)

    outcome = send_whatsapp_message(('tok', 'inst'), '(19) 99876-5432', 'Oi')

    assert outcome == {'success': True, 'status_code': 201, 'error': None}
    call = fake.calls[0]
    assert call['url'] == 'https://gateway.test' + BITSAFIRA_SEND_PATHS[0]
    assert call['headers']['Token'] == 'tok'
    assert call['json'] == {
        'idInstancia': 'inst',
        'whatsapp': '5519998765432',
        'texto': 'Oi',
        'envioImediato': 1,
    }


def test_bitsafira_walks_send_paths_on_404(bitsafira, monkeypatch):
    fake = FakePost(FakeResponse(404), FakeResponse(404), FakeResponse(200, {}))
    monkeypatch.setattr(whatsapp_gateway.requests, 'post', fake)

    outcome = send_whatsapp_message(('tok', 'inst'), '19998765432', 'Oi')

    assert outcome['success'] is True
    assert [c['url'] for c in fake.calls] == ['https://gateway.test' + p for p in BITSAFIRA_SEND_PATHS]


def test_bitsafira_all_paths_missing(bitsafira, monkeypatch):
    fake = FakePost(*[FakeResponse(404, text='Not Found') for _ in BITSAFIRA_SEND_PATHS])
    monkeypatch.setattr(whatsapp_gateway.requests, 'post', fake)

    outcome = send_whatsapp_message(('tok', 'inst'), '19998765432', 'Oi')

    assert outcome == {'success': False, 'status_code': 404, 'error': 'Not Found'}


def test_bitsafira_server_error_reports_gateway_message(bitsafira, monkeypatch):
    fake = FakePost(FakeResponse(500, {'mensagem': 'instancia desconectada'}))
    monkeypatch.setattr(whatsapp_gateway.requests, 'post', fake)

    outcome = send_whatsapp_message(('tok', 'inst'), '19998765432', 'Oi')

    assert outcome['success'] is False
    assert outcome['status_code'] == 500
    assert outcome['error'] == 'instancia desconectada'
    assert len(fake.calls) == 1


def test_bitsafira_network_error(bitsafira, monkeypatch):
    fake = FakePost(requests.exceptions.ConnectionError('connection refused'))
    monkeypatch.setattr(whatsapp_gateway.requests, 'post', fake)

    outcome = send_whatsapp_message(('tok', 'inst'), '19998765432', 'Oi')

    assert outcome['success'] is False
    assert outcome['status_code'] is None
    assert outcome['error'].startswith('Network error')


def test_bitsafira_without_credentials_does_not_call_out(bitsafira, monkeypatch):
    fake = FakePost()
    monkeypatch.setattr(whatsapp_gateway.requests, 'post', fake)

    outcome = send_whatsapp_message(('', 'inst'), '19998765432', 'Oi')

    assert outcome['success'] is False
    assert 'not configured' in outcome['error']
    assert fake.calls == []


def test_invalid_recipient_fails_before_provider(bitsafira):
    outcome = send_whatsapp_message(('tok', 'inst'), 'sem telefone', 'Oi')
    assert outcome == {'success': False, 'status_code': None, 'error': 'invalid recipient number'}


def test_disabled_provider_never_sends(app):
    app.config['WHATSAPP_PROVIDER'] = 'disabled'

    outcome = send_whatsapp_message(('tok', 'inst'), '19998765432', 'Oi')

    assert outcome['success'] is False
    assert get_provider_status()['available'] is False


def test_provider_status(bitsafira):
    assert get_provider_status() == {
        'provider': 'bitsafira',
        'available': True,
        'global_credentials': True,
    }
