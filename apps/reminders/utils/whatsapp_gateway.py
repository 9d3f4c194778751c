"""WhatsApp gateway adapter (BitSafira + console fallback).

A send always answers ``{'success', 'status_code', 'error'}``; the delivery
worker turns ``success=False`` into an ``error`` queue entry and keeps going.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import requests
from flask import current_app

from apps.reminders.utils.errors import GatewayError


BITSAFIRA_DEFAULT_BASE_URL = 'https://api.bitsafira.com.br'

# Older BitSafira accounts expose the send operation under different paths;
# the next one is tried only when the previous answered 404.
BITSAFIRA_SEND_PATHS = (
    '/disparo/enviar',
    '/mensagem/disparar',
    '/mensagem/enviar',
)

SUCCESS_STATUS_CODES = (200, 201)


def mask_number(number: str) -> str:
    """Mask all but last 4 digits of a phone number."""
    digits = ''.join(ch for ch in str(number or '') if ch.isdigit())
    if not digits:
        return '***'
    if len(digits) <= 4:
        return '*' * len(digits)
    return f"{'*' * (len(digits) - 4)}{digits[-4:]}"


def normalize_recipient(number: str | None, country_code: str = '55') -> str | None:
    """Digits only, prefixed with the country code when it is missing."""
    if not number:
        return None
    digits = ''.join(ch for ch in str(number) if ch.isdigit())
    if not digits:
        return None
    if country_code and not digits.startswith(country_code):
        digits = f"{country_code}{digits}"
    return digits


def resolve_credentials(barbershop) -> Tuple[str, str]:
    """Tenant token/instance first, then the global configuration."""
    token = getattr(barbershop, 'bitsafira_token', None) or current_app.config.get('BITSAFIRA_TOKEN', '')
    instance_id = (
        getattr(barbershop, 'bitsafira_instance_id', None)
        or current_app.config.get('BITSAFIRA_INSTANCE_ID', '')
    )
    return token, instance_id


def _error_detail(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or '')[:200] or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return str(body.get('mensagem') or body.get('message') or body)[:200]
    return str(body)[:200]


def _post_bitsafira(base_url: str, token: str, payload: Dict[str, Any], timeout: int):
    headers = {
        'Token': token,
        'Content-Type': 'application/json',
    }
    resp = None
    for path in BITSAFIRA_SEND_PATHS:
        resp = requests.post(f"{base_url}{path}", json=payload, headers=headers, timeout=timeout)
        if resp.status_code != 404:
            break
    return resp


def _send_bitsafira(credentials: Tuple[str, str], number: str, message: str) -> int:
    """POST one message; returns the HTTP status or raises ``GatewayError``."""
    token, instance_id = credentials
    if not token or not instance_id:
        raise GatewayError('BitSafira token or instance id not configured')

    base_url = (current_app.config.get('BITSAFIRA_BASE_URL') or BITSAFIRA_DEFAULT_BASE_URL).rstrip('/')
    timeout = int(current_app.config.get('WHATSAPP_SEND_TIMEOUT_SECONDS', 15) or 15)
    payload = {
        'idInstancia': instance_id,
        'whatsapp': number,
        'texto': message,
        'envioImediato': 1,
    }
    try:
        resp = _post_bitsafira(base_url, token, payload, timeout)
    except requests.exceptions.RequestException as exc:
        raise GatewayError(f"Network error: {str(exc)[:200]}") from exc

    if resp.status_code not in SUCCESS_STATUS_CODES:
        raise GatewayError(_error_detail(resp), status_code=resp.status_code)
    return resp.status_code


def send_whatsapp_message(credentials: Tuple[str, str], number: str, message: str) -> Dict[str, Any]:
    """Send one WhatsApp message using the configured provider."""
    provider = (current_app.config.get('WHATSAPP_PROVIDER') or 'disabled').lower()
    country_code = current_app.config.get('REMINDER_DEFAULT_COUNTRY_CODE', '55')
    recipient = normalize_recipient(number, country_code)
    if not recipient:
        return {'success': False, 'status_code': None, 'error': 'invalid recipient number'}

    if provider == 'console':
        current_app.logger.info("[WhatsApp console] to=%s message=%s", mask_number(recipient), (message or '')[:240])
        return {'success': True, 'status_code': 200, 'error': None}

    if provider != 'bitsafira':
        return {'success': False, 'status_code': None, 'error': f"whatsapp provider '{provider}' does not send"}

    try:
        status_code = _send_bitsafira(credentials, recipient, message)
    except GatewayError as exc:
        current_app.logger.error(
            "[BitSafira] Send failed to %s: status=%s detail=%s",
            mask_number(recipient),
            exc.status_code,
            exc,
        )
        return {'success': False, 'status_code': exc.status_code, 'error': str(exc)}
    return {'success': True, 'status_code': status_code, 'error': None}


def get_provider_status() -> Dict[str, Optional[Any]]:
    """Lightweight snapshot for the health endpoint."""
    provider = (current_app.config.get('WHATSAPP_PROVIDER') or 'disabled').lower()
    configured = bool(current_app.config.get('BITSAFIRA_TOKEN') and current_app.config.get('BITSAFIRA_INSTANCE_ID'))
    return {
        'provider': provider,
        'available': provider in ('console', 'bitsafira'),
        'global_credentials': configured if provider == 'bitsafira' else None,
    }
