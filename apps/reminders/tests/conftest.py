"""Test setup helpers."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for apps.reminders imports.
PROJECT_ROOT = Path(__file__).resolve().parents[3]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from apps.reminders import db  # noqa: E402
from apps.reminders.app import create_app  # noqa: E402
from apps.reminders.config import TestingConfig  # noqa: E402
from apps.reminders.utils.queue_store import get_queue_store  # noqa: E402


class ReminderTestConfig(TestingConfig):
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    TESTING = True
    RATELIMIT_ENABLED = False
    REMINDER_QUEUE_BACKEND = 'database'
    WHATSAPP_PROVIDER = 'console'
    REMINDER_DISPLAY_TIMEZONE = 'UTC'
    BITSAFIRA_TOKEN = ''
    BITSAFIRA_INSTANCE_ID = ''


@pytest.fixture
def app():
    app = create_app(ReminderTestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return get_queue_store()
