"""Small builders for tenant/appointment rows used across tests."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from apps.reminders import db
from apps.reminders.models import Appointment, Barber, Barbershop, Service


REMINDER_TEMPLATE = {
    'id': 'tmpl1',
    'name': 'Lembrete Padrão',
    'type': 'Lembrete de Agendamento',
    'content': 'Olá, {cliente}! Lembrete do seu horário {data} às {horario} com {barbeiro} na {barbearia}.',
    'enabled': True,
    'reminderHoursBefore': 24,
}

SURVEY_TEMPLATE = {
    'id': 'tmpl3',
    'name': 'Pesquisa Padrão',
    'type': 'Pesquisa de Satisfação',
    'content': 'Olá, {cliente}! O que achou do serviço {servico} ({valor})?',
    'enabled': True,
}


def make_barbershop(shop_id='shop-1', templates=None, **kwargs):
    shop = Barbershop(
        id=shop_id,
        name=kwargs.pop('name', 'Barbearia do Zé'),
        street=kwargs.pop('street', 'Rua das Flores'),
        number=kwargs.pop('number', '120'),
        complement=kwargs.pop('complement', 'Sala 2'),
        neighborhood=kwargs.pop('neighborhood', 'Centro'),
        city=kwargs.pop('city', 'Campinas'),
        state=kwargs.pop('state', 'SP'),
        message_templates=[REMINDER_TEMPLATE, SURVEY_TEMPLATE] if templates is None else templates,
        **kwargs,
    )
    db.session.add(shop)
    db.session.commit()
    return shop


def make_barber(shop, barber_id='barber-1', name='Carlos'):
    barber = Barber(id=barber_id, barbershop_id=shop.id, name=name)
    db.session.add(barber)
    db.session.commit()
    return barber


def make_service(shop, service_id='svc-1', name='Corte', price='45.00'):
    service = Service(id=service_id, barbershop_id=shop.id, name=name, price=Decimal(price))
    db.session.add(service)
    db.session.commit()
    return service


def make_appointment(shop, appointment_id='appt-1', start_time=datetime(2025, 1, 10, 15, 0), **kwargs):
    appointment = Appointment(
        id=appointment_id,
        barbershop_id=shop.id,
        client_name=kwargs.pop('client_name', 'João'),
        client_phone=kwargs.pop('client_phone', '(19) 99876-5432'),
        barber_id=kwargs.pop('barber_id', 'barber-1'),
        service_ids=kwargs.pop('service_ids', ['svc-1']),
        start_time=start_time,
        status=kwargs.pop('status', 'confirmed'),
        **kwargs,
    )
    db.session.add(appointment)
    db.session.commit()
    return appointment
