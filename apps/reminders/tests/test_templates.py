from __future__ import annotations

from apps.reminders.utils.templates import (
    DEFAULT_TEMPLATES,
    MessageTemplate,
    NotificationKind,
    classify,
    load_templates,
    match_by_kind,
    normalize_text,
    primary_kind,
    queue_types_for_kind,
    resolve_effective_templates,
    resolve_for_delivery,
    templates_for_barbershop,
)


def _tpl(id, name, type, enabled=True, hours=None, content='x'):
    return MessageTemplate(id=id, name=name, type=type, content=content, enabled=enabled, reminder_hours_before=hours)


def test_normalize_text_strips_accents_and_case():
    assert normalize_text('Confirmação de Agendamento') == 'confirmacao de agendamento'
    assert normalize_text(None) == ''


def test_classify_is_keyword_containment_in_both_languages():
    assert classify('Lembrete VIP') == {NotificationKind.REMINDER}
    assert classify('Customer Survey') == {NotificationKind.SURVEY}
    assert classify('CONFIRMAÇÃO manual') == {NotificationKind.CONFIRMATION}
    assert classify('Promoção de Natal') == frozenset()


def test_primary_kind_prefers_survey_over_reminder():
    assert primary_kind('Lembrete de Agendamento (Pesquisa)') == NotificationKind.SURVEY
    assert primary_kind('Lembrete de Agendamento') == NotificationKind.REMINDER
    assert primary_kind('whatever') is None


def test_template_kinds_are_computed_at_load_time():
    tpl = _tpl('t', 'Pesquisa VIP', 'Mensagem personalizada')
    assert tpl.type_kinds == frozenset()
    assert tpl.name_kinds == {NotificationKind.SURVEY}
    assert tpl.kind == NotificationKind.SURVEY
    assert tpl.queue_type(NotificationKind.SURVEY) == 'Pesquisa VIP'


def test_from_dict_accepts_dashboard_json():
    tpl = MessageTemplate.from_dict({
        'id': 'a', 'name': 'Lembrete', 'type': 'Lembrete de Agendamento',
        'content': 'Oi', 'enabled': 'false', 'reminderHoursBefore': '12',
    })
    assert tpl.enabled is False
    assert tpl.reminder_hours_before == 12


def test_overrides_replace_defaults_by_normalized_type():
    override = _tpl('custom', 'Meu lembrete', 'LEMBRETE DE AGENDAMENTO', hours=3)
    merged = resolve_effective_templates(DEFAULT_TEMPLATES, [override])

    assert len(merged) == len(DEFAULT_TEMPLATES)
    reminder = match_by_kind(merged, NotificationKind.REMINDER)
    assert reminder.id == 'custom'
    assert reminder.reminder_hours_before == 3
    # Untouched defaults pass through
    assert {t.id for t in merged} >= {'tmpl2', 'tmpl3', 'tmpl4'}


def test_match_by_kind_filters():
    templates = [
        _tpl('off', 'Lembrete antigo', 'Lembrete antigo', enabled=False, hours=24),
        _tpl('zero', 'Lembrete sem janela', 'Lembrete sem janela', hours=0),
        _tpl('ok', 'Lembrete bom', 'Lembrete bom', hours=2),
    ]
    assert match_by_kind(templates, NotificationKind.REMINDER).id == 'off'
    assert match_by_kind(templates, NotificationKind.REMINDER, require_enabled=True).id == 'zero'
    assert match_by_kind(
        templates,
        NotificationKind.REMINDER,
        require_enabled=True,
        require_positive_reminder_window=True,
    ).id == 'ok'
    assert match_by_kind(templates, NotificationKind.SURVEY) is None


def test_default_survey_is_disabled():
    survey = match_by_kind(DEFAULT_TEMPLATES, NotificationKind.SURVEY)
    assert survey is not None
    assert survey.enabled is False
    assert match_by_kind(DEFAULT_TEMPLATES, NotificationKind.SURVEY, require_enabled=True) is None


def test_queue_types_for_kind_lists_types_and_names():
    types = queue_types_for_kind(DEFAULT_TEMPLATES, NotificationKind.REMINDER)
    assert types == ['Lembrete de Agendamento', 'Lembrete Padrão']


def test_resolve_for_delivery_order():
    templates = [
        _tpl('r', 'Lembrete Padrão', 'Lembrete de Agendamento', hours=24),
        _tpl('s', 'Pesquisa Padrão', 'Pesquisa de Satisfação'),
        _tpl('c', 'Confirmação', 'Confirmação de Agendamento', enabled=False),
    ]
    # exact type, exact name
    assert resolve_for_delivery(templates, 'Lembrete de Agendamento').id == 'r'
    assert resolve_for_delivery(templates, 'Pesquisa Padrão').id == 's'
    # accent-insensitive
    assert resolve_for_delivery(templates, 'pesquisa de satisfacao').id == 's'
    # kind fallback for a renamed template
    assert resolve_for_delivery(templates, 'Lembrete VIP antigo').id == 'r'
    # disabled templates never resolve
    assert resolve_for_delivery(templates, 'Confirmação de Agendamento') is None
    assert resolve_for_delivery(templates, 'Promoção') is None


def test_load_templates_skips_malformed_entries(app):
    templates = load_templates([{'id': 'a', 'name': 'Lembrete', 'type': 'Lembrete'}, 'garbage', None])
    assert [t.id for t in templates] == ['a']


def test_templates_for_barbershop_without_overrides_uses_defaults():
    class Shop:
        message_templates = None

    templates = templates_for_barbershop(Shop())
    assert [t.id for t in templates] == [t.id for t in DEFAULT_TEMPLATES]
