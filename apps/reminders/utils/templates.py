"""Message template resolution.

Tenants customise the built-in templates by type; names and types are free
text typed in the dashboard ("Lembrete de Agendamento", "Lembrete VIP",
"Survey"...). Each template is classified into a closed set of notification
kinds once, when it is loaded, using accent-insensitive keyword containment.
Everything downstream compares kinds instead of re-parsing strings.
"""
from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app


class NotificationKind(str, Enum):
    REMINDER = 'reminder'
    SURVEY = 'survey'
    CONFIRMATION = 'confirmation'


KIND_KEYWORDS = {
    NotificationKind.REMINDER: ('lembrete', 'reminder'),
    NotificationKind.SURVEY: ('pesquisa', 'survey'),
    NotificationKind.CONFIRMATION: ('confirmacao', 'confirmation'),
}

# A queue type may carry several keywords ("Lembrete ... (Pesquisa)"); the
# first kind in this order wins when picking a single kind for delivery.
KIND_PRIORITY = (
    NotificationKind.SURVEY,
    NotificationKind.REMINDER,
    NotificationKind.CONFIRMATION,
)

SURVEY_QUEUE_SUFFIX = ' (Pesquisa)'


def normalize_text(value: Optional[str]) -> str:
    """Lowercase and strip diacritics ("Confirmação" -> "confirmacao")."""
    decomposed = unicodedata.normalize('NFD', value or '')
    stripped = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower()


def classify(value: Optional[str]) -> frozenset:
    """Return every kind whose keyword appears in ``value``."""
    normalized = normalize_text(value)
    if not normalized:
        return frozenset()
    return frozenset(
        kind for kind, keywords in KIND_KEYWORDS.items()
        if any(keyword in normalized for keyword in keywords)
    )


def primary_kind(value: Optional[str]) -> Optional[NotificationKind]:
    kinds = classify(value)
    for kind in KIND_PRIORITY:
        if kind in kinds:
            return kind
    return None


@dataclass(frozen=True)
class MessageTemplate:
    id: str
    name: str
    type: str
    content: str
    enabled: bool = True
    reminder_hours_before: Optional[int] = None
    type_kinds: frozenset = field(default=frozenset(), compare=False)
    name_kinds: frozenset = field(default=frozenset(), compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'type_kinds', classify(self.type))
        object.__setattr__(self, 'name_kinds', classify(self.name))

    @property
    def kinds(self) -> frozenset:
        return self.type_kinds | self.name_kinds

    @property
    def kind(self) -> Optional[NotificationKind]:
        for kind in KIND_PRIORITY:
            if kind in self.kinds:
                return kind
        return None

    def matches(self, kind: NotificationKind) -> bool:
        return kind in self.kinds

    def queue_type(self, kind: NotificationKind) -> str:
        """String stored as ``notification_type`` for entries of this kind."""
        if kind in self.type_kinds:
            return self.type
        if kind in self.name_kinds:
            return self.name
        return self.type or self.name

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MessageTemplate':
        """Build a template from dashboard JSON (camelCase or snake_case)."""
        hours = data.get('reminder_hours_before', data.get('reminderHoursBefore'))
        try:
            hours = int(hours) if hours not in (None, '') else None
        except (TypeError, ValueError):
            hours = None
        enabled = data.get('enabled', True)
        if isinstance(enabled, str):
            enabled = enabled.strip().lower() in ('1', 'true', 'yes', 'on')
        return cls(
            id=str(data.get('id') or ''),
            name=str(data.get('name') or ''),
            type=str(data.get('type') or ''),
            content=str(data.get('content') or ''),
            enabled=bool(enabled),
            reminder_hours_before=hours,
        )


DEFAULT_TEMPLATES: List[MessageTemplate] = [
    MessageTemplate(
        id='tmpl1',
        name='Lembrete Padrão',
        type='Lembrete de Agendamento',
        content=(
            'Olá, {cliente}!\nPassando para lembrar do seu horário amanhã às {horario} com {barbeiro}.\n'
            'Até lá!\nEquipe {barbearia}.'
        ),
        enabled=True,
        reminder_hours_before=24,
    ),
    MessageTemplate(
        id='tmpl2',
        name='Confirmação Padrão',
        type='Confirmação de Agendamento',
        content=(
            'Olá, {cliente}!\nSeu agendamento para {servico} no dia {data} às {horario} foi confirmado.\n'
            'Equipe {barbearia}.'
        ),
        enabled=True,
    ),
    MessageTemplate(
        id='tmpl4',
        name='Confirmação Manual',
        type='Confirmação Manual',
        content=(
            'Olá, {cliente}!\nPassando para confirmar seu agendamento para {servico} no dia {data} '
            "às {horario} com {barbeiro}.\nPor favor, responda 'SIM' para confirmar.\nEquipe {barbearia}."
        ),
        enabled=True,
    ),
    MessageTemplate(
        id='tmpl3',
        name='Pesquisa Padrão',
        type='Pesquisa de Satisfação',
        content=(
            'Olá, {cliente}!\nAgradecemos a sua visita.\nO que você achou do nosso serviço?\n'
            'Responda de 0 a 10.\nEquipe {barbearia}.'
        ),
        enabled=False,
    ),
]


def load_templates(raw: Optional[Iterable[Any]]) -> List[MessageTemplate]:
    """Parse a tenant's stored template list, dropping malformed entries."""
    templates: List[MessageTemplate] = []
    for item in raw or []:
        if isinstance(item, MessageTemplate):
            templates.append(item)
        elif isinstance(item, dict):
            templates.append(MessageTemplate.from_dict(item))
        else:
            current_app.logger.warning("Ignoring malformed message template: %r", item)
    return templates


def resolve_effective_templates(
    defaults: Iterable[MessageTemplate],
    overrides: Iterable[MessageTemplate],
) -> List[MessageTemplate]:
    """Overlay tenant templates on the defaults, keyed by normalized type."""
    merged: Dict[str, MessageTemplate] = {}
    for template in list(defaults) + list(overrides):
        key = normalize_text(template.type)
        if key:
            merged[key] = template
    return list(merged.values())


def templates_for_barbershop(barbershop) -> List[MessageTemplate]:
    overrides = load_templates(getattr(barbershop, 'message_templates', None))
    return resolve_effective_templates(DEFAULT_TEMPLATES, overrides)


def match_by_kind(
    templates: Iterable[MessageTemplate],
    kind: NotificationKind,
    require_enabled: bool = False,
    require_positive_reminder_window: bool = False,
) -> Optional[MessageTemplate]:
    """First template of ``kind`` passing the requested filters."""
    for template in templates:
        if not template.matches(kind):
            continue
        if require_enabled and not template.enabled:
            continue
        if require_positive_reminder_window and (
            template.reminder_hours_before is None or template.reminder_hours_before <= 0
        ):
            continue
        return template
    return None


def queue_types_for_kind(templates: Iterable[MessageTemplate], kind: NotificationKind) -> List[str]:
    """Every type and name a template of ``kind`` may have been queued under."""
    types: List[str] = []
    for template in templates:
        if not template.matches(kind):
            continue
        for value in (template.type, template.name):
            if value and value not in types:
                types.append(value)
    return types


def resolve_for_delivery(templates: Iterable[MessageTemplate], notification_type: str) -> Optional[MessageTemplate]:
    """Find the enabled template a stored ``notification_type`` refers to.

    Exact type/name first, then the accent-insensitive equivalent, then any
    enabled template of the same kind. ``None`` means the template was
    disabled or removed after the entry was scheduled.
    """
    enabled = [tpl for tpl in templates if tpl.enabled]
    for tpl in enabled:
        if notification_type in (tpl.type, tpl.name):
            return tpl

    normalized = normalize_text(notification_type)
    for tpl in enabled:
        if normalized and normalized in (normalize_text(tpl.type), normalize_text(tpl.name)):
            return tpl

    kind = primary_kind(notification_type)
    if kind is None:
        return None
    return match_by_kind(enabled, kind)
