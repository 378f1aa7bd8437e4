"""
File: condonotify/services/templates.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
Message template resolution and placeholder rendering.

Resolution order for a (slug, condominium):
1) active tenant override (condominium_whatsapp_templates)
2) active system default (whatsapp_templates)
3) nothing -> caller falls back to the literal attached to its notification kind

When the gateway sends approved (WABA) templates, tenant overrides are skipped
and the default row also yields its linked approved template.

Placeholders are {name} tokens. Every occurrence is replaced in a single pass;
tokens with no mapped value are left verbatim so a typo in a template stays
visible.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from condonotify.models import MessageTemplate, TenantTemplateOverride

SOURCE_TENANT = "tenant"
SOURCE_DEFAULT = "default"
SOURCE_FALLBACK = "fallback"
SOURCE_WABA = "waba"

# Meta sample templates that exist on every account but carry none of our variables
_SAMPLE_TEMPLATE_NAMES = ("hello_world", "sample_template")

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class WabaTemplate:
    """Meta-approved template linked to a default message template."""
    name: str
    language: str = "pt_BR"
    params_order: Tuple[str, ...] = ()

    @property
    def is_usable(self) -> bool:
        if not self.name or not self.params_order:
            return False
        return self.name not in _SAMPLE_TEMPLATE_NAMES and not self.name.startswith("test_")

    def params(self, variables: Mapping[str, Optional[str]]) -> List[str]:
        # positions must be kept, so missing values become empty strings
        return [variables.get(name) or "" for name in self.params_order]


@dataclass(frozen=True)
class ResolvedTemplate:
    content: str
    source: str
    waba: Optional[WabaTemplate] = None


class TemplateResolver:
    def __init__(self, db: Session) -> None:
        self._db = db

    def resolve(
        self,
        slug: str,
        tenant_id: Optional[UUID] = None,
        approved_only: bool = False,
    ) -> Optional[ResolvedTemplate]:
        """
        approved_only skips tenant overrides: free-text customisations cannot
        travel through an approved template, so the default row (which carries
        the approved template link) wins.
        """
        if tenant_id is not None and not approved_only:
            override = (
                self._db.query(TenantTemplateOverride)
                .filter(
                    TenantTemplateOverride.condominium_id == tenant_id,
                    TenantTemplateOverride.template_slug == slug,
                    TenantTemplateOverride.is_active.is_(True),
                )
                .one_or_none()
            )
            if override and override.content:
                return ResolvedTemplate(content=override.content, source=SOURCE_TENANT)

        default = (
            self._db.query(MessageTemplate)
            .filter(
                MessageTemplate.slug == slug,
                MessageTemplate.is_active.is_(True),
            )
            .one_or_none()
        )
        if default and default.content:
            waba = None
            if default.waba_template_name:
                waba = WabaTemplate(
                    name=default.waba_template_name,
                    language=default.waba_language or "pt_BR",
                    params_order=tuple(default.params_order or ()),
                )
            return ResolvedTemplate(content=default.content, source=SOURCE_DEFAULT, waba=waba)

        return None


def render_template(content: str, variables: Mapping[str, Optional[str]]) -> str:
    """
    Substitute every {name} token in one pass over the template.

    Values are inserted literally: a value that itself looks like a
    placeholder is never expanded again.
    """

    def _substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        value = variables[name]
        return value if value is not None else ""

    return _PLACEHOLDER.sub(_substitute, content)
