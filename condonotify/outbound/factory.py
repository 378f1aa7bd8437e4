"""
File: condonotify/outbound/factory.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
- Provide a single place to construct gateway adapters
- Map the configured provider string onto the closed Provider enum

Design rules:
- No business logic here
- Only construction / wiring
- Unknown providers are a configuration error, never a silent default
"""

from __future__ import annotations

from typing import Optional

import requests

from condonotify.errors import UnknownProviderError

from .base import DEFAULT_TIMEOUT_SECONDS
from .dry_run import DryRunAdapter
from .evolution import EvolutionAdapter
from .gateway import Provider, ProviderAdapter
from .wppconnect import WppconnectAdapter
from .zapi import ZapiAdapter
from .zpro import ZproAdapter


def parse_provider(value: str) -> Provider:
    try:
        return Provider((value or "").strip().lower())
    except ValueError:
        raise UnknownProviderError(value) from None


def build_adapter(
    provider: str | Provider,
    session: Optional[requests.Session] = None,
    timeout: int = DEFAULT_TIMEOUT_SECONDS,
    dry_run: bool = False,
) -> ProviderAdapter:
    selected = provider if isinstance(provider, Provider) else parse_provider(provider)

    if dry_run:
        return DryRunAdapter(selected)

    if selected is Provider.ZPRO:
        return ZproAdapter(session=session, timeout=timeout)
    if selected is Provider.ZAPI:
        return ZapiAdapter(session=session, timeout=timeout)
    if selected is Provider.EVOLUTION:
        return EvolutionAdapter(session=session, timeout=timeout)
    if selected is Provider.WPPCONNECT:
        return WppconnectAdapter(session=session, timeout=timeout)

    raise UnknownProviderError(str(provider))
