"""
NotificaCondo WhatsApp Dispatcher
Outbound delivery - DRY-RUN adapter

This adapter never sends anything.
It returns a receipt that indicates a simulated send, so staging
environments can run the whole pipeline against real data.
"""

from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from .gateway import GatewaySettings, Provider, SendResult

logger = logging.getLogger("outbound.dry_run")


class DryRunAdapter:
    def __init__(self, provider: Provider) -> None:
        # The configured provider is kept so delivery records stay comparable
        self.provider = provider

    def send(
        self,
        config: GatewaySettings,
        phone: str,
        message: str,
        image_url: Optional[str] = None,
    ) -> SendResult:
        # No side effects. Never raises. Never calls external services.
        message_id = f"dryrun_{uuid.uuid4()}"
        logger.info(
            "DRY_RUN: outbound delivery simulated (not sent). provider=%s to=%s image=%s id=%s",
            self.provider.value,
            phone,
            bool(image_url),
            message_id,
        )
        return SendResult.sent(message_id)

    def send_template(
        self,
        config: GatewaySettings,
        phone: str,
        template_name: str,
        language: str,
        params: List[str],
        media_url: Optional[str] = None,
    ) -> SendResult:
        message_id = f"dryrun_{uuid.uuid4()}"
        logger.info(
            "DRY_RUN: template delivery simulated (not sent). template=%s lang=%s to=%s id=%s",
            template_name,
            language,
            phone,
            message_id,
        )
        return SendResult.sent(message_id)

    def check_connection(self, config: GatewaySettings) -> SendResult:
        return SendResult.sent("dryrun_connection_ok")
