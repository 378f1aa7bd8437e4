"""
File: condonotify/services/dispatcher.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
Deliver ONE notification to ONE target through the configured gateway,
or to each recipient of a fan-out target (dispatch_many).

Responsibilities:
- Resolve the template (tenant override -> default -> kind fallback) and render it
- Normalise the recipient phone
- Select the provider adapter for the active gateway configuration
- With approved templates enabled on Z-PRO, try /templateBody first and fall
  back to free text when it fails
- Send, then append a DeliveryRecord whatever the outcome
- On success for idempotent kinds, set the target's sent marker atomically

Rules:
- A missing phone is a failed delivery, not an exception, and never calls the network
- An unknown provider IS an exception (configuration error), raised before any send
- DeliveryRecords are append-only
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, cast

import requests
from sqlalchemy.orm import Session

from condonotify.config import DispatcherSettings, get_settings
from condonotify.errors import ConfigurationError
from condonotify.models import DeliveryRecord, GatewayConfig
from condonotify.outbound import (
    GatewaySettings,
    Provider,
    ProviderAdapter,
    SendResult,
    TemplateSender,
    build_adapter,
    normalize_phone,
    parse_provider,
)
from condonotify.outbound.gateway import ERROR_NO_PHONE
from condonotify.services.targets import NotificationKind, NotificationTarget
from condonotify.services.templates import (
    SOURCE_FALLBACK,
    SOURCE_WABA,
    ResolvedTemplate,
    TemplateResolver,
    WabaTemplate,
    render_template,
)

logger = logging.getLogger("dispatcher")

NO_PHONE_ERROR = "Recipient has no phone number"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def load_active_config(db: Session) -> GatewaySettings:
    """
    The most recently created active gateway configuration.
    Raises ConfigurationError when none is active.
    """
    row = (
        db.query(GatewayConfig)
        .filter(GatewayConfig.is_active.is_(True))
        .order_by(GatewayConfig.created_at.desc())
        .first()
    )
    if row is None:
        raise ConfigurationError("WhatsApp not configured")
    return GatewaySettings.from_row(row)


@dataclass(frozen=True)
class DeliveryOutcome:
    target_id: object
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    marker_set: bool = False
    template_source: Optional[str] = None
    recipient_id: Optional[object] = None

    def to_dict(self) -> dict:
        out = {"targetId": str(self.target_id), "success": self.success}
        if self.recipient_id:
            out["recipientId"] = str(self.recipient_id)
        if self.message_id:
            out["messageId"] = self.message_id
        if self.error:
            out["error"] = self.error
        return out


class NotificationDispatcher:
    def __init__(
        self,
        db: Session,
        settings: Optional[DispatcherSettings] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._settings = settings or get_settings()
        self._session = session
        self._clock = clock
        self._templates = TemplateResolver(db)
        self._adapters: Dict[Provider, ProviderAdapter] = {}

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------
    def dispatch_one(
        self,
        target: NotificationTarget,
        kind: NotificationKind,
        config: GatewaySettings,
        mark: bool = True,
    ) -> DeliveryOutcome:
        """
        mark=False leaves the sent marker alone; dispatch_many sets it once
        for the whole fan-out.
        """
        resolved = self._templates.resolve(
            kind.slug,
            target.tenant_id,
            approved_only=config.use_waba_templates,
        ) or ResolvedTemplate(content=kind.fallback, source=SOURCE_FALLBACK)
        message = render_template(resolved.content, target.variables)

        if not target.recipient_phone:
            logger.warning("Target %s has no phone number, skipping send", target.target_id)
            result = SendResult.failed(NO_PHONE_ERROR, ERROR_NO_PHONE)
            self._record(target, kind, config, resolved.source, message, None, result)
            self._db.commit()
            return self._outcome(target, result, resolved.source, marker_set=False)

        adapter = self._adapter_for(config.provider)
        phone = normalize_phone(target.recipient_phone, self._settings.country_code)

        source = resolved.source
        result = None
        if self._approved_template_applies(config, resolved):
            result = self._send_approved(adapter, config, phone, resolved.waba, target)
            if result.success:
                source = SOURCE_WABA
            else:
                logger.warning(
                    "Approved template %s failed for target %s (%s), falling back to free text",
                    resolved.waba.name,
                    target.target_id,
                    result.error,
                )
                result = None

        if result is None:
            logger.info(
                "Sending %s for target %s via %s (template=%s)",
                kind.name,
                target.target_id,
                config.provider,
                resolved.source,
            )
            result = adapter.send(config, phone, message, target.image_url)

        self._record(target, kind, config, source, message, phone, result)

        marker_set = False
        if mark and result.success and kind.idempotent:
            marker_set = self._mark(kind, target, 1)

        self._db.commit()

        if result.success:
            logger.info("Delivered %s to %s (message_id=%s)", kind.name, phone, result.message_id)
        else:
            logger.error(
                "Delivery of %s to %s failed: %s (%s)",
                kind.name,
                phone,
                result.error,
                result.error_code,
            )

        return self._outcome(target, result, source, marker_set=marker_set)

    def dispatch_many(
        self,
        targets: List[NotificationTarget],
        kind: NotificationKind,
        config: GatewaySettings,
    ) -> List[DeliveryOutcome]:
        """
        Deliver one target row to several recipients. Every recipient gets its
        own DeliveryRecord; the sent marker is set once, carrying the number
        of recipients reached.
        """
        outcomes = [self.dispatch_one(target, kind, config, mark=False) for target in targets]
        sent_count = sum(1 for outcome in outcomes if outcome.success)
        logger.info(
            "%s fan-out complete: %d sent, %d failed",
            kind.name,
            sent_count,
            len(outcomes) - sent_count,
        )

        if sent_count and kind.idempotent:
            marker_set = self._mark(kind, targets[0], sent_count)
            self._db.commit()
            if marker_set:
                outcomes = [replace(o, marker_set=o.success) for o in outcomes]

        return outcomes

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _adapter_for(self, provider: str) -> ProviderAdapter:
        selected = parse_provider(provider)
        adapter = self._adapters.get(selected)
        if adapter is None:
            adapter = build_adapter(
                selected,
                session=self._session,
                timeout=self._settings.http_timeout_seconds,
                dry_run=self._settings.dry_run,
            )
            self._adapters[selected] = adapter
        return adapter

    def _mark(self, kind: NotificationKind, target: NotificationTarget, sent_count: int) -> bool:
        marker_set = kind.mark_sent(self._db, target.target_id, self._clock(), sent_count=sent_count)
        if not marker_set:
            logger.warning(
                "Sent marker for target %s was already set; leaving it unchanged",
                target.target_id,
            )
        return marker_set

    def _approved_template_applies(self, config: GatewaySettings, resolved: ResolvedTemplate) -> bool:
        if not config.use_waba_templates:
            return False
        if parse_provider(config.provider) is not Provider.ZPRO:
            return False
        if resolved.waba is None or not resolved.waba.is_usable:
            logger.info(
                "Approved templates enabled but %s has no usable link (template=%s), using free text",
                resolved.source,
                resolved.waba.name if resolved.waba else None,
            )
            return False
        return True

    def _send_approved(
        self,
        adapter: ProviderAdapter,
        config: GatewaySettings,
        phone: str,
        waba: WabaTemplate,
        target: NotificationTarget,
    ) -> SendResult:
        sender = cast(TemplateSender, adapter)
        params = waba.params(target.variables)
        logger.info("Sending approved template %s to %s (%d params)", waba.name, phone, len(params))
        return sender.send_template(config, phone, waba.name, waba.language, params)

    def _record(
        self,
        target: NotificationTarget,
        kind: NotificationKind,
        config: GatewaySettings,
        template_source: str,
        message: str,
        phone: Optional[str],
        result: SendResult,
    ) -> None:
        self._db.add(
            DeliveryRecord(
                function_name=kind.function_name,
                notification_type=kind.name,
                target_id=target.target_id,
                condominium_id=target.tenant_id,
                recipient_phone=phone,
                template_slug=kind.slug,
                template_source=template_source,
                message_content=message,
                provider=config.provider,
                provider_message_id=result.message_id,
                status="sent" if result.success else "failed",
                error_message=result.error,
                error_code=result.error_code,
                sent_at=self._clock(),
            )
        )

    @staticmethod
    def _outcome(
        target: NotificationTarget,
        result: SendResult,
        template_source: str,
        marker_set: bool,
    ) -> DeliveryOutcome:
        return DeliveryOutcome(
            target_id=target.target_id,
            success=result.success,
            message_id=result.message_id,
            error=result.error,
            error_code=result.error_code,
            marker_set=marker_set,
            template_source=template_source,
            recipient_id=target.recipient_id,
        )
