"""
NotificaCondo WhatsApp Dispatcher
Outbound delivery abstraction

This module defines the stable ProviderAdapter interface and the strongly-typed
settings/result objects shared by every WhatsApp gateway variant.

Guardrails:
- Adapters never raise for expected failures (HTTP error status, HTML or
  malformed bodies, provider-reported errors). They return a SendResult.
- Connection problems are converted into a SendResult as well.
- Configuration problems (unknown provider) are raised by the factory, not here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol


class Provider(str, Enum):
    ZPRO = "zpro"
    ZAPI = "zapi"
    EVOLUTION = "evolution"
    WPPCONNECT = "wppconnect"


# Error codes carried by SendResult.error_code
ERROR_INVALID_ENDPOINT = "INVALID_ENDPOINT"
ERROR_INVALID_RESPONSE = "INVALID_RESPONSE"
ERROR_SESSION_DISCONNECTED = "SESSION_DISCONNECTED"
ERROR_API = "API_ERROR"
ERROR_HTTP = "HTTP_ERROR"
ERROR_AUTH = "AUTH_ERROR"
ERROR_CONNECTION = "CONNECTION_ERROR"
ERROR_NO_PHONE = "NO_PHONE"


@dataclass(frozen=True)
class GatewaySettings:
    """
    Immutable view of the active gateway configuration row.

    Built once per dispatch/run; adapters never see the ORM object.
    """
    provider: str
    api_url: str
    api_key: str
    instance_id: str = ""
    use_official_api: bool = False
    use_waba_templates: bool = False

    @property
    def base_url(self) -> str:
        return self.api_url.rstrip("/")

    @classmethod
    def from_row(cls, row) -> "GatewaySettings":
        return cls(
            provider=(row.provider or "").strip(),
            api_url=row.api_url or "",
            api_key=row.api_key or "",
            instance_id=row.instance_id or "",
            use_official_api=bool(row.use_official_api),
            use_waba_templates=bool(row.use_waba_templates),
        )


@dataclass(frozen=True)
class SendResult:
    """
    Normalised outcome of one provider call.
    """
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def sent(message_id: Optional[str]) -> "SendResult":
        return SendResult(success=True, message_id=message_id)

    @staticmethod
    def failed(error: str, error_code: Optional[str] = None) -> "SendResult":
        return SendResult(success=False, error=error, error_code=error_code)


class ProviderAdapter(Protocol):
    """
    One WhatsApp gateway wire protocol.
    """
    provider: Provider

    def send(
        self,
        config: GatewaySettings,
        phone: str,
        message: str,
        image_url: Optional[str] = None,
    ) -> SendResult:
        """
        Deliver a WhatsApp text message (optionally with an image).
        Must not throw for transport or provider failures.
        """
        ...

    def check_connection(self, config: GatewaySettings) -> SendResult:
        """
        Verify URL and credentials without messaging a real recipient.
        """
        ...


class TemplateSender(Protocol):
    """
    Gateways that can deliver Meta-approved templates (Z-PRO /templateBody).
    """

    def send_template(
        self,
        config: GatewaySettings,
        phone: str,
        template_name: str,
        language: str,
        params: List[str],
        media_url: Optional[str] = None,
    ) -> SendResult:
        ...
