"""
Z-API gateway adapter.

Credentials travel in the URL path:
    POST {api_url}/instances/{instance_id}/token/{api_key}/send-text
    POST {api_url}/instances/{instance_id}/token/{api_key}/send-image

The api key is masked whenever the URL is logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import HttpProviderAdapter
from .gateway import ERROR_HTTP, GatewaySettings, Provider, SendResult


@dataclass(frozen=True)
class ZapiResponse:
    zapi_message_id: Optional[str]
    message_id: Optional[str]
    message: Optional[str]

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ZapiResponse":
        def _text(name: str) -> Optional[str]:
            value = data.get(name)
            return str(value) if value else None

        return cls(
            zapi_message_id=_text("zapiMessageId"),
            message_id=_text("messageId"),
            message=_text("message"),
        )


class ZapiAdapter(HttpProviderAdapter):
    provider = Provider.ZAPI

    def _send(
        self,
        config: GatewaySettings,
        phone: str,
        message: str,
        image_url: Optional[str],
    ) -> SendResult:
        base = f"{config.base_url}/instances/{config.instance_id}/token/{config.api_key}"

        if image_url:
            parsed = self._post_json(
                config,
                f"{base}/send-image",
                {"phone": phone, "image": image_url, "caption": message},
            )
        else:
            parsed = self._post_json(
                config,
                f"{base}/send-text",
                {"phone": phone, "message": message},
            )

        if parsed.error:
            return SendResult.failed(parsed.error, parsed.error_code)

        body = ZapiResponse.from_json(parsed.fields)

        if not parsed.http_ok:
            return SendResult.failed(
                body.message or f"Z-API request failed (status {parsed.status_code})",
                ERROR_HTTP,
            )

        # zapiMessageId is the Z-API receipt; older instances only echo messageId
        message_id = body.zapi_message_id or body.message_id
        if not message_id:
            return SendResult.failed(
                body.message or "Z-API accepted the request but returned no zapiMessageId",
                ERROR_HTTP,
            )
        return SendResult.sent(message_id)
