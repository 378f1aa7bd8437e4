"""
WPPConnect gateway adapter.

    POST {api_url}/api/{instance_id}/send-message    Authorization: Bearer <api_key>
    POST {api_url}/api/{instance_id}/send-file-url

WPPConnect answers HTTP 200 for some logical failures, so a send only counts
when the status code is 2xx AND the body's status field is not "error".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import HttpProviderAdapter
from .gateway import ERROR_API, ERROR_HTTP, GatewaySettings, Provider, SendResult

STATUS_ERROR = "error"


@dataclass(frozen=True)
class WppconnectResponse:
    status: Optional[str]
    message_id: Optional[str]
    message: Optional[str]

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "WppconnectResponse":
        status = data.get("status")
        message_id = data.get("id")
        message = data.get("message")
        return cls(
            status=str(status) if status is not None else None,
            message_id=str(message_id) if message_id else None,
            message=str(message) if message else None,
        )


class WppconnectAdapter(HttpProviderAdapter):
    provider = Provider.WPPCONNECT

    def _send(
        self,
        config: GatewaySettings,
        phone: str,
        message: str,
        image_url: Optional[str],
    ) -> SendResult:
        base = f"{config.base_url}/api/{config.instance_id}"
        headers = {"Authorization": f"Bearer {config.api_key}"}

        if image_url:
            parsed = self._post_json(
                config,
                f"{base}/send-file-url",
                {"phone": phone, "url": image_url, "caption": message, "isGroup": False},
                headers=headers,
            )
        else:
            parsed = self._post_json(
                config,
                f"{base}/send-message",
                {"phone": phone, "message": message, "isGroup": False},
                headers=headers,
            )

        if parsed.error:
            return SendResult.failed(parsed.error, parsed.error_code)

        body = WppconnectResponse.from_json(parsed.fields)

        if not parsed.http_ok:
            return SendResult.failed(
                body.message or f"WPPConnect request failed (status {parsed.status_code})",
                ERROR_HTTP,
            )

        if body.status == STATUS_ERROR:
            return SendResult.failed(
                body.message or "WPPConnect reported an error",
                ERROR_API,
            )

        return SendResult.sent(body.message_id)
