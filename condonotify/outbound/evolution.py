"""
Evolution API gateway adapter.

    POST {api_url}/message/sendText/{instance_id}    header apikey: <api_key>
    POST {api_url}/message/sendMedia/{instance_id}

A send is confirmed by the nested key.id of the created message.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import HttpProviderAdapter
from .gateway import ERROR_HTTP, GatewaySettings, Provider, SendResult


@dataclass(frozen=True)
class EvolutionResponse:
    key_id: Optional[str]
    message: Optional[str]

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "EvolutionResponse":
        key = data.get("key")
        key_id = key.get("id") if isinstance(key, dict) else None

        # Evolution reports errors as either a string or a list of strings
        message = data.get("message")
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)

        return cls(
            key_id=str(key_id) if key_id else None,
            message=str(message) if message else None,
        )


class EvolutionAdapter(HttpProviderAdapter):
    provider = Provider.EVOLUTION

    def _send(
        self,
        config: GatewaySettings,
        phone: str,
        message: str,
        image_url: Optional[str],
    ) -> SendResult:
        headers = {"apikey": config.api_key}

        if image_url:
            parsed = self._post_json(
                config,
                f"{config.base_url}/message/sendMedia/{config.instance_id}",
                {
                    "number": phone,
                    "mediatype": "image",
                    "media": image_url,
                    "caption": message,
                },
                headers=headers,
            )
        else:
            parsed = self._post_json(
                config,
                f"{config.base_url}/message/sendText/{config.instance_id}",
                {"number": phone, "text": message},
                headers=headers,
            )

        if parsed.error:
            return SendResult.failed(parsed.error, parsed.error_code)

        body = EvolutionResponse.from_json(parsed.fields)

        if parsed.http_ok and body.key_id:
            return SendResult.sent(body.key_id)

        return SendResult.failed(
            body.message or f"Evolution request failed (status {parsed.status_code})",
            ERROR_HTTP,
        )
