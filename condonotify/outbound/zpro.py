"""
File: condonotify/outbound/zpro.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
Z-PRO (AtenderChat) gateway adapter.

Two mutually exclusive request shapes, selected ONLY by
GatewaySettings.use_official_api (never guessed from the URL):

- Legacy mode (use_official_api=False)
    Text:  GET  {api_url}/params/?body=&number=&externalKey=&bearertoken=&isClosed=false
    Image: POST {api_url}/url  (Bearer auth, JSON body with mediaUrl)

- Official / WABA mode (use_official_api=True)
    Text:  POST {api_url}/SendMessageAPIText    {number, body}
    Image: POST {api_url}/SendMediaAPIBase64    {number, body, mediatype, base64}
    Both with Authorization: Bearer <api_key>.

- Approved templates (GatewaySettings.use_waba_templates, see send_template)
    POST {api_url}/templateBody  {number, externalKey, templateName, language, components}
    Meta Cloud API component format, Bearer auth.

Both modes share one response schema (ZproResponse).
"""

from __future__ import annotations

import base64
import random
import string
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .base import PING_NUMBER, HttpProviderAdapter, digits_only, mask_secret
from .gateway import (
    ERROR_API,
    ERROR_AUTH,
    ERROR_CONNECTION,
    ERROR_HTTP,
    ERROR_INVALID_ENDPOINT,
    ERROR_INVALID_RESPONSE,
    ERROR_SESSION_DISCONNECTED,
    GatewaySettings,
    Provider,
    SendResult,
)
from .response import ParsedResponse, is_html, parse_response

SESSION_REQUIRED_ERROR = "ERR_API_REQUIRES_SESSION"

# Placeholder the admin UI stores when the instance id is embedded in the key
EMBEDDED_INSTANCE_PLACEHOLDER = "zpro-embedded"

_TRACKING_ALPHABET = string.digits + string.ascii_lowercase


def _tracking_id() -> str:
    suffix = "".join(random.choice(_TRACKING_ALPHABET) for _ in range(9))
    return f"zpro_{int(time.time() * 1000)}_{suffix}"


def _nested_key_id(data: Dict[str, Any]) -> Any:
    key = data.get("key")
    if isinstance(key, dict):
        return key.get("id")
    return None


@dataclass(frozen=True)
class ZproResponse:
    """
    Z-PRO answers with one of several shapes depending on the backing
    engine; the message id lives under whichever field that engine uses.
    """
    message_id: Optional[str]
    error: Optional[str]
    message: Optional[str]

    ID_FIELDS = ("id", "messageId", "message_id", "msgId", "zapiMessageId", "wamid")

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ZproResponse":
        candidates = [data.get(name) for name in cls.ID_FIELDS]
        candidates.insert(4, _nested_key_id(data))

        message_id = None
        for value in candidates:
            # "sent" is a status echo, not an id
            if value and value != "sent":
                message_id = str(value)
                break

        error = data.get("error")
        message = data.get("message")
        return cls(
            message_id=message_id,
            error=str(error) if error else None,
            message=str(message) if message else None,
        )


class ZproAdapter(HttpProviderAdapter):
    provider = Provider.ZPRO

    def _send(
        self,
        config: GatewaySettings,
        phone: str,
        message: str,
        image_url: Optional[str],
    ) -> SendResult:
        if config.use_official_api:
            self._logger.info("Sending via official (WABA) mode to %s", phone)
            parsed = self._send_official(config, phone, message, image_url)
        else:
            self._logger.info("Sending via legacy /params/ mode to %s", phone)
            parsed = self._send_legacy(config, phone, message, image_url)
        return self._interpret(parsed)

    # ---------------------------------------------------------
    # LEGACY MODE
    # ---------------------------------------------------------
    @staticmethod
    def external_key(config: GatewaySettings) -> str:
        key = (config.instance_id or "").strip()
        if not key or key == EMBEDDED_INSTANCE_PLACEHOLDER:
            return config.api_key
        return key

    def _send_legacy(
        self,
        config: GatewaySettings,
        phone: str,
        message: str,
        image_url: Optional[str],
    ) -> ParsedResponse:
        external_key = self.external_key(config)

        if image_url:
            return self._post_json(
                config,
                f"{config.base_url}/url",
                {
                    "mediaUrl": image_url,
                    "body": message,
                    "number": phone,
                    "externalKey": external_key,
                    "isClosed": False,
                },
                headers={"Authorization": f"Bearer {config.api_key}"},
            )

        return self._get(
            config,
            f"{config.base_url}/params/",
            {
                "body": message,
                "number": phone,
                "externalKey": external_key,
                "bearertoken": config.api_key,
                "isClosed": "false",
            },
        )

    # ---------------------------------------------------------
    # OFFICIAL (WABA) MODE
    # ---------------------------------------------------------
    def _send_official(
        self,
        config: GatewaySettings,
        phone: str,
        message: str,
        image_url: Optional[str],
    ) -> ParsedResponse:
        headers = {"Authorization": f"Bearer {config.api_key}"}

        if image_url:
            data_uri = self._download_as_data_uri(image_url)
            if data_uri:
                return self._post_json(
                    config,
                    f"{config.base_url}/SendMediaAPIBase64",
                    {
                        "number": phone,
                        "body": message,
                        "mediatype": "image",
                        "base64": data_uri,
                    },
                    headers=headers,
                )
            self._logger.warning("Image unavailable, sending text only")

        return self._post_json(
            config,
            f"{config.base_url}/SendMessageAPIText",
            {"number": phone, "body": message},
            headers=headers,
        )

    def _download_as_data_uri(self, image_url: str) -> Optional[str]:
        try:
            resp = self._session.get(image_url, timeout=self._timeout)
        except requests.RequestException as exc:
            self._logger.warning("Failed to fetch image: %s", exc)
            return None

        if not 200 <= resp.status_code < 300:
            self._logger.warning("Failed to fetch image: HTTP %s", resp.status_code)
            return None

        content_type = resp.headers.get("content-type") or "image/jpeg"
        encoded = base64.b64encode(resp.content).decode("ascii")
        return f"data:{content_type};base64,{encoded}"

    # ---------------------------------------------------------
    # APPROVED TEMPLATES (/templateBody)
    # ---------------------------------------------------------
    def send_template(
        self,
        config: GatewaySettings,
        phone: str,
        template_name: str,
        language: str,
        params: List[str],
        media_url: Optional[str] = None,
    ) -> SendResult:
        """
        Send a Meta-approved template. params fill the body placeholders
        positionally; media_url becomes an image header.
        """
        components: List[Dict[str, Any]] = []
        if media_url:
            components.append(
                {
                    "type": "header",
                    "parameters": [{"type": "image", "image": {"link": media_url}}],
                }
            )
        if params:
            components.append(
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": p} for p in params],
                }
            )

        payload = {
            "number": digits_only(phone),
            "externalKey": self.external_key(config),
            "templateName": template_name,
            "language": language,
            "components": components,
        }

        self._logger.info(
            "Sending template %s to %s (%d params)", template_name, payload["number"], len(params)
        )
        try:
            parsed = self._post_json(
                config,
                f"{config.base_url}/templateBody",
                payload,
                headers={"Authorization": f"Bearer {config.api_key}"},
            )
        except requests.RequestException as exc:
            self._logger.error("Connection error: %s", mask_secret(str(exc), config.api_key))
            return SendResult.failed(
                f"Connection error: {mask_secret(str(exc), config.api_key)}",
                ERROR_CONNECTION,
            )
        return self._interpret_template(parsed)

    def _interpret_template(self, parsed: ParsedResponse) -> SendResult:
        fields = parsed.fields
        if any(SESSION_REQUIRED_ERROR in str(fields.get(name) or "") for name in ("error", "message")):
            return SendResult.failed(
                "WhatsApp session disconnected. Open the provider panel "
                "(AtenderChat/Z-PRO) and scan the QR code to reconnect.",
                ERROR_SESSION_DISCONNECTED,
            )

        if parsed.error:
            return SendResult.failed(parsed.error, parsed.error_code)

        if not parsed.http_ok:
            return SendResult.failed(
                str(fields.get("message") or fields.get("error") or f"HTTP {parsed.status_code}"),
                ERROR_HTTP,
            )

        data = fields.get("data")
        message_id = (
            fields.get("messageId")
            or _nested_key_id(fields)
            or fields.get("id")
            or (_nested_key_id(data) if isinstance(data, dict) else None)
        )
        return SendResult.sent(str(message_id) if message_id else _tracking_id())

    # ---------------------------------------------------------
    # RESPONSE
    # ---------------------------------------------------------
    def _interpret(self, parsed: ParsedResponse) -> SendResult:
        if parsed.error:
            return SendResult.failed(parsed.error, parsed.error_code)

        body = ZproResponse.from_json(parsed.fields)

        if body.error == SESSION_REQUIRED_ERROR:
            return SendResult.failed(
                "WhatsApp session disconnected. Open the provider panel "
                "(AtenderChat/Z-PRO) and scan the QR code to reconnect.",
                ERROR_SESSION_DISCONNECTED,
            )

        if body.error:
            return SendResult.failed(body.error, ERROR_API)

        if parsed.http_ok:
            if body.message_id:
                return SendResult.sent(body.message_id)

            # Z-PRO acknowledges many sends without returning any id.
            # A synthesized tracking id keeps delivery records traceable.
            tracking_id = _tracking_id()
            self._logger.info("Accepted without message id, using tracking id %s", tracking_id)
            return SendResult.sent(tracking_id)

        return SendResult.failed(
            body.message or f"HTTP {parsed.status_code}",
            ERROR_HTTP,
        )

    # ---------------------------------------------------------
    # CONNECTION CHECK (admin)
    # ---------------------------------------------------------
    def check_connection(self, config: GatewaySettings) -> SendResult:
        """
        Probe the gateway with a dummy number.

        An error about the number itself still proves the URL and
        credentials are right, so any JSON answer counts as connected.
        """
        if not config.use_official_api:
            return self.send(config, PING_NUMBER, "ping")

        try:
            resp = self._session.post(
                f"{config.base_url}/SendMessageAPIText",
                json={"number": PING_NUMBER, "body": "ping"},
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {config.api_key}",
                },
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            return SendResult.failed(
                f"Connection error: {mask_secret(str(exc), config.api_key)}",
                ERROR_CONNECTION,
            )

        if resp.status_code in (401, 403):
            return SendResult.failed("Invalid credentials (Bearer token rejected)", ERROR_AUTH)

        if is_html(resp.text or ""):
            return SendResult.failed(
                "Endpoint not found. Check the configured API URL.",
                ERROR_INVALID_ENDPOINT,
            )

        parsed = parse_response(resp.status_code, resp.text)
        if parsed.error:
            return SendResult.failed(parsed.error, ERROR_INVALID_RESPONSE)

        if parsed.fields.get("error") == SESSION_REQUIRED_ERROR:
            return SendResult.failed(
                "WhatsApp session disconnected. Scan the QR code in the provider panel.",
                ERROR_SESSION_DISCONNECTED,
            )

        return SendResult.sent("connection_ok")
