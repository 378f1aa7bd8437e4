"""
Shared HTTP plumbing for the gateway adapters.

Each adapter owns its URL shape, auth convention and response schema; this
base only owns the session, timeouts, logging and the rule that a connection
problem becomes a failed SendResult instead of an exception.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

import requests

from .gateway import ERROR_CONNECTION, GatewaySettings, Provider, SendResult
from .response import ParsedResponse, parse_http_response

DEFAULT_TIMEOUT_SECONDS = 30
LOG_BODY_CHARS = 300

# Dummy recipient used to probe a gateway without messaging anyone real
PING_NUMBER = "5511999999999"

_NON_DIGITS = re.compile(r"\D")


def digits_only(phone: str) -> str:
    return _NON_DIGITS.sub("", phone or "")


def mask_secret(text: str, secret: str) -> str:
    if not secret:
        return text
    return text.replace(secret, "***")


class HttpProviderAdapter:
    provider: Provider

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout
        self._logger = logging.getLogger(f"outbound.{self.provider.value}")

    # ---------------------------------------------------------
    # Public contract
    # ---------------------------------------------------------
    def send(
        self,
        config: GatewaySettings,
        phone: str,
        message: str,
        image_url: Optional[str] = None,
    ) -> SendResult:
        try:
            return self._send(config, digits_only(phone), message, image_url)
        except requests.RequestException as exc:
            self._logger.error("Connection error: %s", mask_secret(str(exc), config.api_key))
            return SendResult.failed(
                f"Connection error: {mask_secret(str(exc), config.api_key)}",
                ERROR_CONNECTION,
            )

    def check_connection(self, config: GatewaySettings) -> SendResult:
        """
        Probe the gateway with a dummy number.

        A provider error about the number itself still proves the URL and
        credentials work; callers should read error_code, not just success.
        """
        return self.send(config, PING_NUMBER, "ping")

    def _send(
        self,
        config: GatewaySettings,
        phone: str,
        message: str,
        image_url: Optional[str],
    ) -> SendResult:
        raise NotImplementedError

    # ---------------------------------------------------------
    # HTTP helpers
    # ---------------------------------------------------------
    def _post_json(
        self,
        config: GatewaySettings,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> ParsedResponse:
        self._logger.info("POST %s", mask_secret(url, config.api_key))
        resp = self._session.post(
            url,
            json=payload,
            headers={"Content-Type": "application/json", **(headers or {})},
            timeout=self._timeout,
        )
        return self._parse(resp)

    def _get(
        self,
        config: GatewaySettings,
        url: str,
        params: Dict[str, str],
    ) -> ParsedResponse:
        self._logger.info("GET %s (%d query params)", mask_secret(url, config.api_key), len(params))
        resp = self._session.get(
            url,
            params=params,
            headers={"Content-Type": "application/json"},
            timeout=self._timeout,
        )
        return self._parse(resp)

    def _parse(self, resp: requests.Response) -> ParsedResponse:
        self._logger.info("Response status: %s", resp.status_code)
        self._logger.debug("Response body: %s", (resp.text or "")[:LOG_BODY_CHARS])
        parsed = parse_http_response(resp)
        if parsed.error:
            self._logger.error("Unreadable gateway response: %s", parsed.error)
        return parsed
