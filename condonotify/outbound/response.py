"""
File: condonotify/outbound/response.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
Safe interpretation of a gateway's raw HTTP body.

Gateway resellers answer misconfigured requests (wrong URL, wrong auth) with
HTML error pages, and sometimes with plain text. Calling resp.json() directly
on those crashes the sender, so the body is always read as text first and
classified here.

Rules:
- Never raises
- HTML page      -> error (wrong endpoint), no JSON parse attempted
- Valid JSON     -> data
- Anything else  -> error quoting the first 200 characters of the body
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

import requests

from .gateway import ERROR_INVALID_ENDPOINT, ERROR_INVALID_RESPONSE

BODY_PREVIEW_CHARS = 200

_HTML_PREFIXES = ("<!doctype", "<html")


@dataclass(frozen=True)
class ParsedResponse:
    status_code: int
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def http_ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def fields(self) -> dict:
        """JSON object body, or an empty dict for arrays/scalars/errors."""
        return self.data if isinstance(self.data, dict) else {}


def is_html(text: str) -> bool:
    return text.lstrip()[:9].lower().startswith(_HTML_PREFIXES)


def parse_response(status_code: int, text: str | None) -> ParsedResponse:
    body = text or ""

    if is_html(body):
        return ParsedResponse(
            status_code=status_code,
            error=(
                f"Gateway returned a non-JSON response (HTML page, status {status_code}). "
                "Check the configured API URL and credentials."
            ),
            error_code=ERROR_INVALID_ENDPOINT,
        )

    try:
        data = json.loads(body)
    except ValueError:
        return ParsedResponse(
            status_code=status_code,
            error=f"Invalid gateway response (status {status_code}): {body[:BODY_PREVIEW_CHARS]}",
            error_code=ERROR_INVALID_RESPONSE,
        )

    return ParsedResponse(status_code=status_code, data=data)


def parse_http_response(resp: requests.Response) -> ParsedResponse:
    return parse_response(resp.status_code, resp.text)
