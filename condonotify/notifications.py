"""
File: condonotify/notifications.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
HTTP surface of the dispatcher.

Endpoints:
- POST /notifications/send                          (single target, tenant owner or super admin;
                                                     packages reach every resident of the apartment)
- POST /notifications/party-hall-reminders/run      (scheduled batch, called by the external cron)

Design rules:
- Error bodies are always {"error": "..."}
- Provider error strings are surfaced verbatim
- Blocking work (database, gateway HTTP) runs in the threadpool
- No gateway logic here; everything goes through NotificationDispatcher / BatchRunner
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional
from uuid import UUID

import requests
from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from condonotify.auth import authenticate, bearer_token
from condonotify.config import DispatcherSettings, get_settings
from condonotify.db import get_db
from condonotify.errors import (
    ConfigurationError,
    TargetNotFoundError,
    UnknownNotificationTypeError,
)
from condonotify.outbound.gateway import ERROR_NO_PHONE
from condonotify.services.batch_runner import BatchRunner
from condonotify.services.dispatcher import NotificationDispatcher, load_active_config
from condonotify.services.targets import NOTIFICATION_KINDS, get_kind

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger("notifications")

# -------------------------------------------------
# Shared outbound HTTP session
# -------------------------------------------------
_http_session: requests.Session | None = None


def get_http_session() -> requests.Session:
    global _http_session
    if _http_session is None:
        _http_session = requests.Session()
    return _http_session


# Stands in for a body that is not valid JSON
_INVALID_BODY = object()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# -------------------------------------------------------------------
# Single dispatch
# -------------------------------------------------------------------
@router.post("/send")
async def send_notification(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    settings: DispatcherSettings = Depends(get_settings),
    http_session: requests.Session = Depends(get_http_session),
):
    try:
        payload = await request.json()
    except ValueError:
        payload = _INVALID_BODY

    # database and gateway calls block, keep them off the event loop
    return await run_in_threadpool(
        _send_notification,
        payload,
        authorization,
        db,
        settings,
        http_session,
    )


def _send_notification(
    payload: Any,
    authorization: Optional[str],
    db: Session,
    settings: DispatcherSettings,
    http_session: requests.Session,
):
    principal = authenticate(db, authorization)
    if principal is None:
        return _error(401, "Unauthorized")

    if payload is _INVALID_BODY or not isinstance(payload, dict):
        return _error(400, "Invalid JSON body")

    raw_target_id = payload.get("targetId")
    notification_type = payload.get("notificationType")

    if not raw_target_id or not notification_type:
        return _error(400, "targetId and notificationType are required")

    try:
        target_id = UUID(str(raw_target_id))
    except ValueError:
        return _error(400, "targetId must be a valid UUID")

    try:
        kind = get_kind(str(notification_type))
    except UnknownNotificationTypeError as exc:
        return _error(400, str(exc))

    try:
        targets = kind.load_targets(db, target_id)
    except TargetNotFoundError as exc:
        return _error(404, str(exc))

    first = targets[0]
    if not principal.can_manage(first.tenant_owner_id, first.allowed_user_ids):
        logger.warning("User %s may not notify target %s", principal.user_id, target_id)
        return _error(403, "Forbidden")

    try:
        config = load_active_config(db)
        dispatcher = NotificationDispatcher(db, settings=settings, session=http_session)
        if kind.fan_out:
            outcomes = dispatcher.dispatch_many(targets, kind, config)
        else:
            outcomes = [dispatcher.dispatch_one(first, kind, config)]
    except ConfigurationError as exc:
        return _error(400, str(exc))
    except Exception:
        logger.exception("Unexpected error sending %s to %s", notification_type, target_id)
        db.rollback()
        return _error(500, "Internal server error")

    delivered = [o for o in outcomes if o.success]
    if not delivered:
        failure = outcomes[0]
        no_phone = all(o.error_code == ERROR_NO_PHONE for o in outcomes)
        return _error(400 if no_phone else 500, failure.error or "Failed to send message")

    body = {"success": True, "messageId": delivered[0].message_id}
    if kind.fan_out:
        body.update(
            notificationsSent=len(delivered),
            notificationsFailed=len(outcomes) - len(delivered),
            details=[o.to_dict() for o in outcomes],
        )
    return body


# -------------------------------------------------------------------
# Scheduled batch
# -------------------------------------------------------------------
@router.post("/party-hall-reminders/run")
def run_party_hall_reminders(
    date_param: Optional[str] = Query(default=None, alias="date"),
    trigger: str = "cron",
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    settings: DispatcherSettings = Depends(get_settings),
    http_session: requests.Session = Depends(get_http_session),
):
    if settings.cron_secret and bearer_token(authorization) != settings.cron_secret:
        return _error(401, "Unauthorized")

    if trigger not in ("cron", "manual"):
        return _error(400, "trigger must be 'cron' or 'manual'")

    window_date = None
    if date_param:
        try:
            window_date = date.fromisoformat(date_param)
        except ValueError:
            return _error(400, "date must be formatted as YYYY-MM-DD")

    runner = BatchRunner(db, settings=settings, session=http_session)
    try:
        job = runner.run_scheduled(
            NOTIFICATION_KINDS["reminder"],
            window_date=window_date,
            trigger_type=trigger,
        )
    except Exception as exc:
        # already logged and recorded on the job log by the runner
        return _error(500, str(exc))

    return job.to_dict()
