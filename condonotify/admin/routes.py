"""
File: condonotify/admin/routes.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
Super admin visibility and control endpoints.

Endpoints:
- GET  /admin/delivery-records
- GET  /admin/job-logs
- POST /admin/jobs/{function_name}/pause
- POST /admin/jobs/{function_name}/resume
- POST /admin/whatsapp/test-connection

Design rules:
- Read-only by default
- Explicit, controlled writes only where stated (pause switch)
- The connection test only ever messages the dummy probe number
"""

from typing import Optional
from uuid import UUID

import requests
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from condonotify.auth import require_super_admin
from condonotify.config import DispatcherSettings, get_settings
from condonotify.db import get_db
from condonotify.errors import ConfigurationError
from condonotify.models import DeliveryRecord, JobExecutionLog
from condonotify.notifications import get_http_session
from condonotify.outbound import build_adapter
from condonotify.services.dispatcher import load_active_config
from condonotify.services.job_log import set_paused

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_super_admin)],
)


# -------------------------------------------------------------------
# Delivery records
# -------------------------------------------------------------------
@router.get("/delivery-records")
def list_delivery_records(
    target_id: Optional[UUID] = None,
    status: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    query = db.query(DeliveryRecord)
    if target_id is not None:
        query = query.filter(DeliveryRecord.target_id == target_id)
    if status:
        query = query.filter(DeliveryRecord.status == status)

    rows = query.order_by(DeliveryRecord.sent_at.desc()).limit(limit).all()

    return [
        {
            "delivery_record_id": r.delivery_record_id,
            "function_name": r.function_name,
            "notification_type": r.notification_type,
            "target_id": r.target_id,
            "condominium_id": r.condominium_id,
            "recipient_phone": r.recipient_phone,
            "template_slug": r.template_slug,
            "template_source": r.template_source,
            "provider": r.provider,
            "provider_message_id": r.provider_message_id,
            "status": r.status,
            "error_message": r.error_message,
            "error_code": r.error_code,
            "sent_at": r.sent_at,
        }
        for r in rows
    ]


# -------------------------------------------------------------------
# Job logs
# -------------------------------------------------------------------
@router.get("/job-logs")
def list_job_logs(
    function_name: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    query = db.query(JobExecutionLog)
    if function_name:
        query = query.filter(JobExecutionLog.function_name == function_name)

    rows = query.order_by(JobExecutionLog.started_at.desc()).limit(limit).all()

    return [
        {
            "job_log_id": r.job_log_id,
            "function_name": r.function_name,
            "trigger_type": r.trigger_type,
            "status": r.status,
            "started_at": r.started_at,
            "ended_at": r.ended_at,
            "duration_ms": r.duration_ms,
            "result": r.result,
            "error_message": r.error_message,
        }
        for r in rows
    ]


# -------------------------------------------------------------------
# Pause switch (controlled write)
# -------------------------------------------------------------------
@router.post("/jobs/{function_name}/pause")
def pause_job(function_name: str, db: Session = Depends(get_db)):
    control = set_paused(db, function_name, True)
    return {"function_name": control.function_name, "paused": control.paused}


@router.post("/jobs/{function_name}/resume")
def resume_job(function_name: str, db: Session = Depends(get_db)):
    control = set_paused(db, function_name, False)
    return {"function_name": control.function_name, "paused": control.paused}


# -------------------------------------------------------------------
# Gateway connection test
# -------------------------------------------------------------------
@router.post("/whatsapp/test-connection")
def test_connection(
    db: Session = Depends(get_db),
    settings: DispatcherSettings = Depends(get_settings),
    http_session: requests.Session = Depends(get_http_session),
):
    try:
        config = load_active_config(db)
        adapter = build_adapter(
            config.provider,
            session=http_session,
            timeout=settings.http_timeout_seconds,
            dry_run=settings.dry_run,
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    result = adapter.check_connection(config)
    return {
        "provider": config.provider,
        "success": result.success,
        "error": result.error,
        "error_code": result.error_code,
    }
