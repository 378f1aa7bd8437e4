"""
Scheduled job bookkeeping.

Every run of a scheduled function gets one edge_function_logs row that moves
running -> completed | skipped | error. The pause switch lives in
cron_job_controls and is read at the start of each run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from condonotify.models import CronJobControl, JobExecutionLog

logger = logging.getLogger("job_log")

TRIGGER_TYPES = ("cron", "manual")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_job(
    db: Session,
    function_name: str,
    trigger_type: str = "cron",
    now: Optional[datetime] = None,
) -> JobExecutionLog:
    if trigger_type not in TRIGGER_TYPES:
        raise ValueError(f"trigger_type must be one of {TRIGGER_TYPES}, got {trigger_type!r}")

    log = JobExecutionLog(
        function_name=function_name,
        trigger_type=trigger_type,
        status="running",
        started_at=now or _utcnow(),
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    logger.info("Job %s started (%s)", function_name, trigger_type)
    return log


def finish_job(
    db: Session,
    log: JobExecutionLog,
    status: str,
    result: Optional[dict[str, Any]] = None,
    error_message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> JobExecutionLog:
    ended_at = now or _utcnow()
    started_at = log.started_at
    if started_at.tzinfo is None:
        # SQLite hands timestamps back naive; they were written as UTC
        started_at = started_at.replace(tzinfo=timezone.utc)

    log.status = status
    log.ended_at = ended_at
    log.duration_ms = max(0, int((ended_at - started_at).total_seconds() * 1000))
    log.result = result
    log.error_message = error_message
    db.add(log)
    db.commit()
    logger.info("Job %s finished with status %s in %sms", log.function_name, status, log.duration_ms)
    return log


def is_paused(db: Session, function_name: str) -> bool:
    control = db.get(CronJobControl, function_name)
    return bool(control and control.paused)


def set_paused(
    db: Session,
    function_name: str,
    paused: bool,
    now: Optional[datetime] = None,
) -> CronJobControl:
    now = now or _utcnow()
    control = db.get(CronJobControl, function_name)
    if control is None:
        control = CronJobControl(function_name=function_name)

    control.paused = paused
    control.paused_at = now if paused else None
    control.updated_at = now
    db.add(control)
    db.commit()
    logger.info("Job %s %s", function_name, "paused" if paused else "resumed")
    return control
