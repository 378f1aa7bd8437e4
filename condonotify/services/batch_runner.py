"""
File: condonotify/services/batch_runner.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
Scheduled bulk delivery (e.g. party hall reminders for tomorrow's bookings).

Flow per run:
1) open a job log row (running)
2) paused?            -> skipped, nothing queried
3) select eligible targets for the window date, minus those held back by the
   retry policy; none -> completed, no gateway config needed
4) load the active gateway config (missing / unknown provider aborts the run)
5) dispatch sequentially with a fixed pause between sends
6) close the job log: error only if EVERY target failed, else completed.
   The log keeps the per-target outcomes under "details".

Retry policy (per target, counted from failed delivery records):
- MAX_ATTEMPTS = 3 -> target is no longer picked up
- attempt 1 -> wait 5 minutes
- attempt 2 -> wait 30 minutes
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

import requests
from sqlalchemy import func
from sqlalchemy.orm import Session

from condonotify.config import DispatcherSettings, get_settings
from condonotify.models import DeliveryRecord
from condonotify.outbound import parse_provider
from condonotify.services.dispatcher import (
    DeliveryOutcome,
    NotificationDispatcher,
    load_active_config,
)
from condonotify.services.job_log import finish_job, is_paused, start_job
from condonotify.services.targets import NotificationKind, NotificationTarget

logger = logging.getLogger("batch_runner")

# ------------------------------------------------------------------
# Retry policy
# ------------------------------------------------------------------
MAX_ATTEMPTS = 3
BACKOFF_AFTER_ATTEMPT_1 = timedelta(minutes=5)
BACKOFF_AFTER_ATTEMPT_2 = timedelta(minutes=30)

PAUSED_MESSAGE = "Function is paused"
NO_TARGETS_MESSAGE = "No targets to notify"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobResult:
    success: bool
    date: Optional[date] = None
    total: int = 0
    sent: int = 0
    failed: int = 0
    results: List[dict] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> dict:
        if self.message == PAUSED_MESSAGE:
            return {"success": self.success, "message": self.message}

        out = {
            "success": self.success,
            "date": self.date.isoformat() if self.date else None,
            "total": self.total,
            "sent": self.sent,
            "failed": self.failed,
            "results": self.results,
        }
        if self.message:
            out["message"] = self.message
        return out

    def log_result(self) -> dict:
        """Summary stored on the job execution log."""
        out = {
            "date": self.date.isoformat() if self.date else None,
            "total": self.total,
            "sent": self.sent,
            "failed": self.failed,
            "details": self.results,
        }
        if self.message:
            out["message"] = self.message
        return out


class BatchRunner:
    def __init__(
        self,
        db: Session,
        settings: Optional[DispatcherSettings] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._db = db
        self._settings = settings or get_settings()
        self._clock = clock
        self._sleep = sleep
        self._dispatcher = NotificationDispatcher(
            db,
            settings=self._settings,
            session=session,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Public job entry
    # ------------------------------------------------------------------
    def run_scheduled(
        self,
        kind: NotificationKind,
        window_date: Optional[date] = None,
        trigger_type: str = "cron",
    ) -> JobResult:
        if not kind.batchable:
            raise ValueError(f"{kind.name} notifications are not sent in batches")

        log = start_job(self._db, kind.function_name, trigger_type, now=self._clock())

        if is_paused(self._db, kind.function_name):
            logger.info("Job %s is paused, skipping run", kind.function_name)
            finish_job(self._db, log, "skipped", result={"message": PAUSED_MESSAGE}, now=self._clock())
            return JobResult(success=True, message=PAUSED_MESSAGE)

        try:
            window = window_date or self.default_window_date()
            targets = [t for t in kind.eligible_targets(self._db, window) if self._retry_allows(kind, t)]

            # an empty day completes even when no gateway is configured
            if not targets:
                logger.info("No targets to notify for %s on %s", kind.name, window)
                job = JobResult(success=True, date=window, message=NO_TARGETS_MESSAGE)
                finish_job(self._db, log, "completed", result=job.log_result(), now=self._clock())
                return job

            config = load_active_config(self._db)
            # unknown provider must abort before anything is sent
            parse_provider(config.provider)

            outcomes = self._dispatch_all(kind, targets, config)

        except Exception as exc:
            logger.exception("Job %s failed", kind.function_name)
            self._db.rollback()
            finish_job(self._db, log, "error", error_message=str(exc), now=self._clock())
            raise

        sent = sum(1 for o in outcomes if o.success)
        failed = len(outcomes) - sent
        job = JobResult(
            success=True,
            date=window,
            total=len(outcomes),
            sent=sent,
            failed=failed,
            results=[o.to_dict() for o in outcomes],
        )

        status = "error" if sent == 0 else "completed"
        finish_job(
            self._db,
            log,
            status,
            result=job.log_result(),
            error_message="All notifications failed" if status == "error" else None,
            now=self._clock(),
        )
        logger.info("Job %s done: %d sent, %d failed", kind.function_name, sent, failed)
        return job

    def default_window_date(self) -> date:
        """Tomorrow, in the recipients' fixed UTC offset."""
        local_now = self._clock().astimezone(self._settings.local_timezone)
        return local_now.date() + timedelta(days=1)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _dispatch_all(self, kind, targets, config) -> List[DeliveryOutcome]:
        outcomes: List[DeliveryOutcome] = []
        delay_seconds = self._settings.send_delay_ms / 1000.0

        for index, target in enumerate(targets):
            if index and delay_seconds > 0:
                self._sleep(delay_seconds)

            try:
                outcomes.append(self._dispatcher.dispatch_one(target, kind, config))
            except Exception as exc:
                # one broken target must not stop the rest of the run
                logger.exception("Unexpected error dispatching to target %s", target.target_id)
                self._db.rollback()
                outcomes.append(
                    DeliveryOutcome(target_id=target.target_id, success=False, error=str(exc))
                )

        return outcomes

    def _retry_allows(self, kind: NotificationKind, target: NotificationTarget) -> bool:
        attempts, last_attempt_at = self._get_attempt_state(kind, target)

        if attempts >= MAX_ATTEMPTS:
            logger.info("Target %s exhausted %d attempts, skipping", target.target_id, attempts)
            return False

        required_wait = self._required_wait(attempts)
        if last_attempt_at and required_wait:
            if (self._clock() - last_attempt_at) < required_wait:
                logger.info("Target %s is backing off after %d failed attempts", target.target_id, attempts)
                return False

        return True

    def _get_attempt_state(
        self, kind: NotificationKind, target: NotificationTarget
    ) -> Tuple[int, Optional[datetime]]:
        attempts, last_attempt_at = (
            self._db.query(
                func.count(DeliveryRecord.delivery_record_id),
                func.max(DeliveryRecord.sent_at),
            )
            .filter(
                DeliveryRecord.target_id == target.target_id,
                DeliveryRecord.template_slug == kind.slug,
                DeliveryRecord.status == "failed",
            )
            .one()
        )

        if last_attempt_at is not None and last_attempt_at.tzinfo is None:
            last_attempt_at = last_attempt_at.replace(tzinfo=timezone.utc)

        return int(attempts or 0), last_attempt_at

    def _required_wait(self, attempts: int) -> Optional[timedelta]:
        if attempts <= 0:
            return timedelta(seconds=0)
        if attempts == 1:
            return BACKOFF_AFTER_ATTEMPT_1
        if attempts == 2:
            return BACKOFF_AFTER_ATTEMPT_2
        return None
