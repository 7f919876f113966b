"""Periodic reconciliation of PENDING payments against the provider.

Each pass walks every PENDING payment once. A payment older than the
configured timeout is moved to TIMEOUT without asking the provider; any
other payment with a provider reference is polled and SUCCESSFUL / FAILED
answers are applied through the shared transition function. Polling errors
leave the payment PENDING for the next pass, so the timeout bounds how long
a payment can stay unresolved (timeout + one interval in the worst case).

Only one pass runs at a time inside the process. A pass triggered while
another is in flight is skipped, not queued.
"""

import asyncio
import contextlib
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.models import Payment, PaymentStatus
from app.services.ledger import PaymentLedger
from app.services.momo_client import MomoClient
from app.services.time_utils import as_utc, isoformat_or_none, utcnow
from app.services.transitions import apply_provider_status, apply_transition

logger = logging.getLogger(__name__)

RESULT_TIMED_OUT = "timed_out"
RESULT_UPDATED = "updated"
RESULT_UNCHANGED = "unchanged"

ALREADY_RUNNING_MESSAGE = "Reconciliation is already running"


@dataclass
class ReconciliationReport:
    started_at: datetime
    processed: int = 0
    updated: int = 0
    timed_out: int = 0
    errors: int = 0
    duration_ms: int = 0
    finished_at: datetime | None = None
    failed_payment_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "timedOut": self.timed_out,
            "errors": self.errors,
            "durationMs": self.duration_ms,
            "startedAt": isoformat_or_none(self.started_at),
            "finishedAt": isoformat_or_none(self.finished_at),
        }


class ReconciliationEngine:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        client: MomoClient,
        *,
        notifier=None,
        timeout_minutes: int = 10,
        interval_minutes: int = 15,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.client = client
        self.notifier = notifier
        self.timeout_minutes = timeout_minutes
        self.interval_minutes = interval_minutes
        self._clock = clock
        self._lock = threading.Lock()
        self.last_run_at: datetime | None = None
        self.next_run_at: datetime | None = None
        self.last_report: ReconciliationReport | None = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def schedule(self) -> str:
        return f"*/{self.interval_minutes} * * * *"

    def run(self) -> ReconciliationReport | None:
        """Run one pass, or return None when another pass holds the guard."""
        if not self._lock.acquire(blocking=False):
            logger.info("Reconciliation already running, skipping...")
            return None
        try:
            return self._run_pass()
        finally:
            self._lock.release()

    def force(self) -> dict[str, Any]:
        if self.is_running:
            return {"success": False, "message": ALREADY_RUNNING_MESSAGE, "report": None}
        try:
            report = self.run()
        except Exception as exc:
            logger.exception("Force reconciliation error")
            return {"success": False, "message": str(exc) or "Unknown error", "report": None}
        if report is None:
            return {"success": False, "message": ALREADY_RUNNING_MESSAGE, "report": None}
        return {
            "success": True,
            "message": "Reconciliation completed successfully",
            "report": report.as_dict(),
        }

    def status(self) -> dict[str, Any]:
        next_run = self.next_run_at
        if next_run is None and self.last_run_at is not None:
            next_run = self.last_run_at + timedelta(minutes=self.interval_minutes)
        return {
            "isRunning": self.is_running,
            "schedule": self.schedule,
            "lastRun": isoformat_or_none(self.last_run_at),
            "nextRun": isoformat_or_none(next_run),
            "lastReport": self.last_report.as_dict() if self.last_report else None,
        }

    def _run_pass(self) -> ReconciliationReport:
        report = ReconciliationReport(started_at=self._clock())
        started = time.monotonic()
        logger.info("Starting payment reconciliation...")

        db = self._session_factory()
        try:
            ledger = PaymentLedger(db)
            pending = ledger.get_pending_payments()
            for payment in pending:
                report.processed += 1
                try:
                    result = self.reconcile_payment(ledger, payment)
                except Exception:
                    db.rollback()
                    report.errors += 1
                    report.failed_payment_ids.append(payment.id)
                    logger.exception("Error reconciling payment %s", payment.id)
                    continue
                if result == RESULT_TIMED_OUT:
                    report.timed_out += 1
                elif result == RESULT_UPDATED:
                    report.updated += 1
        finally:
            db.close()

        report.finished_at = self._clock()
        report.duration_ms = int((time.monotonic() - started) * 1000)
        self.last_run_at = report.started_at
        self.last_report = report
        logger.info(
            "Reconciliation completed in %sms: %s processed, %s updated, %s timed out, %s errors",
            report.duration_ms,
            report.processed,
            report.updated,
            report.timed_out,
            report.errors,
        )
        return report

    def reconcile_payment(self, ledger: PaymentLedger, payment: Payment) -> str:
        now = self._clock()
        age = now - as_utc(payment.created_at)
        if age > timedelta(minutes=self.timeout_minutes):
            # Local timeout wins: a late provider confirmation is not honoured here.
            outcome = apply_transition(
                ledger,
                payment,
                PaymentStatus.TIMEOUT,
                notifier=self.notifier,
                source="reconciliation-timeout",
            )
            if outcome.applied:
                logger.info("Payment %s timed out after %s minutes", payment.id, int(age.total_seconds() // 60))
                return RESULT_TIMED_OUT
            return RESULT_UNCHANGED

        if not payment.provider_reference:
            return RESULT_UNCHANGED

        result = self.client.check_status(payment.provider_reference)
        if result.transport_error:
            logger.info("Payment %s left PENDING, status check failed: %s", payment.id, result.reason)
            return RESULT_UNCHANGED

        outcome = apply_provider_status(
            ledger,
            payment,
            result.status,
            notifier=self.notifier,
            source="reconciliation",
            webhook_payload={
                "reconciliation": True,
                "mtnStatus": result.as_snapshot(),
                "timestamp": now.isoformat(),
            },
        )
        if outcome.applied:
            logger.info(
                "Payment %s reconciled as %s%s",
                payment.id,
                outcome.payment_status.value,
                f": {result.reason}" if result.reason else "",
            )
            return RESULT_UPDATED
        return RESULT_UNCHANGED


class ReconciliationScheduler:
    """Runs the engine on a fixed interval from an asyncio background task."""

    def __init__(self, engine: ReconciliationEngine, interval_seconds: int, startup_delay_seconds: int = 5):
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self._task: asyncio.Task | None = None

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_started:
            return
        logger.info("Starting reconciliation service with schedule: %s", self.engine.schedule)
        self._task = asyncio.create_task(self._loop(), name="payment-reconciliation")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self.engine.next_run_at = None
        logger.info("Reconciliation service stopped")

    async def _loop(self) -> None:
        delay = self.startup_delay_seconds
        while True:
            self.engine.next_run_at = utcnow() + timedelta(seconds=delay)
            await asyncio.sleep(delay)
            try:
                await asyncio.to_thread(self.engine.run)
            except Exception:
                logger.exception("Error during reconciliation")
            delay = self.interval_seconds
