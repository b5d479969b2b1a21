"""
Background courier status polling.

One batch: load every non-terminal shipment across tenants, ask each
courier for its status on a bounded thread pool, and write each answer
back in its own transaction with the shipment's tenant bound. Only
transient courier failures are retried.
"""

from __future__ import annotations

import argparse
import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session

from tracker.core.config import Settings, settings as default_settings
from tracker.core.db import SessionLocal
from tracker.core.logging import configure_logging
from tracker.core.metrics import record_courier_poll
from tracker.core.time import utcnow
from tracker.core.tracing import get_trace_id, new_trace_id, set_trace_id, timed_call
from tracker.couriers.base import CourierProvider, TrackingStatus
from tracker.couriers.errors import CourierApiError, CourierApiUnavailable
from tracker.couriers.registry import CourierProviderRegistry, get_courier_registry
from tracker.crud.shipments import apply_tracking_status, get_shipment, list_pollable_shipments
from tracker.models.enums import TERMINAL_SHIPMENT_STATUSES
from tracker.models.tenants import Tenant
from tracker.tenancy.audit import DatabaseAuditSink, configure_audit_sink
from tracker.tenancy.context import tenant_scope, without_tenant_scope
from tracker.tenancy.errors import TenantNotFound
from tracker.tenancy.records import TenantRecord


logger = logging.getLogger(__name__)

BYPASS_REASON = "courier status polling"

OUTCOME_UPDATED = "updated"
OUTCOME_FAILED = "failed"
OUTCOME_UNAVAILABLE = "unavailable"
OUTCOME_SKIPPED = "skipped"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_ERROR = "error"


@dataclass
class RetryPolicy:
    max_attempts: int
    base_delay_seconds: float
    max_delay_seconds: float

    def backoff_seconds(self, attempt: int) -> float:
        multiplier = 2 ** max(attempt - 1, 0)
        return min(self.base_delay_seconds * multiplier, self.max_delay_seconds)

    @classmethod
    def from_settings(cls, cfg: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, cfg.COURIER_POLL_MAX_ATTEMPTS),
            base_delay_seconds=cfg.COURIER_POLL_BACKOFF_BASE_SECONDS,
            max_delay_seconds=cfg.COURIER_POLL_BACKOFF_MAX_SECONDS,
        )


@dataclass(frozen=True)
class PollJob:
    shipment_id: int
    tenant_id: str
    courier_id: str
    voucher: str


@dataclass(frozen=True)
class PollOutcome:
    shipment_id: int
    courier_id: str
    outcome: str
    attempts: int = 0
    detail: Optional[str] = None


@dataclass
class PollReport:
    outcomes: list[PollOutcome] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        return dict(Counter(item.outcome for item in self.outcomes))

    def count(self, outcome: str) -> int:
        return sum(1 for item in self.outcomes if item.outcome == outcome)


class CourierStatusPoller:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        registry: CourierProviderRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        max_workers: int | None = None,
        per_courier_concurrency: int | None = None,
        batch_limit: int | None = None,
        clock: Callable = utcnow,
        settings_obj: Settings | None = None,
    ) -> None:
        cfg = settings_obj or default_settings
        self.session_factory = session_factory
        self.registry = registry or get_courier_registry()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(cfg)
        self.max_workers = max(1, max_workers or cfg.COURIER_POLL_MAX_WORKERS)
        self.per_courier_concurrency = max(
            1, per_courier_concurrency or cfg.COURIER_POLL_PER_COURIER_CONCURRENCY
        )
        self.batch_limit = batch_limit or cfg.COURIER_POLL_BATCH_LIMIT
        self.lookback_days = cfg.COURIER_POLL_LOOKBACK_DAYS
        self.clock = clock
        self._stop = threading.Event()
        self._semaphores: dict[str, threading.BoundedSemaphore] = {}
        self._semaphores_lock = threading.Lock()

    def stop(self) -> None:
        """
        Cancel the running batch. Shipments not yet fetched are reported
        as cancelled and backoff waits return at once; updates already
        committed stay as they are.
        """
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; True if stopped meanwhile."""
        return self._stop.wait(timeout)

    def _semaphore(self, courier_id: str) -> threading.BoundedSemaphore:
        with self._semaphores_lock:
            semaphore = self._semaphores.get(courier_id)
            if semaphore is None:
                semaphore = threading.BoundedSemaphore(self.per_courier_concurrency)
                self._semaphores[courier_id] = semaphore
            return semaphore

    def load_batch(self) -> tuple[list[PollJob], dict[str, TenantRecord]]:
        with self.session_factory() as db:
            with without_tenant_scope(BYPASS_REASON, actor="courier_poll"):
                shipments = list_pollable_shipments(
                    db,
                    now=self.clock(),
                    lookback_days=self.lookback_days,
                    limit=self.batch_limit,
                )
                jobs = [
                    PollJob(
                        shipment_id=shipment.id,
                        tenant_id=shipment.tenant_id,
                        courier_id=shipment.courier_id,
                        voucher=shipment.voucher,
                    )
                    for shipment in shipments
                ]
            tenant_ids = {job.tenant_id for job in jobs}
            tenants = {}
            if tenant_ids:
                for tenant in db.query(Tenant).filter(Tenant.id.in_(tenant_ids)):
                    tenants[tenant.id] = TenantRecord.from_model(tenant)
        return jobs, tenants

    def run_once(self) -> PollReport:
        jobs, tenants = self.load_batch()
        report = PollReport()
        if not jobs:
            return report
        batch_id = new_trace_id()
        set_trace_id(batch_id)
        logger.info(
            "courier_poll.batch_started",
            extra={"shipments": len(jobs), "trace_id": batch_id},
        )

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="courier-poll") as pool:
            futures = [
                (job, pool.submit(self._poll_in_batch, batch_id, job, tenants.get(job.tenant_id)))
                for job in jobs
            ]
            for job, future in futures:
                try:
                    outcome = future.result()
                except Exception as exc:
                    logger.exception(
                        "courier_poll.shipment_crashed",
                        extra={"shipment_id": job.shipment_id, "courier_id": job.courier_id},
                    )
                    outcome = PollOutcome(job.shipment_id, job.courier_id, OUTCOME_ERROR, detail=str(exc))
                record_courier_poll(job.courier_id, outcome.outcome)
                report.outcomes.append(outcome)

        logger.info(
            "courier_poll.batch_finished",
            extra={"outcomes": report.counts, "trace_id": get_trace_id()},
        )
        return report

    def _poll_in_batch(self, batch_id: str, job: PollJob, tenant: Optional[TenantRecord]) -> PollOutcome:
        # Worker threads do not inherit the caller's context.
        set_trace_id(batch_id)
        return self.poll(job, tenant)

    def poll(self, job: PollJob, tenant: Optional[TenantRecord]) -> PollOutcome:
        if self.stopped:
            return PollOutcome(job.shipment_id, job.courier_id, OUTCOME_CANCELLED)
        if tenant is None or not tenant.is_usable():
            return PollOutcome(job.shipment_id, job.courier_id, OUTCOME_SKIPPED, detail="tenant_inactive")
        provider = self.registry.get(job.courier_id)
        if provider is None:
            return PollOutcome(job.shipment_id, job.courier_id, OUTCOME_FAILED, detail="unknown_courier")
        if not provider.tracking_configured:
            return PollOutcome(job.shipment_id, job.courier_id, OUTCOME_SKIPPED, detail="not_configured")

        tracking, attempts, failure = self.fetch_with_retry(provider, job)
        if tracking is None:
            return PollOutcome(job.shipment_id, job.courier_id, failure[0], attempts=attempts, detail=failure[1])
        return self.apply(job, tenant, tracking, attempts)

    def fetch_with_retry(
        self,
        provider: CourierProvider,
        job: PollJob,
    ) -> tuple[Optional[TrackingStatus], int, tuple[str, Optional[str]]]:
        attempt = 0
        while True:
            if self.stopped:
                return None, attempt, (OUTCOME_CANCELLED, None)
            attempt += 1
            try:
                with self._semaphore(job.courier_id), timed_call(
                    "courier.fetch_tracking_status", courier_id=job.courier_id, shipment_id=job.shipment_id
                ):
                    return provider.fetch_tracking_status(job.voucher), attempt, (OUTCOME_UPDATED, None)
            except CourierApiError as exc:
                logger.warning(
                    "courier_poll.rejected",
                    extra={"shipment_id": job.shipment_id, "courier_id": job.courier_id, "error": str(exc)},
                )
                return None, attempt, (OUTCOME_FAILED, str(exc))
            except CourierApiUnavailable as exc:
                if attempt >= self.retry_policy.max_attempts:
                    logger.warning(
                        "courier_poll.unavailable",
                        extra={
                            "shipment_id": job.shipment_id,
                            "courier_id": job.courier_id,
                            "attempts": attempt,
                            "error": str(exc),
                        },
                    )
                    return None, attempt, (OUTCOME_UNAVAILABLE, str(exc))
                delay = self.retry_policy.backoff_seconds(attempt)
                logger.info(
                    "courier_poll.retrying",
                    extra={"shipment_id": job.shipment_id, "courier_id": job.courier_id, "delay": delay},
                )
                if self._stop.wait(delay):
                    return None, attempt, (OUTCOME_CANCELLED, None)

    def apply(self, job: PollJob, tenant: TenantRecord, tracking: TrackingStatus, attempts: int) -> PollOutcome:
        with self.session_factory() as db, tenant_scope(tenant):
            try:
                shipment = get_shipment(db, tenant.id, job.shipment_id)
            except TenantNotFound:
                return PollOutcome(job.shipment_id, job.courier_id, OUTCOME_SKIPPED, attempts, "gone")
            if shipment.status in TERMINAL_SHIPMENT_STATUSES:
                return PollOutcome(job.shipment_id, job.courier_id, OUTCOME_SKIPPED, attempts, "terminal")
            try:
                added = apply_tracking_status(db, shipment, tracking, polled_at=self.clock())
                db.commit()
            except Exception:
                db.rollback()
                raise
        logger.info(
            "courier_poll.shipment_updated",
            extra={
                "shipment_id": job.shipment_id,
                "courier_id": job.courier_id,
                "status": tracking.status,
                "new_events": len(added),
            },
        )
        return PollOutcome(job.shipment_id, job.courier_id, OUTCOME_UPDATED, attempts)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Poll couriers for shipment status updates.")
    parser.add_argument("--once", action="store_true", help="Run one batch and exit.")
    parser.add_argument("--limit", type=int, default=None)
    parser.add_argument("--interval", type=float, default=None)
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    configure_logging(default_settings.LOG_LEVEL)
    configure_audit_sink(DatabaseAuditSink(SessionLocal))
    interval = args.interval if args.interval is not None else default_settings.COURIER_POLL_INTERVAL_SECONDS
    poller = CourierStatusPoller(batch_limit=args.limit)
    try:
        while True:
            poller.run_once()
            if args.once or poller.wait(max(1.0, interval)):
                break
    except KeyboardInterrupt:
        poller.stop()


if __name__ == "__main__":
    main()
