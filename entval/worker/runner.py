"""Background worker that drains the async validation queue."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entval.config import Settings
from entval.engine.rules import RuleId
from entval.errors import ExternalLookupError, LookupNotConfiguredError, TransientLookupError
from entval.lookup.sml_client import TenantEntitlements
from entval.models import AsyncValidationResult
from entval.schemas.validation import AsyncStatus, RunStatus
from entval.storage.repositories import (
    NOT_APPLICABLE_MESSAGE,
    claim_batch,
    finish_processing_log,
    record_outcome,
    record_transient_failure,
    start_processing_log,
)
from entval.utils.clock import Clock, utcnow
from entval.worker.deprovision import RuleOutcome, evaluate_deprovision

logger = logging.getLogger(__name__)


class EntitlementLookup(Protocol):
    """What the worker needs from the SML client."""

    @property
    def is_configured(self) -> bool: ...

    async def fetch_tenant_entitlements(self, tenant: str) -> TenantEntitlements: ...


@dataclass(frozen=True)
class ClaimedRow:
    """Detached copy of a claimed row."""

    id: int
    record_id: str
    rule_id: str
    tenant: str | None
    request_type: str | None
    claimed_at: datetime

    @classmethod
    def from_model(cls, row: AsyncValidationResult) -> "ClaimedRow":
        return cls(
            id=row.id,
            record_id=row.record_id,
            rule_id=row.rule_id,
            tenant=row.tenant_id or row.tenant_name,
            request_type=row.request_type,
            claimed_at=row.processing_started_at,
        )


@dataclass
class RunCounters:
    queued: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass(frozen=True)
class RunResult:
    log_id: int
    status: RunStatus
    counters: RunCounters
    error_message: str | None = None


class ValidationWorker:
    """
    One pass: open a processing log, claim a batch, evaluate each row, close the log.

    Rows are independent; an exception on one row is recorded as a transient
    failure for that row and the pass carries on.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        lookup: EntitlementLookup,
        *,
        batch_size: int = 50,
        concurrency: int = 4,
        retry_ceiling: int = 3,
        claim_timeout: timedelta = timedelta(minutes=15),
        lookup_timeout: float = 30.0,
        clock: Clock = utcnow,
    ):
        self.session_maker = session_maker
        self.lookup = lookup
        self.batch_size = batch_size
        self.concurrency = max(1, concurrency)
        self.retry_ceiling = retry_ceiling
        self.claim_timeout = claim_timeout
        self.lookup_timeout = lookup_timeout
        self.clock = clock
        self._handlers: dict[str, Callable[[ClaimedRow], Awaitable[RuleOutcome | None]]] = {
            RuleId.DEPROVISION_ACTIVE_ENTITLEMENTS.value: self._check_deprovision,
        }

    @classmethod
    def from_settings(
        cls, session_maker: async_sessionmaker[AsyncSession], lookup: EntitlementLookup, config: Settings, **kwargs
    ) -> "ValidationWorker":
        return cls(
            session_maker,
            lookup,
            batch_size=config.batch_size,
            concurrency=config.worker_concurrency,
            retry_ceiling=config.retry_ceiling,
            claim_timeout=timedelta(seconds=config.claim_timeout_seconds),
            lookup_timeout=config.lookup_timeout_seconds,
            **kwargs,
        )

    async def run_once(self) -> RunResult:
        async with self.session_maker() as db:
            log = await start_processing_log(db, self.clock())
            await db.commit()
            log_id = log.id

        counters = RunCounters()
        status = RunStatus.COMPLETED
        error_message = None
        try:
            if not self.lookup.is_configured:
                logger.warning("SML lookup not configured, skipping this run")
                error_message = LookupNotConfiguredError().message
            else:
                async with self.session_maker() as db:
                    rows = [
                        ClaimedRow.from_model(row)
                        for row in await claim_batch(db, self.batch_size, self.clock(), self.claim_timeout)
                    ]
                    await db.commit()
                counters.queued = len(rows)
                logger.info("Claimed %d async validation row(s)", len(rows))

                semaphore = asyncio.Semaphore(self.concurrency)

                async def guarded(row: ClaimedRow) -> None:
                    async with semaphore:
                        await self._process_row(row, counters)

                await asyncio.gather(*(guarded(row) for row in rows))
        except Exception as e:
            logger.exception("Async validation run failed")
            status = RunStatus.FAILED
            error_message = str(e)

        async with self.session_maker() as db:
            await finish_processing_log(
                db,
                log_id,
                status,
                self.clock(),
                queued=counters.queued,
                processed=counters.processed,
                succeeded=counters.succeeded,
                failed=counters.failed,
                skipped=counters.skipped,
                error_message=error_message,
            )
            await db.commit()

        logger.info(
            "Async validation run %s: queued=%d processed=%d succeeded=%d failed=%d skipped=%d",
            status.value, counters.queued, counters.processed, counters.succeeded, counters.failed, counters.skipped,
        )
        return RunResult(log_id=log_id, status=status, counters=counters, error_message=error_message)

    async def _process_row(self, row: ClaimedRow, counters: RunCounters) -> None:
        handler = self._handlers.get(row.rule_id)
        try:
            if handler is None:
                await self._write_outcome(
                    row, RuleOutcome(AsyncStatus.ERROR, f"No async handler for rule {row.rule_id}", {})
                )
                counters.failed += 1
            else:
                outcome = await handler(row)
                if outcome is None:
                    await self._write_outcome(row, RuleOutcome(AsyncStatus.PASS, NOT_APPLICABLE_MESSAGE, {}))
                    counters.skipped += 1
                else:
                    await self._write_outcome(row, outcome)
                    if outcome.status is AsyncStatus.ERROR:
                        counters.failed += 1
                    else:
                        counters.succeeded += 1
        except (TransientLookupError, asyncio.TimeoutError) as e:
            message = str(e) or f"SML lookup timed out after {self.lookup_timeout}s"
            await self._write_transient_failure(row, message, counters)
        except Exception as e:
            logger.exception("Error processing async validation row %s (record %s)", row.id, row.record_id)
            await self._write_transient_failure(row, f"{type(e).__name__}: {e}", counters)
        counters.processed += 1

    async def _check_deprovision(self, row: ClaimedRow) -> RuleOutcome | None:
        if not row.tenant or "deprovision" not in (row.request_type or "").lower():
            return None
        try:
            snapshot = await asyncio.wait_for(
                self.lookup.fetch_tenant_entitlements(row.tenant), timeout=self.lookup_timeout
            )
        except TransientLookupError:
            raise
        except ExternalLookupError as e:
            return RuleOutcome(AsyncStatus.ERROR, e.message, {"tenant": row.tenant, "error": e.message, **e.details})
        outcome = evaluate_deprovision(snapshot, self.clock())
        logger.debug("Record %s deprovision check: %s", row.record_id, outcome.status.value)
        return outcome

    async def _write_outcome(self, row: ClaimedRow, outcome: RuleOutcome) -> None:
        async with self.session_maker() as db:
            await record_outcome(
                db,
                row.id,
                outcome.status,
                outcome.message,
                outcome.details,
                outcome.external_snapshot,
                self.clock(),
                active_entitlements_count=outcome.active_entitlements_count,
                claimed_at=row.claimed_at,
            )
            await db.commit()

    async def _write_transient_failure(self, row: ClaimedRow, message: str, counters: RunCounters) -> None:
        counters.failed += 1
        try:
            async with self.session_maker() as db:
                await record_transient_failure(
                    db, row.id, message, self.retry_ceiling, self.clock(), claimed_at=row.claimed_at
                )
                await db.commit()
        except Exception:
            # row stays claimed and is picked up again once the claim times out
            logger.exception("Could not record failure for row %s", row.id)


class ValidationScheduler:
    """Runs the worker every `interval_seconds`; trigger() starts a pass early."""

    def __init__(self, worker: ValidationWorker, interval_seconds: float):
        self.worker = worker
        self.interval_seconds = interval_seconds
        self._wake = asyncio.Event()
        self._stopping = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._loop(), name="async-validation-worker")

    def trigger(self) -> None:
        self._wake.set()

    async def stop(self) -> None:
        self._stopping = True
        self._wake.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _loop(self) -> None:
        logger.info("Async validation scheduler started (every %ss)", self.interval_seconds)
        while not self._stopping:
            try:
                await self.worker.run_once()
            except Exception:
                logger.exception("Async validation pass crashed")
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
        logger.info("Async validation scheduler stopped")
