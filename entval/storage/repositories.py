"""Repository functions for async validation results and processing logs."""

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from entval.engine.rules import ValidationRule
from entval.models import AsyncValidationResult, ProcessingLog
from entval.schemas.entitlement import EntitlementRecord
from entval.schemas.validation import AsyncStatus, RunStatus, StatusStatistics
from entval.utils.canonical import record_fingerprint

logger = logging.getLogger(__name__)

NOT_APPLICABLE_MESSAGE = "Not applicable (no tenant or not a deprovision request), skipped"


def _insert_for(db: AsyncSession):
    """Dialect insert supporting ON CONFLICT DO NOTHING."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def get_result(db: AsyncSession, record_id: str, rule_id: str) -> AsyncValidationResult | None:
    """Find the row for (record_id, rule_id)."""
    result = await db.execute(
        select(AsyncValidationResult)
        .where(
            AsyncValidationResult.record_id == record_id,
            AsyncValidationResult.rule_id == rule_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _reset_for(row: AsyncValidationResult, record: EntitlementRecord, fingerprint: str, now: datetime) -> None:
    row.record_name = record.record_name
    row.account_name = record.account_name
    row.tenant_name = record.tenant_name
    row.tenant_id = record.tenant_id
    row.request_type = record.request_type
    row.status = AsyncStatus.PENDING.value
    row.message = None
    row.details = None
    row.external_snapshot = None
    row.active_entitlements_count = 0
    row.error_message = None
    row.processing_started_at = None
    row.processing_completed_at = None
    row.processing_duration_ms = None
    row.source_fingerprint = fingerprint
    row.updated_at = now


async def enqueue(
    db: AsyncSession, record: EntitlementRecord, rule: ValidationRule, now: datetime
) -> AsyncValidationResult | None:
    """
    Queue an async rule for a record. Returns None when the rule does not apply.

    Idempotent per (record_id, rule_id): a row enqueued for the same record
    content is returned untouched, pending or terminal. Changed content resets
    the row to PENDING, keeping retry_count. If the changed record no longer
    qualifies for the rule, an existing row is closed as a not-applicable PASS
    so its old outcome stops counting.
    """
    fingerprint = record_fingerprint(record)
    row = await get_result(db, record.record_id, rule.id.value)

    if not rule.is_applicable(record):
        if row is not None and row.source_fingerprint != fingerprint:
            logger.info("Record %s no longer qualifies for %s, closing row", record.record_id, rule.id.value)
            _reset_for(row, record, fingerprint, now)
            row.status = AsyncStatus.PASS.value
            row.message = NOT_APPLICABLE_MESSAGE
            row.details = {}
            row.processing_completed_at = now
            await db.flush()
        return None

    if row is None:
        insert = _insert_for(db)
        await db.execute(
            insert(AsyncValidationResult)
            .values(
                record_id=record.record_id,
                record_name=record.record_name,
                account_name=record.account_name,
                tenant_name=record.tenant_name,
                tenant_id=record.tenant_id,
                request_type=record.request_type,
                rule_id=rule.id.value,
                rule_name=rule.name,
                status=AsyncStatus.PENDING.value,
                active_entitlements_count=0,
                retry_count=0,
                source_fingerprint=fingerprint,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["record_id", "rule_id"])
        )
        logger.info("Enqueued %s for record %s", rule.id.value, record.record_id)
        return await get_result(db, record.record_id, rule.id.value)

    if row.source_fingerprint == fingerprint:
        logger.debug("Record %s unchanged, keeping %s row (%s)", record.record_id, rule.id.value, row.status)
        return row

    logger.info("Record %s changed, re-queueing %s", record.record_id, rule.id.value)
    _reset_for(row, record, fingerprint, now)
    await db.flush()
    return row


def _unclaimed(now: datetime, claim_timeout: timedelta):
    # a claim older than the timeout belongs to a worker that died mid-row
    return or_(
        AsyncValidationResult.processing_started_at.is_(None),
        AsyncValidationResult.processing_started_at < now - claim_timeout,
    )


async def claim_batch(
    db: AsyncSession, limit: int, now: datetime, claim_timeout: timedelta
) -> list[AsyncValidationResult]:
    """
    Claim up to `limit` PENDING rows, oldest first.

    Each row is claimed with a single conditional UPDATE; a row another worker
    claimed in between updates zero rows and is left out.
    """
    result = await db.execute(
        select(AsyncValidationResult.id)
        .where(
            AsyncValidationResult.status == AsyncStatus.PENDING.value,
            _unclaimed(now, claim_timeout),
        )
        .order_by(AsyncValidationResult.created_at, AsyncValidationResult.id)
        .limit(limit)
    )
    candidate_ids = list(result.scalars().all())

    claimed_ids: list[int] = []
    for row_id in candidate_ids:
        updated = await db.execute(
            update(AsyncValidationResult)
            .where(
                AsyncValidationResult.id == row_id,
                AsyncValidationResult.status == AsyncStatus.PENDING.value,
                _unclaimed(now, claim_timeout),
            )
            .values(processing_started_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount == 1:
            claimed_ids.append(row_id)

    if not claimed_ids:
        return []
    result = await db.execute(
        select(AsyncValidationResult)
        .where(AsyncValidationResult.id.in_(claimed_ids))
        .order_by(AsyncValidationResult.created_at, AsyncValidationResult.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _load_claimed(
    db: AsyncSession, row_id: int, claimed_at: datetime | None
) -> AsyncValidationResult | None:
    row = await db.get(AsyncValidationResult, row_id, populate_existing=True)
    if row is None:
        logger.warning("Async validation row %s vanished", row_id)
        return None
    if claimed_at is not None and (
        row.status != AsyncStatus.PENDING.value or row.processing_started_at != claimed_at
    ):
        # re-queued or reclaimed while we worked; the newer evaluation wins
        logger.info("Row %s changed since claim, dropping stale result", row_id)
        return None
    return row


async def record_outcome(
    db: AsyncSession,
    row_id: int,
    status: AsyncStatus,
    message: str,
    details: dict[str, Any] | None,
    external_snapshot: dict[str, Any] | None,
    now: datetime,
    active_entitlements_count: int = 0,
    claimed_at: datetime | None = None,
) -> AsyncValidationResult | None:
    """Move a claimed row to a terminal status."""
    if not status.is_terminal:
        raise ValueError(f"{status.value} is not a terminal status")
    row = await _load_claimed(db, row_id, claimed_at)
    if row is None:
        return None
    row.status = status.value
    row.message = message
    row.details = details
    row.external_snapshot = external_snapshot
    row.active_entitlements_count = active_entitlements_count
    row.error_message = None
    row.processing_completed_at = now
    if row.processing_started_at is not None:
        row.processing_duration_ms = int((now - row.processing_started_at).total_seconds() * 1000)
    row.updated_at = now
    await db.flush()
    return row


async def record_transient_failure(
    db: AsyncSession,
    row_id: int,
    error_message: str,
    retry_ceiling: int,
    now: datetime,
    claimed_at: datetime | None = None,
) -> AsyncValidationResult | None:
    """
    Count a retryable failure. Past the ceiling the row becomes ERROR,
    otherwise it returns to the queue unclaimed.
    """
    row = await _load_claimed(db, row_id, claimed_at)
    if row is None:
        return None
    row.retry_count = (row.retry_count or 0) + 1
    row.error_message = error_message
    row.updated_at = now
    if row.retry_count > retry_ceiling:
        row.status = AsyncStatus.ERROR.value
        row.message = f"Lookup failed after {row.retry_count} attempts: {error_message}"
        row.processing_completed_at = now
        if row.processing_started_at is not None:
            row.processing_duration_ms = int((now - row.processing_started_at).total_seconds() * 1000)
        logger.warning("Row %s exhausted retries (%d), marked ERROR", row_id, row.retry_count)
    else:
        row.status = AsyncStatus.PENDING.value
        row.processing_started_at = None
        logger.warning("Row %s transient failure %d/%d: %s", row_id, row.retry_count, retry_ceiling, error_message)
    await db.flush()
    return row


async def get_results_for_records(db: AsyncSession, record_ids: list[str]) -> list[AsyncValidationResult]:
    """Rows for the given records, most recently updated first."""
    if not record_ids:
        return []
    result = await db.execute(
        select(AsyncValidationResult)
        .where(AsyncValidationResult.record_id.in_(record_ids))
        .order_by(AsyncValidationResult.updated_at.desc(), AsyncValidationResult.id.desc())
    )
    return list(result.scalars().all())


async def get_results_by_status(
    db: AsyncSession, status: AsyncStatus, rule_id: str | None = None, limit: int = 500
) -> list[AsyncValidationResult]:
    """e.g. all WARNING rows for the deprovision check."""
    query = select(AsyncValidationResult).where(AsyncValidationResult.status == status.value)
    if rule_id:
        query = query.where(AsyncValidationResult.rule_id == rule_id)
    result = await db.execute(query.order_by(AsyncValidationResult.updated_at.desc()).limit(limit))
    return list(result.scalars().all())


async def get_status_statistics(db: AsyncSession, rule_id: str | None = None) -> StatusStatistics:
    """Row counts per status and the latest update time."""
    query = select(
        AsyncValidationResult.status,
        func.count(AsyncValidationResult.id),
        func.max(AsyncValidationResult.updated_at),
    ).group_by(AsyncValidationResult.status)
    if rule_id:
        query = query.where(AsyncValidationResult.rule_id == rule_id)
    rows = (await db.execute(query)).all()

    by_status = {status.value: 0 for status in AsyncStatus}
    last_updated = None
    for status, count, updated in rows:
        by_status[status] = count
        if updated is not None and (last_updated is None or updated > last_updated):
            last_updated = updated
    return StatusStatistics(
        total_results=sum(by_status.values()),
        by_status=by_status,
        last_updated=last_updated,
    )


async def start_processing_log(db: AsyncSession, now: datetime) -> ProcessingLog:
    """Open a log row for a worker run."""
    log = ProcessingLog(
        started_at=now,
        status=RunStatus.RUNNING.value,
        records_queued=0,
        records_processed=0,
        records_succeeded=0,
        records_failed=0,
        records_skipped=0,
        created_at=now,
    )
    db.add(log)
    await db.flush()
    return log


async def finish_processing_log(
    db: AsyncSession,
    log_id: int,
    status: RunStatus,
    now: datetime,
    queued: int = 0,
    processed: int = 0,
    succeeded: int = 0,
    failed: int = 0,
    skipped: int = 0,
    error_message: str | None = None,
) -> ProcessingLog | None:
    """Close a worker run log with its counters."""
    log = await db.get(ProcessingLog, log_id, populate_existing=True)
    if log is None:
        return None
    log.status = status.value
    log.completed_at = now
    log.records_queued = queued
    log.records_processed = processed
    log.records_succeeded = succeeded
    log.records_failed = failed
    log.records_skipped = skipped
    log.error_message = error_message
    await db.flush()
    return log


async def get_latest_processing_log(db: AsyncSession) -> ProcessingLog | None:
    result = await db.execute(
        select(ProcessingLog).order_by(ProcessingLog.started_at.desc(), ProcessingLog.id.desc()).limit(1)
    )
    return result.scalar_one_or_none()
