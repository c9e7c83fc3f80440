"""Record intake: run sync rules now, queue async rules for the worker."""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from entval.engine.evaluator import evaluate, is_valid
from entval.engine.rules import RuleConfig, RuleKind
from entval.schemas.entitlement import EntitlementRecord
from entval.schemas.validation import RecordEvaluation
from entval.storage.repositories import enqueue

logger = logging.getLogger(__name__)


async def validate_record(
    db: AsyncSession, record: EntitlementRecord, config: RuleConfig, now: datetime
) -> RecordEvaluation:
    """Sync findings for the record; enabled async rules that apply are enqueued."""
    findings = evaluate(record, config)
    enqueued: list[str] = []
    for rule in config.enabled_rules(RuleKind.ASYNC_EXTERNAL):
        row = await enqueue(db, record, rule, now)
        if row is not None:
            enqueued.append(rule.id.value)
    return RecordEvaluation(
        record_id=record.record_id,
        record_name=record.record_name,
        is_valid=is_valid(findings),
        findings=findings,
        enqueued_rules=enqueued,
    )
