"""Validation endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from entval.database import get_db
from entval.engine.evaluator import evaluate, summarize
from entval.engine.pipeline import validate_record
from entval.engine.reporting import build_report
from entval.engine.rules import RULES, RuleConfig
from entval.models import ProcessingLog
from entval.schemas.entitlement import EntitlementRecord
from entval.schemas.validation import (
    AsyncResultView,
    AsyncStatusResponse,
    EvaluateRequest,
    EvaluateResponse,
    ProcessingLogView,
    RecordValidationReport,
    ValidationErrorsResponse,
)
from entval.storage.repositories import (
    get_latest_processing_log,
    get_results_for_records,
    get_status_statistics,
)
from entval.utils.clock import utcnow
from entval.worker.runner import ValidationWorker

router = APIRouter()


class ReportRequest(BaseModel):
    """POST /v1/validation/report request."""

    record: dict[str, Any]
    enabled_rules: list[str] | None = None


def _rule_config(enabled_rules: list[str] | None) -> RuleConfig:
    if enabled_rules is None:
        return RuleConfig.default()
    try:
        return RuleConfig.from_enabled_ids(enabled_rules)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown rule id: {e}",
        )


def _parse_record(raw: dict[str, Any]) -> EntitlementRecord:
    if not raw.get("Id"):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Record is missing Id",
        )
    return EntitlementRecord.from_salesforce(raw)


def get_worker(request: Request) -> ValidationWorker:
    worker = getattr(request.app.state, "worker", None)
    if worker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Async validation worker is not running",
        )
    return worker


@router.get("/rules")
async def list_rules():
    """Rule catalog with default enabled flags."""
    return {
        "rules": [
            {
                "id": rule.id.value,
                "name": rule.name,
                "description": rule.description,
                "category": rule.category,
                "kind": rule.kind.value,
                "enabled_by_default": rule.enabled_by_default,
            }
            for rule in RULES.values()
        ]
    }


@router.post("/evaluate", response_model=EvaluateResponse)
async def evaluate_records(
    body: EvaluateRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Run sync rules on each record and queue the async rules that apply.
    Re-posting an unchanged record does not queue it again.
    """
    config = _rule_config(body.enabled_rules)
    records = [_parse_record(raw) for raw in body.records]
    now = utcnow()
    results = [await validate_record(db, record, config, now) for record in records]
    return EvaluateResponse(results=results)


@router.post("/errors", response_model=ValidationErrorsResponse)
async def validation_errors(body: EvaluateRequest):
    """Records failing at least one sync rule, with batch totals."""
    config = _rule_config(body.enabled_rules)
    return summarize((_parse_record(raw) for raw in body.records), config)


@router.post("/report", response_model=RecordValidationReport)
async def record_report(
    body: ReportRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Fresh sync findings merged with the stored async rows for one record."""
    config = _rule_config(body.enabled_rules)
    record = _parse_record(body.record)
    rows = await get_results_for_records(db, [record.record_id])
    enabled_ids = {rule.id.value for rule in config.enabled_rules()}
    return build_report(
        record.record_id,
        evaluate(record, config),
        [row for row in rows if row.rule_id in enabled_ids],
        record_name=record.record_name,
    )


@router.get("/async-results")
async def async_results(
    db: Annotated[AsyncSession, Depends(get_db)],
    record_ids: Annotated[str | None, Query(description="Comma-separated record ids")] = None,
):
    """Stored async validation rows for the given records."""
    ids = [r.strip() for r in (record_ids or "").split(",") if r.strip()]
    rows = await get_results_for_records(db, ids)
    return {
        "results": [AsyncResultView.model_validate(row) for row in rows],
        "count": len(rows),
    }


@router.get("/async-status", response_model=AsyncStatusResponse)
async def async_status(
    db: Annotated[AsyncSession, Depends(get_db)],
    rule_id: str | None = None,
):
    """Latest worker run and row counts per status."""
    log = await get_latest_processing_log(db)
    return AsyncStatusResponse(
        last_processing=ProcessingLogView.model_validate(log) if log else None,
        statistics=await get_status_statistics(db, rule_id),
    )


@router.post("/async-run", response_model=ProcessingLogView)
async def trigger_async_run(
    worker: Annotated[ValidationWorker, Depends(get_worker)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Run one worker pass now and return its processing log."""
    result = await worker.run_once()
    log = await db.get(ProcessingLog, result.log_id)
    if log is None:
        raise HTTPException(status_code=500, detail="Processing log not found")
    return ProcessingLogView.model_validate(log)
