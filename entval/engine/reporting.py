"""Merge sync findings and async rows into a per-record report."""

from collections.abc import Iterable

from entval.models import AsyncValidationResult
from entval.schemas.validation import (
    AsyncResultView,
    AsyncStatus,
    FindingStatus,
    OverallStatus,
    RecordValidationReport,
    ValidationFinding,
)

_INCOMPLETE = {AsyncStatus.PENDING, AsyncStatus.ERROR}


def build_report(
    record_id: str,
    findings: Iterable[ValidationFinding],
    async_rows: Iterable[AsyncValidationResult | AsyncResultView],
    record_name: str | None = None,
) -> RecordValidationReport:
    """
    FAIL beats everything; a PENDING or ERROR async row makes the record
    INCOMPLETE rather than a pass; WARNING surfaces without blocking.
    """
    findings = [f for f in findings if f.record_id == record_id]
    views = [
        row if isinstance(row, AsyncResultView) else AsyncResultView.model_validate(row)
        for row in async_rows
    ]
    views = [v for v in views if v.record_id == record_id]

    failed = any(f.status is FindingStatus.FAIL for f in findings) or any(
        v.status is AsyncStatus.FAIL for v in views
    )
    incomplete = [v.rule_id for v in views if v.status in _INCOMPLETE]
    warned = any(f.status is FindingStatus.WARNING for f in findings) or any(
        v.status is AsyncStatus.WARNING for v in views
    )

    if failed:
        overall = OverallStatus.FAIL
    elif incomplete:
        overall = OverallStatus.INCOMPLETE
    elif warned:
        overall = OverallStatus.WARNING
    else:
        overall = OverallStatus.PASS

    return RecordValidationReport(
        record_id=record_id,
        record_name=record_name or next((v.record_name for v in views if v.record_name), None),
        overall_status=overall,
        is_valid=not failed,
        findings=findings,
        async_results=views,
        incomplete_rules=incomplete,
    )
