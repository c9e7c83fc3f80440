"""Validation finding, report, and API schemas."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class FindingStatus(str, Enum):
    """Outcome of a synchronous rule."""

    PASS = "PASS"
    FAIL = "FAIL"
    WARNING = "WARNING"


class AsyncStatus(str, Enum):
    """Lifecycle of an async validation row."""

    PENDING = "PENDING"
    PASS = "PASS"
    FAIL = "FAIL"
    WARNING = "WARNING"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self is not AsyncStatus.PENDING


class OverallStatus(str, Enum):
    """Merged status of a record across sync and async rules."""

    PASS = "PASS"
    FAIL = "FAIL"
    WARNING = "WARNING"
    INCOMPLETE = "INCOMPLETE"


class RunStatus(str, Enum):
    """Processing log status."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ValidationFinding(BaseModel):
    """Result of one sync rule against one record."""

    rule_id: str
    record_id: str
    status: FindingStatus
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class AsyncResultView(BaseModel):
    """Read model of an async_validation_results row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    record_id: str
    record_name: str | None = None
    account_name: str | None = None
    tenant_name: str | None = None
    request_type: str | None = None
    rule_id: str
    rule_name: str | None = None
    status: AsyncStatus
    message: str | None = None
    details: dict[str, Any] | None = None
    external_snapshot: dict[str, Any] | None = None
    active_entitlements_count: int = 0
    retry_count: int = 0
    error_message: str | None = None
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ProcessingLogView(BaseModel):
    """Read model of a processing log row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    started_at: datetime
    completed_at: datetime | None = None
    records_queued: int = 0
    records_processed: int = 0
    records_succeeded: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    status: RunStatus
    error_message: str | None = None


class RecordValidationReport(BaseModel):
    """Sync findings and async rows merged for one record."""

    record_id: str
    record_name: str | None = None
    overall_status: OverallStatus
    is_valid: bool
    findings: list[ValidationFinding] = Field(default_factory=list)
    async_results: list[AsyncResultView] = Field(default_factory=list)
    incomplete_rules: list[str] = Field(default_factory=list)


class FailedRule(BaseModel):
    """Failed rule entry in the errors summary."""

    rule_id: str
    rule_name: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class RecordErrors(BaseModel):
    """A record that failed at least one sync rule."""

    record_id: str
    record_name: str | None = None
    account_name: str | None = None
    request_type: str | None = None
    failed_rules: list[FailedRule] = Field(default_factory=list)


class ValidationSummary(BaseModel):
    """Totals over a batch of records."""

    total_records: int
    valid_records: int
    invalid_records: int
    enabled_rules_count: int


class ValidationErrorsResponse(BaseModel):
    """POST /v1/validation/errors response."""

    errors: list[RecordErrors] = Field(default_factory=list)
    summary: ValidationSummary


class EvaluateRequest(BaseModel):
    """POST /v1/validation/evaluate request - raw PS records."""

    records: list[dict[str, Any]]
    enabled_rules: list[str] | None = None


class RecordEvaluation(BaseModel):
    """Per-record evaluation output."""

    record_id: str
    record_name: str | None = None
    is_valid: bool
    findings: list[ValidationFinding] = Field(default_factory=list)
    enqueued_rules: list[str] = Field(default_factory=list)


class EvaluateResponse(BaseModel):
    """POST /v1/validation/evaluate response."""

    results: list[RecordEvaluation] = Field(default_factory=list)


class StatusStatistics(BaseModel):
    """Count of async rows per status."""

    total_results: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    last_updated: datetime | None = None


class AsyncStatusResponse(BaseModel):
    """GET /v1/validation/async-status response."""

    last_processing: ProcessingLogView | None = None
    statistics: StatusStatistics
