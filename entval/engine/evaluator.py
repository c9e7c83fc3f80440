"""Sync rule evaluator - runs enabled rules against a record."""

import logging
from collections.abc import Iterable

from entval.engine.rules import RuleConfig, RuleKind
from entval.schemas.entitlement import EntitlementRecord
from entval.schemas.validation import (
    FailedRule,
    FindingStatus,
    RecordErrors,
    ValidationErrorsResponse,
    ValidationFinding,
    ValidationSummary,
)

logger = logging.getLogger(__name__)


def evaluate(record: EntitlementRecord, config: RuleConfig) -> list[ValidationFinding]:
    """
    Run every enabled sync rule in catalog order.

    Disabled rules and async rules produce no finding. A checker that raises
    yields a FAIL for that rule only; the remaining rules still run.
    """
    findings: list[ValidationFinding] = []
    for rule in config.enabled_rules(RuleKind.SYNC):
        try:
            finding = rule.checker(record)
        except Exception as exc:
            logger.exception("Rule %s raised for record %s", rule.id.value, record.record_id)
            finding = ValidationFinding(
                rule_id=rule.id.value,
                record_id=record.record_id,
                status=FindingStatus.FAIL,
                message=f"Rule could not be evaluated: {exc}",
                details={"error": str(exc)},
            )
        logger.debug("Rule %s for record %s: %s", rule.id.value, record.record_id, finding.status.value)
        findings.append(finding)
    return findings


def is_valid(findings: Iterable[ValidationFinding]) -> bool:
    """A record is valid when no finding failed; warnings do not block."""
    return all(f.status is not FindingStatus.FAIL for f in findings)


def summarize(records: Iterable[EntitlementRecord], config: RuleConfig) -> ValidationErrorsResponse:
    """Evaluate a batch and list the records that failed, with totals."""
    names = {rule.id.value: rule.name for rule in config.enabled_rules()}
    errors: list[RecordErrors] = []
    total = 0
    for record in records:
        total += 1
        failed = [f for f in evaluate(record, config) if f.status is FindingStatus.FAIL]
        if not failed:
            continue
        errors.append(
            RecordErrors(
                record_id=record.record_id,
                record_name=record.record_name,
                account_name=record.account_name,
                request_type=record.request_type,
                failed_rules=[
                    FailedRule(
                        rule_id=f.rule_id,
                        rule_name=names.get(f.rule_id, f.rule_id),
                        message=f.message,
                        details=f.details,
                    )
                    for f in failed
                ],
            )
        )

    logger.info("Validation complete: %d invalid out of %d records", len(errors), total)
    return ValidationErrorsResponse(
        errors=errors,
        summary=ValidationSummary(
            total_records=total,
            valid_records=total - len(errors),
            invalid_records=len(errors),
            enabled_rules_count=len(config.enabled_rules(RuleKind.SYNC)),
        ),
    )
