"""Validation rule catalog and the sync rule checkers."""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from entval.engine.intervals import find_gaps, find_overlaps
from entval.schemas.entitlement import Category, EntitlementRecord
from entval.schemas.validation import FindingStatus, ValidationFinding

logger = logging.getLogger(__name__)

QUANTITY_EXEMPT_PRODUCT_CODES = frozenset({"IC-DATABRIDGE", "RI-RISKMODELER-EXPANSION"})
PACKAGE_NAME_EXEMPT_PRODUCT_CODES = frozenset({"IC-RISKDATALAKE", "IC-DATABRIDGE"})
MODEL_COUNT_LIMIT = 100


class RuleId(str, Enum):
    APP_QUANTITY = "app-quantity-validation"
    MODEL_COUNT = "model-count-validation"
    DATE_OVERLAP = "entitlement-date-overlap-validation"
    DATE_GAP = "entitlement-date-gap-validation"
    APP_PACKAGE_NAME = "app-package-name-validation"
    DEPROVISION_ACTIVE_ENTITLEMENTS = "deprovision-active-entitlements-check"


class RuleKind(str, Enum):
    SYNC = "sync"
    ASYNC_EXTERNAL = "async_external"


Checker = Callable[[EntitlementRecord], ValidationFinding]


@dataclass(frozen=True)
class ValidationRule:
    """Immutable catalog entry. Sync rules carry their checker."""

    id: RuleId
    name: str
    description: str
    category: str
    kind: RuleKind
    enabled_by_default: bool = True
    checker: Checker | None = None
    applies_to: Callable[[EntitlementRecord], bool] | None = None

    def is_applicable(self, record: EntitlementRecord) -> bool:
        return self.applies_to is None or self.applies_to(record)


def _finding(rule_id: RuleId, record: EntitlementRecord, status: FindingStatus, message: str, details: dict) -> ValidationFinding:
    return ValidationFinding(
        rule_id=rule_id.value,
        record_id=record.record_id,
        status=status,
        message=message,
        details=details,
    )


def check_app_quantity(record: EntitlementRecord) -> ValidationFinding:
    """App quantity must be 1 unless the product code is exempt."""
    apps = record.app_entitlements
    details = {"totalCount": len(apps), "passCount": 0, "failCount": 0, "failures": []}
    if not apps:
        return _finding(RuleId.APP_QUANTITY, record, FindingStatus.PASS, "No app entitlements found", details)

    messages = []
    for app in apps:
        if app.quantity == 1 or app.product_code in QUANTITY_EXEMPT_PRODUCT_CODES:
            details["passCount"] += 1
            continue
        details["failCount"] += 1
        details["failures"].append(
            {
                "appName": app.display_name,
                "productCode": app.product_code,
                "quantity": app.quantity,
                "reason": "Missing quantity" if app.quantity is None else "Invalid quantity",
            }
        )
        messages.append(f"{app.display_name}: quantity {app.quantity}, expected 1")

    if not messages:
        return _finding(
            RuleId.APP_QUANTITY, record, FindingStatus.PASS, f"All {len(apps)} app entitlements valid", details
        )
    return _finding(
        RuleId.APP_QUANTITY,
        record,
        FindingStatus.FAIL,
        f"{details['failCount']} of {len(apps)} app entitlements failed: {'; '.join(messages)}",
        details,
    )


def check_model_count(record: EntitlementRecord) -> ValidationFinding:
    models = record.model_entitlements
    count = len(models)
    details = {
        "totalCount": count,
        "limit": MODEL_COUNT_LIMIT,
        "withinLimit": count <= MODEL_COUNT_LIMIT,
        "modelsFound": [{"productCode": m.product_code or "Unknown", "quantity": m.quantity or 1} for m in models],
    }
    if not models:
        return _finding(RuleId.MODEL_COUNT, record, FindingStatus.PASS, "No model entitlements found", details)
    if count > MODEL_COUNT_LIMIT:
        return _finding(
            RuleId.MODEL_COUNT, record, FindingStatus.FAIL,
            f"Model count {count} exceeds limit of {MODEL_COUNT_LIMIT}", details,
        )
    return _finding(
        RuleId.MODEL_COUNT, record, FindingStatus.PASS,
        f"Model count {count} is within limit (<={MODEL_COUNT_LIMIT})", details,
    )


def check_date_overlap(record: EntitlementRecord) -> ValidationFinding:
    items = record.all_entitlements()
    if not items:
        return _finding(
            RuleId.DATE_OVERLAP, record, FindingStatus.PASS, "No entitlements found",
            {"totalCount": 0, "overlapsFound": 0, "overlaps": [], "skipped": []},
        )
    report = find_overlaps(items)
    details = {
        "totalCount": len(items),
        "overlapsFound": len(report.overlaps),
        "overlaps": [o.as_dict() for o in report.overlaps],
        "skipped": [s.as_dict() for s in report.skipped],
    }
    if report.overlaps:
        n = len(report.overlaps)
        return _finding(
            RuleId.DATE_OVERLAP, record, FindingStatus.FAIL,
            f"{n} date overlap{'s' if n > 1 else ''} found", details,
        )
    message = f"No date overlaps found across {len(items)} entitlements"
    if report.skipped:
        message += f" ({len(report.skipped)} skipped: invalid dates)"
    return _finding(RuleId.DATE_OVERLAP, record, FindingStatus.PASS, message, details)


def check_date_gap(record: EntitlementRecord) -> ValidationFinding:
    items = record.all_entitlements()
    report = find_gaps(items)
    details = {
        "totalCount": len(items),
        "gapsFound": len(report.gaps),
        "gaps": [g.as_dict() for g in report.gaps],
        "skipped": [s.as_dict() for s in report.skipped],
    }
    if report.gaps:
        n = len(report.gaps)
        products = sorted({g.product_code for g in report.gaps})
        return _finding(
            RuleId.DATE_GAP, record, FindingStatus.FAIL,
            f"{n} date gap{'s' if n > 1 else ''} found for {', '.join(products)}", details,
        )
    message = "No date gaps found" if report.groups_checked else "No product codes with multiple date ranges"
    if report.skipped:
        message += f" ({len(report.skipped)} skipped: invalid dates)"
    return _finding(RuleId.DATE_GAP, record, FindingStatus.PASS, message, details)


def check_app_package_name(record: EntitlementRecord) -> ValidationFinding:
    apps = record.app_entitlements
    missing = [
        app for app in apps
        if app.product_code not in PACKAGE_NAME_EXEMPT_PRODUCT_CODES
        and not (app.package_name or "").strip()
    ]
    details = {
        "totalCount": len(apps),
        "missingCount": len(missing),
        "missing": [{"entitlement": app.label, "productCode": app.product_code} for app in missing],
    }
    if not apps:
        return _finding(RuleId.APP_PACKAGE_NAME, record, FindingStatus.PASS, "No app entitlements found", details)
    if missing:
        codes = ", ".join(app.product_code or app.label for app in missing)
        return _finding(
            RuleId.APP_PACKAGE_NAME, record, FindingStatus.FAIL,
            f"{len(missing)} app entitlement(s) missing package name: {codes}", details,
        )
    return _finding(
        RuleId.APP_PACKAGE_NAME, record, FindingStatus.PASS, f"All {len(apps)} app entitlements have a package name", details
    )


def applies_to_deprovision(record: EntitlementRecord) -> bool:
    return record.is_deprovision and bool(record.tenant_key)


RULES: Mapping[RuleId, ValidationRule] = MappingProxyType({
    RuleId.APP_QUANTITY: ValidationRule(
        id=RuleId.APP_QUANTITY,
        name="App Quantity Validation",
        description="App quantity must be 1, except IC-DATABRIDGE and RI-RISKMODELER-EXPANSION",
        category="product-validation",
        kind=RuleKind.SYNC,
        checker=check_app_quantity,
    ),
    RuleId.MODEL_COUNT: ValidationRule(
        id=RuleId.MODEL_COUNT,
        name="Model Count Validation",
        description=f"Fails if the number of models is more than {MODEL_COUNT_LIMIT}",
        category="product-validation",
        kind=RuleKind.SYNC,
        checker=check_model_count,
    ),
    RuleId.DATE_OVERLAP: ValidationRule(
        id=RuleId.DATE_OVERLAP,
        name="Entitlement Date Overlap Validation",
        description="Fails if entitlements with the same productCode have overlapping date ranges",
        category="date-validation",
        kind=RuleKind.SYNC,
        checker=check_date_overlap,
    ),
    RuleId.DATE_GAP: ValidationRule(
        id=RuleId.DATE_GAP,
        name="Entitlement Date Gap Validation",
        description="Fails if entitlements with the same productCode leave uncovered days between ranges",
        category="date-validation",
        kind=RuleKind.SYNC,
        checker=check_date_gap,
    ),
    RuleId.APP_PACKAGE_NAME: ValidationRule(
        id=RuleId.APP_PACKAGE_NAME,
        name="App Package Name Validation",
        description="App entitlements must carry a package name, except IC-RISKDATALAKE and IC-DATABRIDGE",
        category="product-validation",
        kind=RuleKind.SYNC,
        checker=check_app_package_name,
    ),
    RuleId.DEPROVISION_ACTIVE_ENTITLEMENTS: ValidationRule(
        id=RuleId.DEPROVISION_ACTIVE_ENTITLEMENTS,
        name="Deprovision Active Entitlements Check",
        description="Warns when a deprovision request targets a tenant that still has active SML entitlements",
        category="sml-validation",
        kind=RuleKind.ASYNC_EXTERNAL,
        applies_to=applies_to_deprovision,
    ),
})


def check_catalog(rules: Mapping[RuleId, ValidationRule]) -> None:
    """Raise RuntimeError unless every rule id has an entry and only sync rules carry checkers."""
    missing = set(RuleId) - set(rules)
    if missing:
        raise RuntimeError(f"rules without a catalog entry: {sorted(r.value for r in missing)}")
    if not all((rule.kind is RuleKind.SYNC) == (rule.checker is not None) for rule in rules.values()):
        raise RuntimeError("sync rules need a checker, async rules must not have one")


check_catalog(RULES)


@dataclass(frozen=True)
class RuleConfig:
    """Which rules are enabled for one evaluation call."""

    enabled: Mapping[RuleId, bool]

    @classmethod
    def default(cls) -> "RuleConfig":
        return cls(MappingProxyType({rule_id: rule.enabled_by_default for rule_id, rule in RULES.items()}))

    @classmethod
    def from_enabled_ids(cls, rule_ids: Iterable[str]) -> "RuleConfig":
        """Only the listed rules are enabled. Unknown ids raise ValueError."""
        wanted = {RuleId(rule_id) for rule_id in rule_ids}
        return cls(MappingProxyType({rule_id: rule_id in wanted for rule_id in RULES}))

    def with_rule(self, rule_id: RuleId, enabled: bool) -> "RuleConfig":
        updated = dict(self.enabled)
        updated[rule_id] = enabled
        return RuleConfig(MappingProxyType(updated))

    def is_enabled(self, rule_id: RuleId) -> bool:
        return self.enabled.get(rule_id, False)

    def enabled_rules(self, kind: RuleKind | None = None) -> list[ValidationRule]:
        """Enabled rules in catalog order, optionally of one kind."""
        return [
            rule for rule_id, rule in RULES.items()
            if self.is_enabled(rule_id) and (kind is None or rule.kind is kind)
        ]
