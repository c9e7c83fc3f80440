"""Unit tests for the rule catalog and sync evaluator."""

import dataclasses
from types import MappingProxyType

import pytest

from entval.engine import rules as rules_module
from entval.engine.evaluator import evaluate, is_valid, summarize
from entval.engine.rules import RULES, RuleConfig, RuleId, RuleKind, check_catalog
from entval.schemas.validation import FindingStatus
from tests.factories import app_item, make_record, model_item


def finding_for(findings, rule_id):
    return next(f for f in findings if f.rule_id == rule_id.value)


def test_catalog_covers_every_rule_id():
    """Every rule id has a catalog entry; only the deprovision check is async."""
    assert set(RULES) == set(RuleId)
    async_rules = [r.id for r in RULES.values() if r.kind is RuleKind.ASYNC_EXTERNAL]
    assert async_rules == [RuleId.DEPROVISION_ACTIVE_ENTITLEMENTS]


def test_incomplete_catalog_rejected():
    """The catalog check raises, it is not an assert that -O would strip."""
    partial = {k: v for k, v in RULES.items() if k is not RuleId.DATE_GAP}
    with pytest.raises(RuntimeError, match="entitlement-date-gap-validation"):
        check_catalog(partial)


def test_async_rule_with_checker_rejected():
    patched = dict(RULES)
    patched[RuleId.DEPROVISION_ACTIVE_ENTITLEMENTS] = dataclasses.replace(
        RULES[RuleId.DEPROVISION_ACTIVE_ENTITLEMENTS], checker=lambda record: None
    )
    with pytest.raises(RuntimeError):
        check_catalog(patched)


def test_catalog_is_read_only():
    with pytest.raises(TypeError):
        RULES[RuleId.MODEL_COUNT] = None


def test_quantity_exempt_product_passes():
    """IC-DATABRIDGE may carry any quantity."""
    record = make_record(apps=[app_item("IC-DATABRIDGE", quantity=5)])
    finding = finding_for(evaluate(record, RuleConfig.default()), RuleId.APP_QUANTITY)
    assert finding.status is FindingStatus.PASS


def test_quantity_other_than_one_fails():
    record = make_record(apps=[app_item("OTHER", quantity=2), app_item("RI-EXPOSUREIQ", quantity=1)])
    finding = finding_for(evaluate(record, RuleConfig.default()), RuleId.APP_QUANTITY)
    assert finding.status is FindingStatus.FAIL
    assert finding.details["failCount"] == 1
    assert finding.details["passCount"] == 1
    assert finding.details["failures"][0]["productCode"] == "OTHER"


def test_missing_quantity_fails():
    record = make_record(apps=[app_item("OTHER", quantity=None)])
    finding = finding_for(evaluate(record, RuleConfig.default()), RuleId.APP_QUANTITY)
    assert finding.status is FindingStatus.FAIL
    assert finding.details["failures"][0]["reason"] == "Missing quantity"


def test_no_apps_passes_quantity():
    finding = finding_for(evaluate(make_record(), RuleConfig.default()), RuleId.APP_QUANTITY)
    assert finding.status is FindingStatus.PASS
    assert finding.message == "No app entitlements found"


def test_model_count_limit():
    """100 models pass, 101 fail."""
    at_limit = make_record(models=[model_item(f"M{i}") for i in range(100)])
    over_limit = make_record(models=[model_item(f"M{i}") for i in range(101)])
    assert finding_for(evaluate(at_limit, RuleConfig.default()), RuleId.MODEL_COUNT).status is FindingStatus.PASS
    over = finding_for(evaluate(over_limit, RuleConfig.default()), RuleId.MODEL_COUNT)
    assert over.status is FindingStatus.FAIL
    assert over.details["totalCount"] == 101


def test_date_overlap_rule():
    record = make_record(apps=[
        app_item("X", "2024-01-01", "2024-06-30"),
        app_item("X", "2024-06-15", "2024-12-31"),
    ])
    finding = finding_for(evaluate(record, RuleConfig.default()), RuleId.DATE_OVERLAP)
    assert finding.status is FindingStatus.FAIL
    assert finding.details["overlapsFound"] == 1


def test_date_gap_rule():
    record = make_record(models=[
        model_item("Y", "2024-01-01", "2024-05-31"),
        model_item("Y", "2024-07-01", "2024-12-31"),
    ])
    finding = finding_for(evaluate(record, RuleConfig.default()), RuleId.DATE_GAP)
    assert finding.status is FindingStatus.FAIL
    assert finding.details["gaps"][0]["gapDays"] == 30
    assert "Y" in finding.message


def test_bad_dates_do_not_fail_date_rules():
    """Unparseable dates are skipped and reported, not treated as overlaps."""
    record = make_record(apps=[
        app_item("X", "garbage", "2024-06-30"),
        app_item("X", "2024-01-01", "2024-12-31"),
    ])
    finding = finding_for(evaluate(record, RuleConfig.default()), RuleId.DATE_OVERLAP)
    assert finding.status is FindingStatus.PASS
    assert len(finding.details["skipped"]) == 1


def test_package_name_required():
    record = make_record(apps=[
        app_item("RI-EXPOSUREIQ", package_name=""),
        app_item("IC-RISKDATALAKE", package_name=None),
    ])
    finding = finding_for(evaluate(record, RuleConfig.default()), RuleId.APP_PACKAGE_NAME)
    assert finding.status is FindingStatus.FAIL
    assert finding.details["missingCount"] == 1
    assert finding.details["missing"][0]["productCode"] == "RI-EXPOSUREIQ"


def test_only_enabled_sync_rules_produce_findings():
    """Disabled rules are absent; async rules never show up in sync findings."""
    config = RuleConfig.default().with_rule(RuleId.MODEL_COUNT, False)
    findings = evaluate(make_record(request_type="Deprovision"), config)
    ids = [f.rule_id for f in findings]
    assert RuleId.MODEL_COUNT.value not in ids
    assert RuleId.DEPROVISION_ACTIVE_ENTITLEMENTS.value not in ids
    assert len(findings) == 4


def test_from_enabled_ids():
    config = RuleConfig.from_enabled_ids([RuleId.MODEL_COUNT.value])
    assert [r.id for r in config.enabled_rules()] == [RuleId.MODEL_COUNT]


def test_unknown_rule_id_rejected():
    with pytest.raises(ValueError):
        RuleConfig.from_enabled_ids(["no-such-rule"])


def test_config_is_immutable():
    config = RuleConfig.default()
    disabled = config.with_rule(RuleId.APP_QUANTITY, False)
    assert config.is_enabled(RuleId.APP_QUANTITY)
    assert not disabled.is_enabled(RuleId.APP_QUANTITY)


def test_checker_exception_isolated(monkeypatch):
    """A rule that raises fails alone; the other rules still run."""

    def boom(record):
        raise RuntimeError("kaboom")

    patched = dict(RULES)
    patched[RuleId.MODEL_COUNT] = dataclasses.replace(RULES[RuleId.MODEL_COUNT], checker=boom)
    monkeypatch.setattr(rules_module, "RULES", MappingProxyType(patched))

    findings = evaluate(make_record(apps=[app_item("RI-EXPOSUREIQ")]), RuleConfig.default())
    failed = finding_for(findings, RuleId.MODEL_COUNT)
    assert failed.status is FindingStatus.FAIL
    assert failed.details == {"error": "kaboom"}
    assert finding_for(findings, RuleId.APP_QUANTITY).status is FindingStatus.PASS
    assert len(findings) == 5


def test_is_valid():
    findings = evaluate(make_record(apps=[app_item("RI-EXPOSUREIQ")]), RuleConfig.default())
    assert is_valid(findings)
    assert not is_valid(evaluate(make_record(apps=[app_item("X", quantity=3)]), RuleConfig.default()))


def test_summarize_lists_failed_records():
    records = [
        make_record(record_id="a0X000000000001", apps=[app_item("RI-EXPOSUREIQ")]),
        make_record(record_id="a0X000000000002", apps=[app_item("OTHER", quantity=2)]),
    ]
    response = summarize(records, RuleConfig.default())
    assert response.summary.total_records == 2
    assert response.summary.invalid_records == 1
    assert response.summary.enabled_rules_count == 5
    assert response.errors[0].record_id == "a0X000000000002"
    assert response.errors[0].failed_rules[0].rule_name == "App Quantity Validation"
