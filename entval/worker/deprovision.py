"""Deprovision active entitlements check - evaluated from an SML snapshot."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from entval.lookup.sml_client import TenantEntitlements
from entval.schemas.entitlement import parse_date
from entval.schemas.validation import AsyncStatus


@dataclass(frozen=True)
class RuleOutcome:
    status: AsyncStatus
    message: str
    details: dict[str, Any]
    external_snapshot: dict[str, Any] | None = None
    active_entitlements_count: int = 0


def _classify(end_date: str | None, now: datetime) -> tuple[str, int | None]:
    """(status, days_remaining). No or unreadable end date counts as active."""
    if not end_date:
        return "active", None
    try:
        end = parse_date(end_date)
    except ValueError:
        return "active", None
    days_remaining = (end - now.date()).days
    return ("expired" if days_remaining < 0 else "active"), days_remaining


def evaluate_deprovision(snapshot: TenantEntitlements, now: datetime) -> RuleOutcome:
    """WARNING while the tenant still has entitlements that have not expired, else PASS."""
    entitlements = []
    for ent in snapshot.all():
        status, days_remaining = _classify(ent.end_date, now)
        entitlements.append({**ent.as_dict(), "status": status, "daysRemaining": days_remaining})

    active = [e for e in entitlements if e["status"] == "active"]
    external_snapshot = {
        category: [e for e in entitlements if e["category"] == category]
        for category in ("apps", "models", "data")
    }
    details: dict[str, Any] = {
        "tenant": snapshot.tenant,
        "totalEntitlements": len(entitlements),
        "activeEntitlements": active,
        "checkedAt": now.isoformat(),
    }

    if active:
        by_category = {
            category: sum(1 for e in active if e["category"] == category)
            for category in ("apps", "models", "data")
        }
        details["activeByCategory"] = by_category
        details["warningDetails"] = (
            f"Deprovisioning this tenant will remove {len(active)} active entitlement(s): "
            f"{by_category['apps']} app(s), {by_category['models']} model(s), {by_category['data']} data."
        )
        active_codes = ", ".join(str(e["productCode"] or "unknown") for e in active)
        return RuleOutcome(
            status=AsyncStatus.WARNING,
            message=(
                f"Found {len(active)} active entitlement(s) that have not yet expired "
                f"({len(entitlements)} total): {active_codes}"
            ),
            details=details,
            external_snapshot=external_snapshot,
            active_entitlements_count=len(active),
        )

    if entitlements:
        message = f"All {len(entitlements)} entitlement(s) have expired - safe to deprovision"
    else:
        message = "No entitlements found in SML"
    return RuleOutcome(
        status=AsyncStatus.PASS,
        message=message,
        details=details,
        external_snapshot=external_snapshot,
    )
