"""Date-range overlap and gap detection over entitlement line items.

Items are grouped by product code across all categories. Items without a
product code are ignored; items without a usable date range are reported back
as skipped instead of being compared.
"""

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from entval.schemas.entitlement import EntitlementLineItem


@dataclass(frozen=True)
class SkippedItem:
    product_code: str
    label: str
    reason: str

    def as_dict(self) -> dict[str, Any]:
        return {"productCode": self.product_code, "entitlement": self.label, "reason": self.reason}


@dataclass(frozen=True)
class Overlap:
    product_code: str
    first: EntitlementLineItem
    second: EntitlementLineItem
    description: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "productCode": self.product_code,
            "entitlement1": _describe(self.first),
            "entitlement2": _describe(self.second),
            "description": self.description,
        }


@dataclass(frozen=True)
class Gap:
    product_code: str
    previous_start: date
    previous_end: date
    next_start: date
    next_end: date
    gap_days: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "productCode": self.product_code,
            "previousRange": {"startDate": self.previous_start.isoformat(), "endDate": self.previous_end.isoformat()},
            "nextRange": {"startDate": self.next_start.isoformat(), "endDate": self.next_end.isoformat()},
            "gapDays": self.gap_days,
            "gapStart": (self.previous_end + timedelta(days=1)).isoformat(),
            "gapEnd": (self.next_start - timedelta(days=1)).isoformat(),
        }


@dataclass
class IntervalReport:
    """Findings of one primitive plus the items it could not evaluate."""

    overlaps: list[Overlap] = field(default_factory=list)
    gaps: list[Gap] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)
    groups_checked: int = 0


def _describe(item: EntitlementLineItem) -> dict[str, Any]:
    return {
        "type": item.category.value,
        "index": item.index + 1,
        "startDate": item.start_date.isoformat() if item.start_date else None,
        "endDate": item.end_date.isoformat() if item.end_date else None,
    }


def _range(item: EntitlementLineItem) -> str:
    return f"{item.start_date} to {item.end_date}"


def _skip_reason(item: EntitlementLineItem) -> str | None:
    if item.diagnostics:
        return "; ".join(item.diagnostics)
    if item.start_date is None or item.end_date is None:
        return "missing start or end date"
    if item.start_date > item.end_date:
        return f"end date {item.end_date} is before start date {item.start_date}"
    return None


def group_by_product(
    items: Iterable[EntitlementLineItem],
) -> tuple[dict[str, list[EntitlementLineItem]], list[SkippedItem]]:
    """Group items with a valid range by product code; collect the rest as skipped."""
    groups: dict[str, list[EntitlementLineItem]] = defaultdict(list)
    skipped: list[SkippedItem] = []
    for item in items:
        if not item.product_code:
            continue
        reason = _skip_reason(item)
        if reason:
            skipped.append(SkippedItem(item.product_code, item.label, reason))
            continue
        groups[item.product_code].append(item)
    return dict(groups), skipped


def intervals_intersect(a: EntitlementLineItem, b: EntitlementLineItem) -> bool:
    """Inclusive intersection of [start, end] ranges."""
    return a.start_date <= b.end_date and b.start_date <= a.end_date


def _overlap_description(a: EntitlementLineItem, b: EntitlementLineItem) -> str:
    if a.start_date == b.start_date and a.end_date == b.end_date:
        return f"{a.label} and {b.label} have identical date ranges ({_range(a)})"
    if a.start_date <= b.start_date and a.end_date >= b.end_date:
        return f"{a.label} ({_range(a)}) completely contains {b.label} ({_range(b)})"
    if b.start_date <= a.start_date and b.end_date >= a.end_date:
        return f"{b.label} ({_range(b)}) completely contains {a.label} ({_range(a)})"
    return f"{a.label} ({_range(a)}) overlaps with {b.label} ({_range(b)})"


def find_overlaps(items: Iterable[EntitlementLineItem]) -> IntervalReport:
    """Every pair of same-product items whose ranges intersect. O(n^2) per group."""
    groups, skipped = group_by_product(items)
    report = IntervalReport(skipped=skipped)
    for product_code, group in groups.items():
        report.groups_checked += 1
        for i in range(len(group)):
            for j in range(i + 1, len(group)):
                a, b = group[i], group[j]
                if intervals_intersect(a, b):
                    report.overlaps.append(Overlap(product_code, a, b, _overlap_description(a, b)))
    return report


def find_gaps(items: Iterable[EntitlementLineItem]) -> IntervalReport:
    """
    Uncovered days between the ranges of each product code.

    Identical ranges count once; a product with a single distinct range never
    has a gap. Coverage is tracked as the latest end date seen so far, so a
    range nested inside an earlier one does not open a false gap.
    """
    groups, skipped = group_by_product(items)
    report = IntervalReport(skipped=skipped)
    for product_code, group in groups.items():
        ranges = sorted({(item.start_date, item.end_date) for item in group})
        if len(ranges) < 2:
            continue
        report.groups_checked += 1
        covered_start, covered_end = ranges[0]
        for start, end in ranges[1:]:
            if start > covered_end + timedelta(days=1):
                report.gaps.append(
                    Gap(
                        product_code=product_code,
                        previous_start=covered_start,
                        previous_end=covered_end,
                        next_start=start,
                        next_end=end,
                        gap_days=(start - covered_end).days - 1,
                    )
                )
                covered_start = start
            if end > covered_end:
                covered_end = end
    return report
