"""Entitlement record schemas and ingestion of raw Salesforce PS records."""

import json
import logging
from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class Category(str, Enum):
    """Entitlement category - which payload list a line item came from."""

    APP = "app"
    MODEL = "model"
    DATA = "data"


# payload key per category
CATEGORY_KEYS = {
    Category.APP: "appEntitlements",
    Category.MODEL: "modelEntitlements",
    Category.DATA: "dataEntitlements",
}


def _first(item: dict, *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> str | None:
    """Strings pass through, numbers become strings, anything else is dropped."""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def parse_date(value: Any) -> date | None:
    """Parse YYYY-MM-DD or an ISO timestamp into a date. Raises ValueError."""
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"not a date: {value!r}")
    return date.fromisoformat(value.strip()[:10])


class EntitlementLineItem(BaseModel):
    """A single product grant inside a record."""

    model_config = ConfigDict(frozen=True)

    category: Category
    index: int
    product_code: str | None = None
    product_name: str | None = None
    package_name: str | None = None
    quantity: int | None = None
    start_date: date | None = None
    end_date: date | None = None
    # Problems found while parsing; the item stays in the record
    diagnostics: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        """Human label, e.g. app-2 (1-based)."""
        return f"{self.category.value}-{self.index + 1}"

    @property
    def display_name(self) -> str:
        return self.product_name or self.product_code or self.label

    @classmethod
    def from_payload(cls, category: Category, index: int, item: dict) -> "EntitlementLineItem":
        """Build from one raw payload entry, tolerating key spellings and bad values."""
        diagnostics: list[str] = []

        dates: dict[str, date | None] = {}
        for field, keys in (
            ("start_date", ("startDate", "start_date", "StartDate")),
            ("end_date", ("endDate", "end_date", "EndDate")),
        ):
            raw = _first(item, *keys)
            if raw is None:
                dates[field] = None
                continue
            try:
                dates[field] = parse_date(raw)
            except ValueError:
                dates[field] = None
                diagnostics.append(f"unparseable {field}: {raw!r}")

        quantity = item.get("quantity")
        if isinstance(quantity, bool):
            quantity = None
        elif isinstance(quantity, float) and quantity.is_integer():
            quantity = int(quantity)
        elif isinstance(quantity, str):
            try:
                quantity = int(quantity.strip())
            except ValueError:
                diagnostics.append(f"non-integer quantity: {quantity!r}")
                quantity = None
        elif quantity is not None and not isinstance(quantity, int):
            diagnostics.append(f"non-integer quantity: {quantity!r}")
            quantity = None

        product_code = _first(item, "productCode", "product_code", "ProductCode")
        package_name = item.get("packageName", item.get("package_name"))

        return cls(
            category=category,
            index=index,
            product_code=str(product_code) if product_code is not None else None,
            product_name=_text(_first(item, "productName", "name")),
            package_name=package_name if isinstance(package_name, str) else None,
            quantity=quantity,
            start_date=dates["start_date"],
            end_date=dates["end_date"],
            diagnostics=tuple(diagnostics),
        )


def _entitlements_object(payload: dict) -> dict:
    """Locate the entitlements object; shapes vary between request generations."""
    properties = payload.get("properties")
    if isinstance(properties, dict):
        detail = properties.get("provisioningDetail")
        if isinstance(detail, dict) and isinstance(detail.get("entitlements"), dict):
            return detail["entitlements"]
    if isinstance(payload.get("entitlements"), dict):
        return payload["entitlements"]
    return payload


def _tenant_name_from_payload(payload: dict) -> str | None:
    properties = payload.get("properties") if isinstance(payload.get("properties"), dict) else {}
    detail = properties.get("provisioningDetail") if isinstance(properties.get("provisioningDetail"), dict) else {}
    return _text(payload.get("tenantName") or properties.get("tenantName") or detail.get("tenantName"))


class EntitlementRecord(BaseModel):
    """One upstream request (PS record) - the unit of validation."""

    model_config = ConfigDict(frozen=True)

    record_id: str
    record_name: str | None = None
    account_name: str | None = None
    tenant_name: str | None = None
    tenant_id: str | None = None
    request_type: str | None = None
    last_modified: str | None = None
    app_entitlements: tuple[EntitlementLineItem, ...] = Field(default_factory=tuple)
    model_entitlements: tuple[EntitlementLineItem, ...] = Field(default_factory=tuple)
    data_entitlements: tuple[EntitlementLineItem, ...] = Field(default_factory=tuple)

    def items(self, category: Category) -> tuple[EntitlementLineItem, ...]:
        return {
            Category.APP: self.app_entitlements,
            Category.MODEL: self.model_entitlements,
            Category.DATA: self.data_entitlements,
        }[category]

    def all_entitlements(self) -> list[EntitlementLineItem]:
        return [*self.model_entitlements, *self.app_entitlements, *self.data_entitlements]

    @property
    def is_deprovision(self) -> bool:
        return "deprovision" in (self.request_type or "").lower()

    @property
    def tenant_key(self) -> str | None:
        """Identifier used for the SML lookup."""
        return self.tenant_id or self.tenant_name

    @classmethod
    def from_payload(cls, record_id: str, payload: dict | None, **meta: Any) -> "EntitlementRecord":
        """Build from an already-decoded payload plus record metadata."""
        lists: dict[str, tuple[EntitlementLineItem, ...]] = {}
        entitlements = _entitlements_object(payload) if isinstance(payload, dict) else {}
        for category, key in CATEGORY_KEYS.items():
            raw_items = entitlements.get(key) or []
            if not isinstance(raw_items, list):
                logger.debug("Record %s: %s is not a list, ignoring", record_id, key)
                raw_items = []
            lists[f"{category.value}_entitlements"] = tuple(
                EntitlementLineItem.from_payload(category, i, item)
                for i, item in enumerate(raw_items)
                if isinstance(item, dict)
            )
        if not meta.get("tenant_name") and isinstance(payload, dict):
            meta["tenant_name"] = _tenant_name_from_payload(payload)
        return cls(record_id=record_id, **meta, **lists)

    @classmethod
    def from_salesforce(cls, raw: dict) -> "EntitlementRecord":
        """
        Build from a raw Prof_Services_Request__c record.

        A missing or malformed Payload_Data__c yields a record without line items.
        """
        payload: dict | None = None
        payload_data = raw.get("Payload_Data__c")
        if isinstance(payload_data, dict):
            payload = payload_data
        elif payload_data:
            try:
                decoded = json.loads(payload_data)
                payload = decoded if isinstance(decoded, dict) else None
            except (TypeError, ValueError):
                logger.warning("Malformed payload JSON in record %s, treating as empty", raw.get("Id"))

        return cls.from_payload(
            str(raw["Id"]),
            payload,
            record_name=_text(raw.get("Name")),
            account_name=_text(raw.get("Account__c")),
            tenant_name=_text(raw.get("Tenant_Name__c")),
            tenant_id=_text(raw.get("Tenant_Id__c")),
            request_type=_text(raw.get("TenantRequestAction__c")),
            last_modified=_text(raw.get("LastModifiedDate")),
        )
