"""
SML (tenant-management) client for current tenant entitlements.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from entval.config import Settings, settings as default_settings
from entval.errors import LookupNotConfiguredError, PermanentLookupError, TransientLookupError

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "apps": "/sml/entitlements/v1/tenants/{tenant}/apps/current",
    "models": "/v1/tenants/{tenant}/models/current",
    "data": "/v1/tenants/{tenant}/data/current",
}

# where each endpoint puts its list, in lookup order
RESPONSE_KEYS = {
    "apps": ("apps", "entitlements", "data"),
    "models": ("models", "entitlements", "data"),
    "data": ("data", "datasets", "entitlements"),
}

TRANSIENT_STATUS_CODES = {401, 403, 408, 429}


@dataclass(frozen=True)
class ExternalEntitlement:
    """An entitlement as SML currently has it."""

    product_code: str | None
    product_name: str | None
    category: str
    start_date: str | None
    end_date: str | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "productCode": self.product_code,
            "productName": self.product_name,
            "category": self.category,
            "startDate": self.start_date,
            "endDate": self.end_date,
        }


@dataclass(frozen=True)
class TenantEntitlements:
    tenant: str
    apps: list[ExternalEntitlement] = field(default_factory=list)
    models: list[ExternalEntitlement] = field(default_factory=list)
    data: list[ExternalEntitlement] = field(default_factory=list)

    def all(self) -> list[ExternalEntitlement]:
        return [*self.apps, *self.models, *self.data]


def flatten_expansion_packs(entitlements: list[dict]) -> list[dict]:
    """Nested expansionPacks are listed right after their parent."""
    flat: list[dict] = []
    for ent in entitlements:
        if not isinstance(ent, dict):
            continue
        flat.append(ent)
        for expansion in ent.get("expansionPacks") or []:
            if isinstance(expansion, dict):
                flat.append(expansion)
    return flat


def _optional_str(value: Any) -> str | None:
    return None if value in (None, "") else str(value)


def _extract_list(category: str, body: Any) -> list[dict]:
    if isinstance(body, list):
        return body
    if not isinstance(body, dict):
        raise PermanentLookupError(f"Unexpected SML {category} response", details={"body_type": type(body).__name__})
    for key in RESPONSE_KEYS[category]:
        value = body.get(key)
        if isinstance(value, list):
            return value
    return []


class SMLClient:
    """Client for the SML entitlements API."""

    def __init__(
        self,
        base_url: str,
        auth_token: str | None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, config: Settings | None = None, **kwargs) -> "SMLClient":
        config = config or default_settings
        return cls(
            base_url=config.resolved_sml_base_url,
            auth_token=config.sml_auth_token,
            timeout=config.lookup_timeout_seconds,
            **kwargs,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.auth_token)

    async def fetch_tenant_entitlements(self, tenant: str) -> TenantEntitlements:
        """
        Current apps, models and data for a tenant.

        All three endpoints must answer; a partial answer could turn an
        active tenant into a false PASS.
        """
        if not self.is_configured:
            raise LookupNotConfiguredError()

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.auth_token}", "Accept": "application/json"},
            transport=self._transport,
        ) as client:
            apps, models, data = await asyncio.gather(
                self._fetch_category(client, "apps", tenant),
                self._fetch_category(client, "models", tenant),
                self._fetch_category(client, "data", tenant),
            )

        logger.info(
            "SML entitlements for tenant %s: %d apps, %d models, %d data",
            tenant, len(apps), len(models), len(data),
        )
        return TenantEntitlements(tenant=tenant, apps=apps, models=models, data=data)

    async def _fetch_category(self, client: httpx.AsyncClient, category: str, tenant: str) -> list[ExternalEntitlement]:
        path = ENDPOINTS[category].format(tenant=quote(tenant, safe=""))
        try:
            response = await client.get(path)
        except httpx.TimeoutException as e:
            raise TransientLookupError(f"SML {category} request timed out", details={"tenant": tenant}) from e
        except httpx.TransportError as e:
            raise TransientLookupError(f"SML {category} request failed: {e}", details={"tenant": tenant}) from e

        if response.status_code in TRANSIENT_STATUS_CODES or response.status_code >= 500:
            raise TransientLookupError(
                f"SML {category} returned HTTP {response.status_code}",
                details={"tenant": tenant, "status_code": response.status_code},
            )
        if response.status_code == 404:
            raise PermanentLookupError(f"Tenant {tenant} not found in SML", details={"tenant": tenant})
        if response.status_code >= 400:
            raise PermanentLookupError(
                f"SML {category} rejected the request: HTTP {response.status_code}",
                details={"tenant": tenant, "status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as e:
            raise PermanentLookupError(f"SML {category} response is not JSON", details={"tenant": tenant}) from e

        return [
            ExternalEntitlement(
                product_code=_optional_str(ent.get("productCode")),
                product_name=_optional_str(ent.get("productName") or ent.get("name")),
                category=category,
                start_date=_optional_str(ent.get("startDate")),
                end_date=_optional_str(ent.get("endDate")),
            )
            for ent in flatten_expansion_packs(_extract_list(category, body))
        ]
