"""SML client against a mocked transport."""

import httpx
import pytest

from entval.config import Settings
from entval.errors import LookupNotConfiguredError, PermanentLookupError, TransientLookupError
from entval.lookup.sml_client import SMLClient, flatten_expansion_packs

BASE_URL = "https://sml.test"

APPS = {
    "apps": [
        {
            "productCode": "RI-RISKMODELER",
            "productName": "Risk Modeler",
            "startDate": "2024-01-01",
            "endDate": "2025-12-31",
            "expansionPacks": [
                {"productCode": "RI-RISKMODELER-EXPANSION", "startDate": "2024-01-01", "endDate": "2025-12-31"}
            ],
        }
    ]
}
MODELS = {"entitlements": [{"productCode": "RM-EQ-US", "startDate": "2024-01-01", "endDate": "2024-06-30"}]}
DATA = [{"productCode": "DATA-GEO", "name": "Geocoding", "endDate": None}]


def routes(overrides=None):
    bodies = {"apps": APPS, "models": MODELS, "data": DATA, **(overrides or {})}
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        for category in ("apps", "models", "data"):
            if request.url.path.endswith(f"/{category}/current"):
                body = bodies[category]
                if isinstance(body, httpx.Response):
                    return body
                return httpx.Response(200, json=body)
        return httpx.Response(404)

    return handler, seen


def client_for(handler, token="secret-token"):
    return SMLClient(BASE_URL, token, timeout=5.0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetches_all_three_categories():
    handler, seen = routes()
    result = await client_for(handler).fetch_tenant_entitlements("acme-prod")

    assert result.tenant == "acme-prod"
    assert [e.product_code for e in result.apps] == ["RI-RISKMODELER", "RI-RISKMODELER-EXPANSION"]
    assert [e.product_code for e in result.models] == ["RM-EQ-US"]
    assert result.data[0].product_name == "Geocoding"
    assert len(result.all()) == 4

    paths = sorted(r.url.path for r in seen)
    assert paths == [
        "/sml/entitlements/v1/tenants/acme-prod/apps/current",
        "/v1/tenants/acme-prod/data/current",
        "/v1/tenants/acme-prod/models/current",
    ]
    assert all(r.headers["Authorization"] == "Bearer secret-token" for r in seen)


@pytest.mark.asyncio
async def test_non_string_fields_coerced():
    handler, _ = routes({"apps": {"apps": [{"productCode": 12345, "productName": 7, "endDate": "2030-01-01"}]}})
    result = await client_for(handler).fetch_tenant_entitlements("acme-prod")
    assert result.apps[0].product_code == "12345"
    assert result.apps[0].product_name == "7"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [401, 403, 408, 429, 500, 503])
async def test_retryable_statuses_are_transient(status_code):
    handler, _ = routes({"models": httpx.Response(status_code)})
    with pytest.raises(TransientLookupError) as exc_info:
        await client_for(handler).fetch_tenant_entitlements("acme-prod")
    assert exc_info.value.details["status_code"] == status_code
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_unknown_tenant_is_permanent():
    handler, _ = routes({"apps": httpx.Response(404)})
    with pytest.raises(PermanentLookupError) as exc_info:
        await client_for(handler).fetch_tenant_entitlements("ghost")
    assert "ghost" in exc_info.value.message
    assert not exc_info.value.retryable


@pytest.mark.asyncio
async def test_bad_request_is_permanent():
    handler, _ = routes({"data": httpx.Response(400)})
    with pytest.raises(PermanentLookupError):
        await client_for(handler).fetch_tenant_entitlements("acme-prod")


@pytest.mark.asyncio
async def test_non_json_body_is_permanent():
    handler, _ = routes({"apps": httpx.Response(200, text="<html>maintenance</html>")})
    with pytest.raises(PermanentLookupError):
        await client_for(handler).fetch_tenant_entitlements("acme-prod")


@pytest.mark.asyncio
async def test_transport_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientLookupError):
        await client_for(handler).fetch_tenant_entitlements("acme-prod")


@pytest.mark.asyncio
async def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(TransientLookupError) as exc_info:
        await client_for(handler).fetch_tenant_entitlements("acme-prod")
    assert "timed out" in exc_info.value.message


@pytest.mark.asyncio
async def test_missing_token_not_configured():
    handler, seen = routes()
    client = client_for(handler, token=None)
    assert not client.is_configured
    with pytest.raises(LookupNotConfiguredError):
        await client.fetch_tenant_entitlements("acme-prod")
    assert seen == []


@pytest.mark.asyncio
async def test_tenant_is_url_encoded():
    handler, seen = routes()
    await client_for(handler).fetch_tenant_entitlements("acme prod/eu")
    assert any("acme%20prod%2Feu" in r.url.raw_path.decode() for r in seen)


def test_flatten_expansion_packs():
    flat = flatten_expansion_packs([{"productCode": "P", "expansionPacks": [{"productCode": "E"}]}, "junk"])
    assert [e["productCode"] for e in flat] == ["P", "E"]


def test_from_settings_resolves_base_url():
    config = Settings(sml_environment="use1", sml_auth_token="t")
    client = SMLClient.from_settings(config)
    assert client.base_url == "https://api-use1.rms.com"
    assert client.is_configured

    explicit = SMLClient.from_settings(Settings(sml_base_url="https://sml.internal/"))
    assert explicit.base_url == "https://sml.internal"
    assert not explicit.is_configured
