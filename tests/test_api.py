"""HTTP surface, served in-process against the sqlite test database."""

import httpx
import pytest
import pytest_asyncio

from entval.database import get_db
from entval.engine.rules import RuleId
from entval.main import app
from entval.worker.runner import ValidationWorker
from tests.factories import FakeLookup, app_item, entitlement, ps_record, snapshot


@pytest_asyncio.fixture
async def client(session_maker, clock):
    async def override_get_db():
        async with session_maker() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db] = override_get_db
    app.state.worker = ValidationWorker(
        session_maker, FakeLookup(result=snapshot(entitlement("RI-EXPOSUREIQ", "2030-12-31"))), clock=clock
    )
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    app.state.worker = None


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_list_rules(client):
    response = await client.get("/v1/validation/rules")
    rules = {r["id"]: r for r in response.json()["rules"]}
    assert set(rules) == {r.value for r in RuleId}
    assert rules[RuleId.DEPROVISION_ACTIVE_ENTITLEMENTS.value]["kind"] == "async_external"


@pytest.mark.asyncio
async def test_evaluate_and_report_flow(client):
    """Evaluate queues the check, the report is INCOMPLETE until the worker runs."""
    record = ps_record(request_type="Deprovision", apps=[app_item("RI-EXPOSUREIQ")])

    response = await client.post("/v1/validation/evaluate", json={"records": [record]})
    assert response.status_code == 200
    [result] = response.json()["results"]
    assert result["is_valid"] is True
    assert result["enqueued_rules"] == [RuleId.DEPROVISION_ACTIVE_ENTITLEMENTS.value]

    report = (await client.post("/v1/validation/report", json={"record": record})).json()
    assert report["overall_status"] == "INCOMPLETE"

    run = await client.post("/v1/validation/async-run")
    assert run.status_code == 200
    assert run.json()["records_succeeded"] == 1

    report = (await client.post("/v1/validation/report", json={"record": record})).json()
    assert report["overall_status"] == "WARNING"
    assert report["async_results"][0]["active_entitlements_count"] == 1

    results = (await client.get("/v1/validation/async-results", params={"record_ids": record["Id"]})).json()
    assert results["count"] == 1
    assert results["results"][0]["status"] == "WARNING"

    status = (await client.get("/v1/validation/async-status")).json()
    assert status["statistics"]["by_status"]["WARNING"] == 1
    assert status["last_processing"]["status"] == "completed"


@pytest.mark.asyncio
async def test_errors_endpoint(client):
    records = [
        ps_record(record_id="a0X000000000001", apps=[app_item("RI-EXPOSUREIQ")]),
        ps_record(record_id="a0X000000000002", apps=[app_item("OTHER", quantity=4)]),
    ]
    body = (await client.post("/v1/validation/errors", json={"records": records})).json()
    assert body["summary"]["invalid_records"] == 1
    assert body["errors"][0]["record_id"] == "a0X000000000002"


@pytest.mark.asyncio
async def test_unknown_rule_rejected(client):
    response = await client.post(
        "/v1/validation/evaluate", json={"records": [ps_record()], "enabled_rules": ["made-up-rule"]}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_record_without_id_rejected(client):
    record = ps_record()
    del record["Id"]
    response = await client.post("/v1/validation/errors", json={"records": [record]})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_async_run_without_worker(client):
    app.state.worker = None
    response = await client.post("/v1/validation/async-run")
    assert response.status_code == 503
