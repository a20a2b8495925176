"""
Integration tests for the HTTP API.

Tests cover:
- Status codes and version headers per endpoint
- Conditional GET (If-None-Match, If-Match, If-Modified-Since)
- Mandatory If-Match on PATCH and DELETE
- Request body checks
"""

import inspect
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from aiohttp import test_utils

from dbaas.plandb_server.api.http_server import create_http_app, http_date
from dbaas.plandb_server.api.schema import validate_plan
from dbaas.plandb_server.events.memory import InMemoryIndexPublisher
from dbaas.plandb_server.kv.memory import InMemoryKeyValueStore
from dbaas.plandb_server.plans.store import PlanStore

PLAN_ID = "12xvxc345ssdsds-508"
PLAN_URL = f"/v1/plans/{PLAN_ID}"


@pytest_asyncio.fixture
async def client():
    kv = InMemoryKeyValueStore()
    await kv.connect()
    publisher = InMemoryIndexPublisher()
    await publisher.connect()
    store = PlanStore(kv, publisher, validator=validate_plan)

    server = test_utils.TestServer(create_http_app(store))
    async with test_utils.TestClient(server) as client:
        yield client


async def create(client, plan):
    resp = await client.post("/v1/plans", json=plan)
    assert resp.status == 201
    return resp.headers["ETag"]


class TestCreate:
    """Tests for POST /v1/plans."""

    @pytest.mark.asyncio
    async def test_created(self, client, plan):
        resp = await client.post("/v1/plans", json=plan)

        assert resp.status == 201
        assert resp.headers["Location"] == PLAN_URL
        assert resp.headers["ETag"].startswith('"')
        assert resp.headers["Last-Modified"].endswith("GMT")
        assert await resp.json() == plan

    @pytest.mark.asyncio
    async def test_duplicate(self, client, plan):
        await create(client, plan)

        resp = await client.post("/v1/plans", json=plan)

        assert resp.status == 409
        assert await resp.json() == {"error": "resource_exists", "objectId": PLAN_ID}

    @pytest.mark.asyncio
    async def test_validation_failed(self, client, plan):
        del plan["planType"]

        resp = await client.post("/v1/plans", json=plan)

        assert resp.status == 400
        body = await resp.json()
        assert body["error"] == "validation_failed"
        assert any(detail["field"] == "/planType" for detail in body["details"])

    @pytest.mark.asyncio
    async def test_missing_object_id(self, client, plan):
        del plan["objectId"]

        resp = await client.post("/v1/plans", json=plan)

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_wrong_content_type(self, client):
        resp = await client.post("/v1/plans", data="hello", headers={"Content-Type": "text/plain"})

        assert resp.status == 415

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        resp = await client.post(
            "/v1/plans", data="{", headers={"Content-Type": "application/json"}
        )

        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_json"

    @pytest.mark.asyncio
    async def test_invalid_utf8(self, client):
        resp = await client.post(
            "/v1/plans",
            data=b'{"objectId": "\xff\xfe"}',
            headers={"Content-Type": "application/json"},
        )

        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_json"

    @pytest.mark.asyncio
    async def test_non_object_body(self, client):
        resp = await client.post("/v1/plans", json=[1, 2])

        assert resp.status == 400


class TestGet:
    """Tests for GET /v1/plans/{id}."""

    @pytest.mark.asyncio
    async def test_get(self, client, plan):
        etag = await create(client, plan)

        resp = await client.get(PLAN_URL)

        assert resp.status == 200
        assert resp.headers["ETag"] == etag
        assert await resp.json() == plan

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        resp = await client.get("/v1/plans/nope")

        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_if_none_match(self, client, plan):
        etag = await create(client, plan)

        resp = await client.get(PLAN_URL, headers={"If-None-Match": etag})

        assert resp.status == 304
        assert resp.headers["ETag"] == etag

    @pytest.mark.asyncio
    async def test_if_none_match_other_etag(self, client, plan):
        await create(client, plan)

        resp = await client.get(PLAN_URL, headers={"If-None-Match": '"other"'})

        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_if_match_mismatch(self, client, plan):
        etag = await create(client, plan)

        resp = await client.get(PLAN_URL, headers={"If-Match": '"other"'})

        assert resp.status == 412
        assert (await resp.json())["currentEtag"] == etag

    @pytest.mark.asyncio
    async def test_if_modified_since(self, client, plan):
        await create(client, plan)
        future = http_date(datetime.now(timezone.utc) + timedelta(days=1))
        past = http_date(datetime.now(timezone.utc) - timedelta(days=1))

        not_modified = await client.get(PLAN_URL, headers={"If-Modified-Since": future})
        modified = await client.get(PLAN_URL, headers={"If-Modified-Since": past})
        garbage = await client.get(PLAN_URL, headers={"If-Modified-Since": "yesterday"})

        assert not_modified.status == 304
        assert modified.status == 200
        assert garbage.status == 200


class TestPatch:
    """Tests for PATCH /v1/plans/{id}."""

    @pytest.mark.asyncio
    async def test_patch(self, client, plan):
        etag = await create(client, plan)

        resp = await client.patch(
            PLAN_URL,
            json={"planCostShares": {"copay": 50}},
            headers={"If-Match": etag},
        )

        assert resp.status == 200
        assert resp.headers["ETag"] != etag
        body = await resp.json()
        assert body["planCostShares"]["copay"] == 50
        assert body["planCostShares"]["deductible"] == 2000

    @pytest.mark.asyncio
    async def test_missing_if_match(self, client, plan):
        await create(client, plan)

        resp = await client.patch(PLAN_URL, json={"planType": "x"})

        assert resp.status == 428

    @pytest.mark.asyncio
    async def test_stale_if_match(self, client, plan):
        etag = await create(client, plan)
        await client.patch(PLAN_URL, json={"planType": "x"}, headers={"If-Match": etag})

        resp = await client.patch(PLAN_URL, json={"planType": "y"}, headers={"If-Match": etag})

        assert resp.status == 412
        assert (await resp.json())["error"] == "etag_mismatch"

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        resp = await client.patch(
            "/v1/plans/nope", json={"planType": "x"}, headers={"If-Match": '"a"'}
        )

        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_empty_patch(self, client, plan):
        etag = await create(client, plan)

        resp = await client.patch(PLAN_URL, json={}, headers={"If-Match": etag})

        assert resp.status == 400
        assert (await resp.json())["error"] == "empty_patch"

    @pytest.mark.asyncio
    async def test_object_id_mismatch(self, client, plan):
        etag = await create(client, plan)

        resp = await client.patch(PLAN_URL, json={"objectId": "other"}, headers={"If-Match": etag})

        assert resp.status == 400
        assert (await resp.json())["error"] == "objectId_mismatch"

    @pytest.mark.asyncio
    async def test_invalid_result(self, client, plan):
        etag = await create(client, plan)

        resp = await client.patch(
            PLAN_URL, json={"planCostShares": {"copay": "free"}}, headers={"If-Match": etag}
        )

        assert resp.status == 400
        assert (await resp.json())["error"] == "validation_failed"


class TestDelete:
    """Tests for DELETE /v1/plans/{id}."""

    @pytest.mark.asyncio
    async def test_delete(self, client, plan):
        etag = await create(client, plan)

        resp = await client.delete(PLAN_URL, headers={"If-Match": etag})

        assert resp.status == 204
        assert (await client.get(PLAN_URL)).status == 404
        assert (await client.get("/v1/objects/1234520xvc30asdf-502")).status == 404

    @pytest.mark.asyncio
    async def test_missing_if_match(self, client, plan):
        await create(client, plan)

        resp = await client.delete(PLAN_URL)

        assert resp.status == 428
        assert (await client.get(PLAN_URL)).status == 200

    @pytest.mark.asyncio
    async def test_stale_if_match(self, client, plan):
        await create(client, plan)

        resp = await client.delete(PLAN_URL, headers={"If-Match": '"stale"'})

        assert resp.status == 412


class TestObjectsAndHealth:
    """Tests for GET /v1/objects/{id} and GET /v1/health."""

    @pytest.mark.asyncio
    async def test_get_object(self, client, plan):
        await create(client, plan)

        resp = await client.get("/v1/objects/1234vxc2324sdf-501")

        assert resp.status == 200
        body = await resp.json()
        assert body["objectType"] == "membercostshare"
        assert body["parentId"] == PLAN_ID

    @pytest.mark.asyncio
    async def test_get_object_missing(self, client):
        resp = await client.get("/v1/objects/nope")

        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/v1/health")

        assert resp.status == 200
        assert await resp.json() == {"healthy": True, "kv": "connected", "index": "connected"}


class TestAppSetup:
    """Tests for create_http_app() wiring."""

    def test_handlers_are_coroutine_functions(self):
        store = PlanStore(InMemoryKeyValueStore())

        app = create_http_app(store)

        routes = list(app.router.routes())
        assert routes
        for route in routes:
            assert inspect.iscoroutinefunction(route.handler), route
