from __future__ import annotations

import httpx
from httpx import ASGITransport
import pytest

from herald.apps.api.main import create_app
from herald.core.errors import QueueStoreUnavailableError
from herald.services.notifications.factory import NotificationServices
from herald.tests.utils.fakes import FakeClock, email_candidate


def _client(services: NotificationServices) -> httpx.AsyncClient:
    app = create_app(services=services)
    return httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_enqueue_and_fetch_entry(services: NotificationServices, clock: FakeClock) -> None:
    async with _client(services) as client:
        created = await client.post("/v1/notifications", json=email_candidate(), headers={"X-Request-Id": "req-1"})
        assert created.status_code == 201
        body = created.json()
        assert body["meta"]["request_id"] == "req-1"
        entry_id = body["data"]["id"]
        assert body["data"]["channels"]["email"]["status"] == "pending"
        assert body["data"]["channels"]["email"]["recipients"] == ["ops@example.com"]

        fetched = await client.get(f"/v1/notifications/{entry_id}")
        assert fetched.status_code == 200
        assert fetched.json()["data"]["next_attempt_at"] == clock.now

    assert services.scheduler.processing_ticks()[0].at == clock.now + 15


@pytest.mark.asyncio
async def test_enqueue_without_channels_is_rejected(services: NotificationServices) -> None:
    async with _client(services) as client:
        response = await client.post("/v1/notifications", json=email_candidate(channels={}))

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "ENTRY_REJECTED"
    assert await services.store.load() == []


@pytest.mark.asyncio
async def test_missing_channels_field_fails_validation(services: NotificationServices) -> None:
    async with _client(services) as client:
        response = await client.post("/v1/notifications", json={"event": "x"})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_unknown_entry_returns_not_found_envelope(services: NotificationServices) -> None:
    async with _client(services) as client:
        responses = [
            await client.get("/v1/notifications/missing"),
            await client.post("/v1/notifications/missing/retry"),
            await client.delete("/v1/notifications/missing"),
            await client.post("/v1/notifications/missing/remind"),
            await client.post("/v1/notifications/missing/ack", json={}),
            await client.post("/v1/notifications/missing/channels/email/resolve", json={}),
        ]

    for response in responses:
        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "NOT_FOUND"
        assert error["details"] == {"entry_id": "missing"}


@pytest.mark.asyncio
async def test_acknowledge_and_resolve_flow(services: NotificationServices) -> None:
    entry = await services.queue.enqueue(email_candidate())
    assert entry is not None

    async with _client(services) as client:
        acked = await client.post(
            f"/v1/notifications/{entry.id}/channels/EMAIL/ack", json={"user_id": "7", "note": "On it"}
        )
        assert acked.status_code == 200
        assert acked.json()["data"]["resolution_status"] == "acknowledged"
        assert acked.json()["data"]["channels"]["email"]["acknowledged_by"] == "7"

        resolved = await client.post(f"/v1/notifications/{entry.id}/resolve", json={"notes": "Disk replaced"})
        assert resolved.status_code == 200
        data = resolved.json()["data"]
        assert data["resolution_status"] == "resolved"
        assert data["resolution_notes"] == "Disk replaced"

        receipts = await client.get("/v1/notifications/receipts", params={"limit": 5})
        assert receipts.status_code == 200
        by_id = {receipt["id"]: receipt for receipt in receipts.json()["data"]}
        assert by_id[entry.id]["status"] == "resolved"
        assert [step["type"] for step in by_id[entry.id]["steps"]] == ["created", "acknowledged", "resolved"]

        snapshot = await client.get("/v1/notifications/queue")
        assert snapshot.status_code == 200
        # The resolved entry plus its resolution broadcast.
        assert snapshot.json()["data"]["total_entries"] == 2


@pytest.mark.asyncio
async def test_retry_remind_and_delete(services: NotificationServices, clock: FakeClock) -> None:
    entry = await services.queue.enqueue(email_candidate())
    assert entry is not None

    async with _client(services) as client:
        retried = await client.post(f"/v1/notifications/{entry.id}/retry")
        assert retried.status_code == 200
        assert retried.json()["data"]["next_attempt_at"] == clock.now

        reminded = await client.post(f"/v1/notifications/{entry.id}/remind")
        assert reminded.status_code == 200
        assert reminded.json()["data"]["status"] == "sent"
        assert reminded.json()["data"]["attempts"] == 1

        deleted = await client.delete(f"/v1/notifications/{entry.id}")
        assert deleted.status_code == 200
        assert deleted.json()["data"] == {"id": entry.id, "deleted": True}

    assert await services.store.load() == []


@pytest.mark.asyncio
async def test_store_outage_maps_to_service_unavailable(
    services: NotificationServices, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def _down() -> dict[str, object]:
        raise QueueStoreUnavailableError("database is down")

    monkeypatch.setattr(services.queue, "snapshot", _down)

    async with _client(services) as client:
        response = await client.get("/v1/notifications/queue")

    assert response.status_code == 503
    error = response.json()["error"]
    assert error["code"] == "QUEUE_STORE_UNAVAILABLE"
    assert error["retryable"] is True
    assert response.headers["Retry-After"] == "5"


@pytest.mark.asyncio
async def test_health(services: NotificationServices) -> None:
    async with _client(services) as client:
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
