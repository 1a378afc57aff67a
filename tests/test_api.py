"""Tests for the practice and queue HTTP endpoints."""

import asyncio
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import SQLAlchemyError

from practice_backend.api import practice_router
from practice_backend.api.practice_router import get_scheduler_config
from practice_backend.config import SchedulerConfig, settings
from practice_backend.database import get_session
from practice_backend.main import app
from practice_backend.srs.priority import compute_next_due_date
from practice_backend.srs.regeneration import QueueRegenerator, get_regenerator
from conftest import add_tasks


@pytest_asyncio.fixture
async def client(session_factory, config):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_scheduler_config] = lambda: config
    app.dependency_overrides[get_regenerator] = lambda: QueueRegenerator(session_factory, config)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def _submission(**overrides) -> dict:
    body = {"device_id": "d1", "task_id": "verb:000", "result": "correct", "response_ms": 4200}
    body.update(overrides)
    return body


# --- Practice ---


class TestSubmitPractice:
    @pytest.mark.asyncio
    async def test_records_attempt(self, client) -> None:
        response = await client.post("/api/practice", json=_submission())
        assert response.status_code == 200
        data = response.json()
        assert data["previous_box"] == 1
        assert data["box"] == 2
        assert data["total_attempts"] == 1
        assert data["correct_attempts"] == 1
        assert data["result"] == "correct"

    @pytest.mark.asyncio
    async def test_rejects_unknown_result(self, client) -> None:
        response = await client.post("/api/practice", json=_submission(result="skipped"))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_rejects_negative_response_time(self, client) -> None:
        response = await client.post("/api/practice", json=_submission(response_ms=-1))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_rejects_empty_device(self, client) -> None:
        response = await client.post("/api/practice", json=_submission(device_id=""))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_storage_failure_is_503(self, client, monkeypatch) -> None:
        async def broken_record(*args, **kwargs):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(practice_router, "record_attempt", broken_record)

        response = await client.post("/api/practice", json=_submission())
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_offset_timestamp_normalised_to_utc(self, client) -> None:
        response = await client.post(
            "/api/practice", json=_submission(practiced_at="2024-01-01T17:00:00+05:00")
        )
        assert response.status_code == 200
        expected = compute_next_due_date(2, datetime(2024, 1, 1, 12, 0))
        assert response.json()["due_at"] == expected.isoformat()


# --- Queue ---


class TestReadQueue:
    @pytest.mark.asyncio
    async def test_builds_starter_queue(self, client, session_factory) -> None:
        async with session_factory() as setup:
            await add_tasks(setup, 30)

        response = await client.get("/api/queue/d1")

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is True
        assert data["version"]
        assert len(data["items"]) == 20
        assert data["metrics"]["item_count"] == 20
        assert all(item["box"] == 1 for item in data["items"])

    @pytest.mark.asyncio
    async def test_cached_until_practice(self, client, session_factory) -> None:
        async with session_factory() as setup:
            await add_tasks(setup, 30)

        first = (await client.get("/api/queue/d1")).json()
        second = (await client.get("/api/queue/d1")).json()
        assert second["version"] == first["version"]

        await client.post("/api/practice", json=_submission())
        third = (await client.get("/api/queue/d1")).json()
        assert third["version"] != first["version"]
        boxes = {item["task_id"]: item["box"] for item in third["items"]}
        assert boxes["verb:000"] == 2

    @pytest.mark.asyncio
    async def test_fallback_when_disabled(self, client, session_factory) -> None:
        async with session_factory() as setup:
            await add_tasks(setup, 30)
        app.dependency_overrides[get_scheduler_config] = lambda: SchedulerConfig(adaptive_enabled=False)

        response = await client.get("/api/queue/d1")

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is False
        assert data["version"] is None
        assert data["metrics"] is None
        assert len(data["items"]) == 30
        priorities = [item["priority"] for item in data["items"]]
        assert priorities == sorted(priorities, reverse=True)

    @pytest.mark.asyncio
    async def test_slow_build_times_out(self, client, monkeypatch) -> None:
        async def slow_build(*args, **kwargs):
            await asyncio.sleep(5)

        monkeypatch.setattr(practice_router, "get_or_build_queue", slow_build)
        monkeypatch.setattr(settings, "read_timeout_seconds", 0.05)

        response = await client.get("/api/queue/d1")
        assert response.status_code == 504

    @pytest.mark.asyncio
    async def test_slow_fallback_times_out(self, client, monkeypatch) -> None:
        async def slow_fallback(*args, **kwargs):
            await asyncio.sleep(5)

        app.dependency_overrides[get_scheduler_config] = lambda: SchedulerConfig(adaptive_enabled=False)
        monkeypatch.setattr(practice_router, "rank_fallback", slow_fallback)
        monkeypatch.setattr(settings, "read_timeout_seconds", 0.05)

        response = await client.get("/api/queue/d1")
        assert response.status_code == 504

    @pytest.mark.asyncio
    async def test_fallback_storage_failure_is_503(self, client, monkeypatch) -> None:
        async def broken_fallback(*args, **kwargs):
            raise SQLAlchemyError("database is locked")

        app.dependency_overrides[get_scheduler_config] = lambda: SchedulerConfig(adaptive_enabled=False)
        monkeypatch.setattr(practice_router, "rank_fallback", broken_fallback)

        response = await client.get("/api/queue/d1")
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_build_storage_failure_is_503(self, client, monkeypatch) -> None:
        async def broken_build(*args, **kwargs):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(practice_router, "get_or_build_queue", broken_build)

        response = await client.get("/api/queue/d1")
        assert response.status_code == 503


# --- Regeneration ---


class TestRegenerateQueues:
    @pytest.mark.asyncio
    async def test_regenerates_known_devices(self, client) -> None:
        await client.post("/api/practice", json=_submission(device_id="d1"))
        await client.post("/api/practice", json=_submission(device_id="d2"))

        response = await client.post("/api/queue/regenerate", params={"reason": "manual"})

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is True
        assert data["devices"] == 2
        assert data["rebuilt"] == 2
        assert data["job_run_id"] is not None
