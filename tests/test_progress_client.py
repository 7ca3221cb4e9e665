import httpx
import pytest

from lessons_service.application.progress_tracker import ProgressTracker
from lessons_service.domain.errors import StoreError
from lessons_service.infrastructure.progress_client import ProgressApiClient
from lessons_service.main import app
from fakes import FakeScheduler


def asgi_client():
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.asyncio
async def test_upsert_and_query_through_the_api(client):
    async with asgi_client() as http:
        store = ProgressApiClient(client=http)

        saved = await store.upsert("user-1", 5, None, 60, 180, False)
        assert saved.lesson_id == 5
        assert saved.progress_percentage == 60
        assert saved.watch_time_seconds == 180
        assert saved.last_watched_at is not None

        records = await store.query_by_user_and_lessons("user-1", [5, 6])
        assert [(r.lesson_id, r.completed) for r in records] == [(5, False)]


@pytest.mark.asyncio
async def test_tracker_persists_through_the_api(client):
    clock = FakeScheduler()
    async with asgi_client() as http:
        tracker = ProgressTracker(ProgressApiClient(client=http), "user-1", debounce_window=5.0, scheduler=clock)

        tracker.track_playback(8, current_time=30, duration=100)
        tracker.track_playback(8, current_time=95, duration=100)
        await tracker.coalescer.drain()

        assert tracker.is_lesson_completed(8)
        fresh = ProgressTracker(ProgressApiClient(client=http), "user-1")
        await fresh.fetch_progress([8])
        assert fresh.get_lesson_progress(8).progress_percentage == 95
        assert fresh.completion_stats([8]) == {"completed": 1, "total": 1, "percentage": 100}
        await tracker.aclose()


@pytest.mark.asyncio
async def test_error_status_becomes_store_error():
    def handler(request):
        return httpx.Response(500, json={"error": "Failed to update progress"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://progress") as http:
        store = ProgressApiClient(client=http)
        with pytest.raises(StoreError, match="Failed to update progress"):
            await store.upsert("user-1", 1, None, 10, 10, False)


@pytest.mark.asyncio
async def test_transport_error_becomes_store_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://progress") as http:
        store = ProgressApiClient(client=http)
        with pytest.raises(StoreError):
            await store.query_by_user_and_lessons("user-1", [1])
