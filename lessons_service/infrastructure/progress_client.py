"""HTTP progress store used by players that run outside this service."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable

import httpx

from ..application.progress_coalescer import IProgressStore
from ..config import settings
from ..domain.entities import ProgressRecord
from ..domain.errors import StoreError


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def record_from_json(data: dict) -> ProgressRecord:
    last_watched_at = data.get("last_watched_at")
    return ProgressRecord(
        user_id=data["user_id"],
        lesson_id=data["lesson_id"],
        course_id=data.get("course_id"),
        progress_percentage=data.get("progress_percentage", 0),
        watch_time_seconds=data.get("watch_time", 0),
        completed=bool(data.get("completed", False)),
        last_watched_at=_parse_timestamp(last_watched_at),
    )


class ProgressApiClient(IProgressStore):
    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url or settings.PROGRESS_API_URL,
            timeout=timeout or settings.PROGRESS_API_TIMEOUT,
        )

    async def upsert(
        self,
        user_id: str,
        lesson_id: int,
        course_id: int | None,
        progress_percentage: int,
        watch_time_seconds: int,
        completed: bool,
    ) -> ProgressRecord:
        payload = {
            "lesson_id": lesson_id,
            "user_id": user_id,
            "course_id": course_id,
            "progress_percentage": progress_percentage,
            "watch_time": watch_time_seconds,
            "completed": completed,
        }
        data = await self._request("POST", "/api/progress", json=payload)
        return record_from_json(data["progress"])

    async def query_by_user_and_lessons(self, user_id: str, lesson_ids: Iterable[int]) -> list[ProgressRecord]:
        params = {"user_id": user_id, "lesson_ids": list(lesson_ids)}
        data = await self._request("GET", "/api/progress", params=params)
        return [record_from_json(item) for item in data]

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs):
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {url} failed: {exc}") from exc
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = None
            detail = body.get("error", body) if isinstance(body, dict) else response.text
            raise StoreError(f"{method} {url} returned {response.status_code}: {detail}")
        return response.json()
