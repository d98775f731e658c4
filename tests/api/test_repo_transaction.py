"""Request-scoped repositories: commit and cache invalidation order."""

from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from app.api import dependencies
from app.services.cache import InMemoryCacheService, stats_key


class _RecordingCache(InMemoryCacheService):
    def __init__(self, events: list[str]) -> None:
        super().__init__()
        self.events = events

    async def delete_pattern(self, pattern: str) -> None:
        self.events.append(f"invalidate {pattern}")
        await super().delete_pattern(pattern)


class _Transaction:
    def __init__(self, events: list[str]) -> None:
        self.events = events

    async def __aenter__(self) -> None:
        self.events.append("begin")

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.events.append("rollback" if exc_type else "commit")


class _Session:
    def __init__(self, events: list[str]) -> None:
        self.events = events

    async def __aenter__(self) -> _Session:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.events.append("close")

    def begin(self) -> _Transaction:
        return _Transaction(self.events)


def _drive(events: list[str], cache: _RecordingCache, org_id) -> None:
    async def _request() -> None:
        gen = dependencies.get_repos(stats_cache=cache)
        repos = await gen.__anext__()
        repos.invalidations.add(org_id)
        events.append("handler returned")
        with pytest.raises(StopAsyncIteration):
            await gen.__anext__()

    asyncio.run(_request())


def test_cache_cleared_after_commit(monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[str] = []
    monkeypatch.setattr(dependencies, "async_session_factory", lambda: _Session(events))
    cache = _RecordingCache(events)
    org_id = uuid4()

    _drive(events, cache, org_id)

    assert events == [
        "begin",
        "handler returned",
        "commit",
        "close",
        f"invalidate reports:{org_id}:*",
    ]


def test_stale_entry_built_before_commit_is_dropped(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    events: list[str] = []
    monkeypatch.setattr(dependencies, "async_session_factory", lambda: _Session(events))
    cache = _RecordingCache(events)
    org_id = uuid4()

    async def _request() -> None:
        gen = dependencies.get_repos(stats_cache=cache)
        repos = await gen.__anext__()
        repos.invalidations.add(org_id)
        # A concurrent reader caches counts from rows not yet committed.
        await cache.set(stats_key(org_id), '{"total": 0}', 60)
        with pytest.raises(StopAsyncIteration):
            await gen.__anext__()

    asyncio.run(_request())
    assert asyncio.run(cache.get(stats_key(org_id))) is None


def test_nothing_pending_means_no_invalidation(monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[str] = []
    monkeypatch.setattr(dependencies, "async_session_factory", lambda: _Session(events))

    async def _request() -> None:
        gen = dependencies.get_repos(stats_cache=_RecordingCache(events))
        await gen.__anext__()
        with pytest.raises(StopAsyncIteration):
            await gen.__anext__()

    asyncio.run(_request())
    assert events == ["begin", "commit", "close"]
