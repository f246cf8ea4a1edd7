"""Tests for the change bus and the coalescing refresher."""

import asyncio

import pytest

from laborhire.platform import Binding, InMemoryBackend, eq
from laborhire.realtime import ChangeBus, Refresher


class TestChangeBus:
    @pytest.mark.asyncio
    async def test_dispatches_matching_changes(self):
        backend = InMemoryBackend()
        bus = ChangeBus(backend)
        seen = []

        await bus.listen("jobs-feed", [Binding("jobs", "INSERT", eq("status", "open"))], seen.append)
        await backend.insert("jobs", {"title": "a", "status": "open"})
        await backend.insert("jobs", {"title": "b", "status": "closed"})
        await backend.insert("applications", {"job_id": "x", "worker_id": "y"})

        assert [e.new["title"] for e in seen] == ["a"]
        assert bus.channels == ["jobs-feed"]

    @pytest.mark.asyncio
    async def test_listen_replaces_channel(self):
        backend = InMemoryBackend()
        bus = ChangeBus(backend)
        first, second = [], []

        await bus.listen("feed", [Binding("jobs")], first.append)
        await bus.listen("feed", [Binding("jobs")], second.append)
        await backend.insert("jobs", {"title": "a"})

        assert first == []
        assert len(second) == 1
        assert backend.channels == ["feed"]

    @pytest.mark.asyncio
    async def test_handler_errors_are_contained(self, caplog):
        backend = InMemoryBackend()
        bus = ChangeBus(backend)

        def broken(event):
            raise RuntimeError("boom")

        async def broken_async(event):
            raise RuntimeError("async boom")

        await bus.listen("sync", [Binding("jobs")], broken)
        await bus.listen("async", [Binding("jobs")], broken_async)

        row = await backend.insert("jobs", {"title": "a"})
        await bus.drain()

        assert row["title"] == "a"
        assert "Realtime handler failed | channel=sync" in caplog.text
        assert "Realtime handler failed | channel=async" in caplog.text

    @pytest.mark.asyncio
    async def test_close_all(self):
        backend = InMemoryBackend()
        bus = ChangeBus(backend)
        await bus.listen("a", [Binding("jobs")], lambda e: None)
        await bus.listen("b", [Binding("jobs")], lambda e: None)

        await bus.close_all()

        assert bus.channels == []
        assert backend.channels == []


class TestRefresher:
    @pytest.mark.asyncio
    async def test_marks_coalesce_into_one_fetch(self):
        calls = []

        async def fetch():
            calls.append(1)

        refresher = Refresher(fetch, delay=0.02)
        for _ in range(10):
            refresher.mark_dirty()
        assert refresher.dirty

        await refresher.settle()

        assert len(calls) == 1
        assert refresher.fetch_count == 1
        assert not refresher.dirty

    @pytest.mark.asyncio
    async def test_mark_during_fetch_runs_once_more(self):
        calls = []
        refresher = None

        async def fetch():
            calls.append(1)
            if len(calls) == 1:
                refresher.mark_dirty()
                refresher.mark_dirty()

        refresher = Refresher(fetch, delay=0.01)
        refresher.mark_dirty()
        await refresher.settle()

        assert len(calls) == 2
        assert refresher.version == refresher.fetched_version == 3

    @pytest.mark.asyncio
    async def test_fetch_error_logged_not_retried(self, caplog):
        async def fetch():
            raise RuntimeError("network down")

        refresher = Refresher(fetch, delay=0.01, name="wallet")
        refresher.mark_dirty()
        await refresher.settle()

        assert refresher.fetch_count == 1
        assert not refresher.dirty
        assert "Refetch failed | refresher=wallet" in caplog.text

    @pytest.mark.asyncio
    async def test_cancel(self):
        calls = []

        async def fetch():
            calls.append(1)

        refresher = Refresher(fetch, delay=10)
        refresher.mark_dirty()
        await refresher.cancel()
        await asyncio.sleep(0)

        assert calls == []
        assert refresher.dirty
