"""Tests for graceful router shutdown."""
from __future__ import annotations

import asyncio
import signal
import time

import pytest

from mcp_router.config import Config
from mcp_router.errors import ProcessExitedError, RouterClosedError
from mcp_router.router import Router
from mcp_router.service_registry import ServiceRegistry
from mcp_router.worker import WorkerProcess, WorkerState

from .helpers import rpc, stub_service, wait_until


class TestShutdown:
    """stop() refuses new work, terminates every worker and drains the queue."""

    @pytest.mark.asyncio
    async def test_persistent_workers_terminated(self, router):
        """Every persistent worker is dead after stop()."""
        await router.execute_mcp("echo", rpc("ping", 1))
        await router.execute_mcp("banner", rpc("ping", 1))
        workers = [router.persistent.worker("echo"), router.persistent.worker("banner")]

        await router.stop()

        for worker in workers:
            assert worker.state is WorkerState.DEAD
            assert worker.exit_code == -signal.SIGTERM
        assert router.stats()["persistent"]["workers"] == {}

    @pytest.mark.asyncio
    async def test_new_submissions_rejected(self, router):
        """Both contracts refuse work after stop()."""
        await router.stop()

        with pytest.raises(RouterClosedError):
            await router.execute("echo", "ping")

        envelope = await router.execute_mcp("echo", rpc("ping", 4))
        assert envelope["id"] == 4
        assert envelope["error"]["message"] == "Router is shutting down"

    @pytest.mark.asyncio
    async def test_in_flight_requests_fail(self, router):
        """Requests pending when stop() runs fail instead of hanging."""
        await router.execute_mcp("echo", rpc("ping", 0))
        persistent = asyncio.create_task(router.execute_mcp("echo", rpc("work", 1, {"seconds": 30})))
        transient = asyncio.create_task(router.execute("echo", "work", {"seconds": 30}))
        await wait_until(lambda: router.persistent.worker("echo").pending_count == 1)
        await wait_until(lambda: router.transient.active_count == 1)

        await asyncio.wait_for(router.stop(), timeout=10)

        envelope = await persistent
        assert envelope["error"]["data"]["exit_code"] == -signal.SIGTERM
        with pytest.raises(ProcessExitedError):
            await transient

    @pytest.mark.asyncio
    async def test_queued_requests_drained(self, registry):
        """Requests waiting at the gate are failed and the queue drains."""
        router = Router(registry, Config(max_concurrent_processes=1, ready_grace_period=0.1))
        running = asyncio.create_task(router.execute("echo", "work", {"seconds": 30}))
        await wait_until(lambda: router.transient.active_count == 1)
        queued = [asyncio.create_task(router.execute("echo", "ping")) for _ in range(3)]
        await wait_until(lambda: router.transient.gate.size == 3)

        await asyncio.wait_for(router.stop(), timeout=10)

        with pytest.raises(ProcessExitedError):
            await running
        for task in queued:
            with pytest.raises(RouterClosedError):
                await task
        assert router.transient.gate.size == 0
        assert router.transient.gate.pending == 0
        assert router.transient.spawn_count == 1

    @pytest.mark.asyncio
    async def test_stop_during_transient_spawn(self, router, monkeypatch):
        """A worker whose spawn straddles stop() is terminated, not used."""
        spawn = WorkerProcess.spawn
        spawned = []
        entered = asyncio.Event()
        release = asyncio.Event()

        async def held_spawn(*args, **kwargs):
            worker = await spawn(*args, **kwargs)
            spawned.append(worker)
            entered.set()
            await release.wait()
            return worker

        monkeypatch.setattr(WorkerProcess, "spawn", staticmethod(held_spawn))
        request = asyncio.create_task(router.execute("silent", "ping"))
        await asyncio.wait_for(entered.wait(), timeout=5)

        stopping = asyncio.create_task(router.stop())
        await wait_until(lambda: router.transient.closed)
        release.set()

        started = time.monotonic()
        await asyncio.wait_for(stopping, timeout=10)
        assert time.monotonic() - started < 2.0

        with pytest.raises(RouterClosedError):
            await request
        assert spawned[0].state is WorkerState.DEAD
        assert router.transient.spawn_count == 1

    @pytest.mark.asyncio
    async def test_sigkill_after_kill_timeout(self):
        """A worker ignoring SIGTERM is killed once kill_timeout expires."""
        registry = ServiceRegistry([stub_service("stubborn", "stubborn")])
        router = Router(registry, Config(post_init_delay=0.0, kill_timeout=0.3))
        await router.execute_mcp("stubborn", rpc("ping", 1))
        worker = router.persistent.worker("stubborn")

        await asyncio.wait_for(router.stop(), timeout=10)

        assert worker.state is WorkerState.DEAD
        assert worker.exit_code == -signal.SIGKILL

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, router):
        """Calling stop() twice is harmless."""
        await router.execute_mcp("echo", rpc("ping", 1))
        await router.stop()
        await router.stop()
        assert router.persistent.closed
        assert router.transient.closed
