"""
Tests for background sweeps run as asyncio tasks.
"""
import asyncio
from unittest.mock import MagicMock

from briefloop.shared.sweeps import PeriodicSweep, build_sweeps


class TestPeriodicSweep:
    """Tests for PeriodicSweep."""

    def test_ticks_until_stopped(self):
        action = MagicMock()

        async def scenario():
            sweep = PeriodicSweep("test", 0.01, action)
            sweep.start()
            assert sweep.running
            await asyncio.sleep(0.05)
            await sweep.stop()
            assert not sweep.running

        asyncio.run(scenario())
        assert action.call_count >= 1

    def test_failing_tick_does_not_stop_loop(self):
        action = MagicMock(side_effect=[RuntimeError("boom"), None, None, None, None, None, None, None])

        async def scenario():
            sweep = PeriodicSweep("test", 0.01, action)
            sweep.start()
            await asyncio.sleep(0.06)
            running = sweep.running
            await sweep.stop()
            return running

        assert asyncio.run(scenario()) is True
        assert action.call_count >= 2

    def test_stop_without_start(self):
        asyncio.run(PeriodicSweep("idle", 1, MagicMock()).stop())

    def test_sweeps_are_independent(self):
        async def scenario():
            first = PeriodicSweep("a", 10, MagicMock())
            second = PeriodicSweep("b", 10, MagicMock())
            first.start()
            second.start()
            await first.stop()
            still_running = second.running
            await second.stop()
            return still_running

        assert asyncio.run(scenario()) is True


class TestBuildSweeps:
    """Tests for build_sweeps."""

    def test_wires_all_four_sweeps(self, services, clock):
        sweeps = {sweep.name: sweep for sweep in build_sweeps(services)}
        assert set(sweeps) == {"due_calls", "idle_rooms", "expired_approvals", "stale_sessions"}
        assert sweeps["due_calls"].interval_seconds == 60

    def test_tick_runs_the_manager_sweep(self, services, clock):
        services.approvals.create("+15551230000", "art-1")
        clock.advance(hours=25)
        sweep = next(s for s in build_sweeps(services) if s.name == "expired_approvals")
        asyncio.run(sweep.run_once())
        assert services.approvals.open_workflow_for("+15551230000") is None
