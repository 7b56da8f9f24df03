import asyncio
from typing import Callable, List, Optional

from briefloop.shared.logging_utils import error as log_error, info as log_info


class PeriodicSweep:
    """Runs ``action`` every ``interval_seconds`` as an independently cancellable task.

    Used outside the Functions host; inside it, timer triggers drive the sweeps.
    A failing tick is logged and the loop carries on.
    """

    def __init__(self, name: str, interval_seconds: float, action: Callable[[], object]) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._action = action
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=f"sweep:{self.name}")
        log_info(None, "sweep:started", sweep=self.name, intervalSeconds=self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log_info(None, "sweep:stopped", sweep=self.name)

    async def run_once(self) -> None:
        try:
            self._action()
        except Exception as exc:
            log_error(None, "sweep:tick_failed", sweep=self.name, error=str(exc))

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()


DUE_CALL_INTERVAL_SECONDS = 60
SWEEP_INTERVAL_SECONDS = 300


def build_sweeps(services) -> List[PeriodicSweep]:
    """The four background sweeps, mirroring the Functions timer triggers."""
    return [
        PeriodicSweep("due_calls", DUE_CALL_INTERVAL_SECONDS, services.sessions.dispatch_due_calls),
        PeriodicSweep("idle_rooms", SWEEP_INTERVAL_SECONDS, services.broker.sweep_idle),
        PeriodicSweep("expired_approvals", SWEEP_INTERVAL_SECONDS, services.approvals.sweep_expired),
        PeriodicSweep("stale_sessions", SWEEP_INTERVAL_SECONDS, services.sessions.sweep_stale),
    ]
