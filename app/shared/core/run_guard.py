"""Single-flight guard for reconciler entry points."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

import structlog

from app.shared.core.exceptions import SyncAlreadyRunningError

logger = structlog.get_logger()


class RunGuard:
    """
    Rejects a run while another run of the same owner is in flight.

    Overlapping scheduled and manual invocations would otherwise mutate the
    target systems from stale snapshots. The guard is per owner instance.
    """

    def __init__(self, owner: str):
        self.owner = owner
        self._active_run: Optional[str] = None

    @property
    def active_run(self) -> Optional[str]:
        return self._active_run

    @asynccontextmanager
    async def hold(self, run_name: str) -> AsyncIterator[None]:
        # Check-and-set has no await in between, so it is atomic on one event loop.
        if self._active_run is not None:
            logger.warning(
                "sync_run_rejected_already_running",
                owner=self.owner,
                run=run_name,
                active_run=self._active_run,
            )
            raise SyncAlreadyRunningError(run_name, self._active_run)
        self._active_run = run_name
        try:
            yield
        finally:
            self._active_run = None
