"""
Scheduled broadcast poller

Moves scheduled broadcasts into sending once their schedule time passes.
"""

import logging
from datetime import datetime
from typing import Callable

from .broadcast_service import BroadcastService
from .models import utc_now
from .periodic_worker import PeriodicWorker

logger = logging.getLogger(__name__)


class BroadcastDuePoller(PeriodicWorker):
    name = "broadcast_due_poller"

    def __init__(
        self,
        service: BroadcastService,
        interval_seconds: float = 60,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(interval_seconds=interval_seconds, clock=clock)
        self.service = service

    async def run_once(self) -> int:
        return await self.service.dispatch_due_broadcasts(self.clock())


__all__ = ["BroadcastDuePoller"]
