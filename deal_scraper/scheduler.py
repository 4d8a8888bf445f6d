"""Async scheduler that periodically runs every active source."""

from __future__ import annotations

import asyncio

from .config import AppConfig
from .logging import get_logger
from .orchestrator import RunOrchestrator

logger = get_logger(__name__)


class Scheduler:
    def __init__(self, config: AppConfig, orchestrator: RunOrchestrator) -> None:
        self.config = config
        self.orchestrator = orchestrator
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._task:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info("scheduler_started", interval=self.config.service_poll_interval.total_seconds())

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("scheduler_stopped")

    async def tick(self) -> int:
        tickets = await asyncio.to_thread(self.orchestrator.run_all_active)
        accepted = sum(1 for ticket in tickets if ticket.accepted)
        logger.info("scheduler_tick", sources=len(tickets), accepted=accepted)
        return accepted

    async def _run_loop(self) -> None:
        interval = self.config.service_poll_interval.total_seconds()
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as exc:  # pragma: no cover
                logger.error("scheduler_tick_error", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
