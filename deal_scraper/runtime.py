"""Runtime wiring for CLI and service entrypoints."""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial

import httpx

from .config import AppConfig, load_config
from .db import DealDatabase
from .fetcher import Fetcher
from .logging import configure_logging
from .orchestrator import RunOrchestrator
from .scheduler import Scheduler
from .service import DealSyncService
from .time_utils import today_in


@dataclass(slots=True)
class Runtime:
    config: AppConfig
    database: DealDatabase
    fetcher: Fetcher
    orchestrator: RunOrchestrator
    service: DealSyncService
    scheduler: Scheduler

    def close(self) -> None:
        self.orchestrator.close()
        self.database.dispose()


def build_runtime(
    config: AppConfig | None = None,
    transport: httpx.BaseTransport | None = None,
) -> Runtime:
    cfg = config or load_config()
    configure_logging(cfg.log_level, cfg.log_format)

    database = DealDatabase(cfg.database_url)
    fetcher = Fetcher(
        backoff_base=cfg.http_backoff_base,
        backoff_max=cfg.http_backoff_max,
        transport=transport,
    )

    orchestrator = RunOrchestrator(
        store=database,
        fetcher=fetcher,
        today=partial(today_in, cfg.timezone),
        grace_days=cfg.stale_grace_days,
        default_identity=cfg.http_user_agent,
        max_workers=cfg.max_concurrent_runs,
    )
    service = DealSyncService(cfg, database, fetcher, orchestrator)
    scheduler = Scheduler(cfg, orchestrator)

    return Runtime(
        config=cfg,
        database=database,
        fetcher=fetcher,
        orchestrator=orchestrator,
        service=service,
        scheduler=scheduler,
    )
