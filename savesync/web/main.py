from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from savesync.core.config import AppConfig, load_config
from savesync.providers.romm.auto_sync import build_auto_sync
from savesync.web.api import SyncScheduler, router as api_router


def build_app(cfg: AppConfig | None = None) -> FastAPI:
    cfg = cfg or load_config()
    auto_sync = build_auto_sync(cfg)
    scheduler = SyncScheduler(auto_sync, cfg.sync.poll_interval_sec)

    @asynccontextmanager
    async def lifespan(_api: FastAPI):
        scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()

    api = FastAPI(title="romm-save-sync", version="0.1.0", lifespan=lifespan)
    api.state.auto_sync = auto_sync
    api.state.scheduler = scheduler
    api.include_router(api_router)
    return api


def main():
    import uvicorn

    cfg = load_config()

    from savesync.core.logging_setup import setup_logging

    setup_logging(cfg.logging.level, cfg.logging.file)

    uvicorn.run(
        build_app(cfg),
        host=cfg.web_bind_host,
        port=cfg.web_port,
        log_level=cfg.logging.level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
