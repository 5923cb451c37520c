from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from savesync.providers.romm.auto_sync import AutoSync
from savesync.providers.romm.scanner import emulator_directories_with_status

router = APIRouter(prefix="/api")

SCHEDULER_POLL_GRANULARITY_SEC = 1
SCHEDULER_MIN_INTERVAL_SEC = 10
SCHEDULER_MAX_INTERVAL_SEC = 86400


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sanitize_poll_interval(raw_value: object) -> int:
    try:
        raw = int(raw_value or 0)
    except (TypeError, ValueError):
        raw = 0
    if raw <= 0:
        return 0
    return min(max(raw, SCHEDULER_MIN_INTERVAL_SEC), SCHEDULER_MAX_INTERVAL_SEC)


def _iso_from_ts(ts: Optional[float]) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


async def _wait_stop_or_timeout(stop_event: asyncio.Event, timeout_sec: float) -> bool:
    if timeout_sec <= 0:
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_sec)
        return True
    except asyncio.TimeoutError:
        return False


class SyncScheduler:
    """Kicks off an AutoSync cycle every `interval_sec` seconds."""

    def __init__(self, auto_sync: AutoSync, interval_sec: int):
        self.auto_sync = auto_sync
        self.configured_interval_sec = int(interval_sec or 0)
        self.effective_interval_sec = _sanitize_poll_interval(interval_sec)
        self._lock = threading.Lock()
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._state: dict[str, object] = {
            "running": False,
            "last_started_at": None,
            "next_run_at": None,
            "run_count": 0,
            "skipped_busy_count": 0,
        }

    @property
    def enabled(self) -> bool:
        return self.effective_interval_sec > 0

    def _update(self, **kwargs) -> None:
        with self._lock:
            self._state.update(kwargs)

    def snapshot(self) -> dict:
        with self._lock:
            snap = dict(self._state)
        next_run_at = snap.get("next_run_at")
        next_run_in_sec = None
        if isinstance(next_run_at, (int, float)):
            next_run_in_sec = max(int(next_run_at - time.time()), 0)
        return {
            "running": bool(snap.get("running")),
            "enabled": self.enabled,
            "configured_interval_sec": self.configured_interval_sec,
            "effective_interval_sec": self.effective_interval_sec,
            "last_started_at": _iso_from_ts(snap.get("last_started_at")),
            "next_run_at": _iso_from_ts(next_run_at),
            "next_run_in_sec": next_run_in_sec,
            "run_count": snap.get("run_count", 0),
            "skipped_busy_count": snap.get("skipped_busy_count", 0),
        }

    def tick(self) -> bool:
        """Start one cycle unless one is already running."""
        if self.auto_sync.start():
            with self._lock:
                self._state["run_count"] = int(self._state["run_count"]) + 1
                self._state["last_started_at"] = time.time()
            return True
        with self._lock:
            self._state["skipped_busy_count"] = int(self._state["skipped_busy_count"]) + 1
        logging.getLogger("scheduler").warning("scheduled_sync_skipped sync_busy")
        return False

    async def _loop(self, stop_event: asyncio.Event) -> None:
        logger = logging.getLogger("scheduler")
        self._update(running=True)
        logger.info("scheduler_started interval_sec=%s", self.effective_interval_sec)
        next_run_at = time.time() + self.effective_interval_sec
        try:
            while not stop_event.is_set():
                self._update(next_run_at=next_run_at)
                wait_sec = next_run_at - time.time()
                if wait_sec > 0:
                    await _wait_stop_or_timeout(stop_event, min(wait_sec, SCHEDULER_POLL_GRANULARITY_SEC))
                    continue
                self.tick()
                next_run_at = time.time() + self.effective_interval_sec
        finally:
            self._update(running=False, next_run_at=None)
            logger.info("scheduler_stopped")

    def start(self) -> None:
        if not self.enabled or (self._task and not self._task.done()):
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event))

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except asyncio.TimeoutError:
                self._task.cancel()
        self._task = None
        self._stop_event = None


class ResolvePayload(BaseModel):
    slug: str
    game_base: str
    emulator: Optional[str] = None


def _auto_sync(request: Request) -> AutoSync:
    auto_sync = getattr(request.app.state, "auto_sync", None)
    if auto_sync is None:
        raise HTTPException(status_code=503, detail="auto_sync_not_configured")
    return auto_sync


def _scheduler(request: Request) -> SyncScheduler | None:
    return getattr(request.app.state, "scheduler", None)


@router.get("/healthz")
def healthz():
    return {"ok": True, "status": "alive", "checked_at": _now_iso()}


@router.get("/sync/status")
def sync_status(request: Request):
    auto_sync = _auto_sync(request)
    payload = auto_sync.snapshot()
    scheduler = _scheduler(request)
    payload["scheduler"] = scheduler.snapshot() if scheduler is not None else None
    payload["checked_at"] = _now_iso()
    return payload


@router.post("/sync/start")
def sync_start(request: Request):
    started = _auto_sync(request).start()
    return {"ok": True, "started": started, "reason": None if started else "sync_busy"}


@router.post("/sync/dismiss")
def sync_dismiss(request: Request):
    auto_sync = _auto_sync(request)
    auto_sync.dismiss_button()
    return {"ok": True, "show_button": auto_sync.show_button}


@router.get("/sync/emulators/{slug}")
def sync_emulators(slug: str, request: Request):
    auto_sync = _auto_sync(request)
    if not auto_sync.layout.save_dir_names(slug):
        raise HTTPException(status_code=404, detail="save_folder_unmapped")
    return {"slug": slug, "items": emulator_directories_with_status(slug, auto_sync.layout)}


@router.get("/sync/issues")
def sync_issues(request: Request):
    issues = _auto_sync(request).get_issues()
    return {"count": len(issues), "items": [issue.to_dict() for issue in issues]}


@router.post("/sync/issues/resolve")
def sync_issue_resolve(payload: ResolvePayload, request: Request):
    auto_sync = _auto_sync(request)
    issue = auto_sync.find_issue(payload.slug, payload.game_base)
    if issue is None:
        raise HTTPException(status_code=404, detail="issue_not_found")

    if not auto_sync.resolve_issue(issue, emulator=payload.emulator):
        current = auto_sync.find_issue(payload.slug, payload.game_base) or issue
        raise HTTPException(
            status_code=409,
            detail={
                "error": "resolve_failed",
                "needs_emulator": current.needs_emulator and not payload.emulator,
                "error_message": current.error_message,
            },
        )
    return {"ok": True, "remaining": len(auto_sync.get_issues())}


@router.delete("/sync/issues")
def sync_issues_clear(request: Request):
    _auto_sync(request).clear_issues()
    return {"ok": True}


@router.delete("/sync/issues/{slug}/{game_base}")
def sync_issue_remove(slug: str, game_base: str, request: Request):
    auto_sync = _auto_sync(request)
    issue = auto_sync.find_issue(slug, game_base)
    if issue is None or not auto_sync.remove_issue(issue):
        raise HTTPException(status_code=404, detail="issue_not_found")
    return {"ok": True, "remaining": len(auto_sync.get_issues())}
