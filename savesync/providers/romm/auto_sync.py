from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import List, Optional

from savesync.core.logging_setup import log_event

from .executor import check_emulator, execute_sync
from .layout import LibraryLayout
from .matcher import find_sync_plan
from .models import SaveCatalog, SyncAction, SyncIssue, SyncItem, SyncStatus

logger = logging.getLogger("auto_sync")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AutoSync:
    """Runs scan, decide and execute on a background thread, one cycle at a time.

    Items that need a person (emulator choice) or that failed are kept as
    issues until a foreground caller resolves, removes or clears them. A
    finished cycle drops an issue only when its platform was fully listed and
    the item no longer comes up; issues on platforms the cycle could not list
    are carried over unchanged.
    """

    def __init__(
        self,
        catalog: SaveCatalog,
        layout: LibraryLayout,
        *,
        host_label: str = "",
        status_delay_sec: float = 0.0,
        staging_dir: Optional[str] = None,
    ):
        self.catalog = catalog
        self.layout = layout
        self.host_label = host_label
        self.status_delay_sec = status_delay_sec
        self.staging_dir = staging_dir

        self._state_lock = threading.Lock()
        self._issues_lock = threading.Lock()
        # Serializes writes into save folders between the cycle and the resolver.
        self._transfer_lock = threading.Lock()

        self._running = False
        self._has_issues = False
        self._show_button = False
        self._status = SyncStatus.IDLE
        self._issues: List[SyncIssue] = []
        self._last_summary: Optional[dict] = None
        self._thread: Optional[threading.Thread] = None
        self._done = threading.Event()
        self._done.set()

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    @property
    def has_issues(self) -> bool:
        with self._state_lock:
            return self._has_issues

    @property
    def show_button(self) -> bool:
        with self._state_lock:
            return self._show_button

    @property
    def status(self) -> SyncStatus:
        with self._state_lock:
            return self._status

    @property
    def last_summary(self) -> Optional[dict]:
        with self._state_lock:
            return dict(self._last_summary) if self._last_summary is not None else None

    def _set_state(self, **kwargs):
        with self._state_lock:
            for key, value in kwargs.items():
                setattr(self, f"_{key}", value)

    def _show(self, status: SyncStatus):
        self._set_state(status=status)
        if self.status_delay_sec > 0:
            time.sleep(self.status_delay_sec)

    def dismiss_button(self):
        self._set_state(show_button=False)

    def snapshot(self) -> dict:
        with self._state_lock:
            snap = {
                "host": self.host_label,
                "status": self._status.value,
                "running": self._running,
                "has_issues": self._has_issues,
                "show_button": self._show_button,
                "last_summary": dict(self._last_summary) if self._last_summary is not None else None,
            }
        snap["issue_count"] = len(self.get_issues())
        return snap

    def start(self) -> bool:
        """Begin a cycle in the background. Returns False if one is already running."""
        with self._state_lock:
            if self._running:
                return False
            self._running = True
            self._done = threading.Event()
            done = self._done

        self._thread = threading.Thread(target=self._run, args=(done,), name="auto-sync", daemon=True)
        self._thread.start()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        with self._state_lock:
            done = self._done
        return done.wait(timeout)

    def run_once(self) -> Optional[dict]:
        """Run a cycle and block until it finishes (joins one already in flight)."""
        self.start()
        self.wait()
        return self.last_summary

    def _run(self, done: threading.Event):
        try:
            self._run_cycle()
        except Exception as e:
            logger.exception("cycle_crashed")
            self._set_state(status=SyncStatus.ALERT, has_issues=True, show_button=True)
            with self._state_lock:
                self._last_summary = {"fatal_error": str(e), "status": SyncStatus.ALERT.value}
        finally:
            with self._state_lock:
                self._running = False
            done.set()

    def _run_cycle(self) -> dict:
        summary = {
            "host": self.host_label,
            "started_at": _now_iso(),
            "finished_at": None,
            "planned": 0,
            "uploaded": 0,
            "downloaded": 0,
            "needs_emulator": 0,
            "failed": 0,
            "carried": 0,
            "status": None,
            "fatal_error": None,
        }

        self._show(SyncStatus.SCANNING)
        log_event(logger, "INFO", "cycle_started", host=self.host_label)

        try:
            plan = find_sync_plan(self.catalog, self.layout)
        except Exception as e:
            # Keep the previous issues; nothing was learned about them.
            log_event(logger, "ERROR", "find_sync_plan_failed", error=str(e))
            self._set_state(status=SyncStatus.ALERT, has_issues=True, show_button=True)
            summary.update(fatal_error=str(e), status=SyncStatus.ALERT.value, finished_at=_now_iso())
            self._set_state(last_summary=summary)
            return summary

        items = plan.items
        summary["planned"] = len(items)
        new_issues: List[SyncIssue] = []

        for item in items:
            if item.needs_emulator_selection():
                log_event(logger, "INFO", "emulator_selection_needed", game=item.game_base, slug=item.slug)
                new_issues.append(SyncIssue(item=item, needs_emulator=True))
                summary["needs_emulator"] += 1
                continue

            self._show(SyncStatus.UPLOADING if item.action == SyncAction.UPLOAD else SyncStatus.DOWNLOADING)
            try:
                self._execute(item)
            except Exception as e:
                message = str(e) or e.__class__.__name__
                log_event(logger, "ERROR", "sync_failed", game=item.game_base, slug=item.slug, error=message)
                new_issues.append(SyncIssue(item=item, error_message=message))
                summary["failed"] += 1
                continue

            summary["uploaded" if item.action == SyncAction.UPLOAD else "downloaded"] += 1
            log_event(logger, "DEBUG", "sync_succeeded", game=item.game_base, action=item.action.value)

        new_keys = {issue.key for issue in new_issues}
        with self._issues_lock:
            carried = [
                issue
                for issue in self._issues
                if issue.item.slug not in plan.covered_slugs and issue.key not in new_keys
            ]
            self._issues = carried + new_issues
            issue_count = len(self._issues)
        summary["carried"] = len(carried)

        if issue_count:
            self._set_state(status=SyncStatus.ALERT, has_issues=True, show_button=True)
        else:
            self._set_state(status=SyncStatus.CLEAN, has_issues=False, show_button=False)

        summary["status"] = self.status.value
        summary["finished_at"] = _now_iso()
        self._set_state(last_summary=summary)
        log_event(
            logger,
            "INFO",
            "cycle_completed",
            planned=summary["planned"],
            uploaded=summary["uploaded"],
            downloaded=summary["downloaded"],
            issues=issue_count,
            carried=len(carried),
        )
        return summary

    def _execute(self, item: SyncItem):
        with self._transfer_lock:
            execute_sync(item, self.catalog, self.layout, staging_dir=self.staging_dir)

    def get_issues(self) -> List[SyncIssue]:
        with self._issues_lock:
            return list(self._issues)

    def find_issue(self, slug: str, game_base: str) -> Optional[SyncIssue]:
        with self._issues_lock:
            for issue in self._issues:
                if issue.key == (game_base, slug):
                    return issue
        return None

    def clear_issues(self):
        with self._issues_lock:
            self._issues = []
        self._set_state(has_issues=False, show_button=False, status=SyncStatus.IDLE)

    def mark_complete(self):
        with self._issues_lock:
            self._issues = []
        self._set_state(has_issues=False, show_button=False, status=SyncStatus.CLEAN)

    def remove_issue(self, issue: SyncIssue) -> bool:
        with self._issues_lock:
            for i, existing in enumerate(self._issues):
                if existing.key == issue.key:
                    del self._issues[i]
                    removed = True
                    break
            else:
                removed = False
            empty = not self._issues

        if empty:
            with self._state_lock:
                self._has_issues = False
                self._show_button = False
                if self._status == SyncStatus.ALERT:
                    self._status = SyncStatus.CLEAN
        return removed

    def resolve_issue(self, issue: SyncIssue, emulator: Optional[str] = None) -> bool:
        """Retry an issue's item, with a chosen emulator folder when given.

        Removes the issue and returns True on success; otherwise records the
        error on the issue and returns False.
        """
        item = issue.item.with_emulator(emulator) if emulator else issue.item
        if item.needs_emulator_selection():
            log_event(logger, "WARNING", "resolve_needs_emulator", game=item.game_base, slug=item.slug)
            return False

        try:
            if emulator:
                check_emulator(item.slug, emulator, self.layout)
            self._execute(item)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            log_event(logger, "ERROR", "resolve_failed", game=item.game_base, slug=item.slug, error=message)
            with self._issues_lock:
                for existing in self._issues:
                    if existing.key == issue.key:
                        existing.error_message = message
            return False

        log_event(logger, "INFO", "issue_resolved", game=item.game_base, slug=item.slug)
        self.remove_issue(issue)
        return True


def build_auto_sync(cfg) -> AutoSync:
    """Wire an AutoSync for the configured host and library."""
    from .client import RommClient

    client = RommClient(cfg.host)
    layout = LibraryLayout.from_config(cfg.library)
    log_event(logger, "DEBUG", "auto_sync_built", host=cfg.host.to_loggable(), firmware=layout.firmware.value)
    return AutoSync(
        client,
        layout,
        host_label=cfg.host.display_name or cfg.host.url(),
        status_delay_sec=float(cfg.sync.status_delay_sec),
        staging_dir=cfg.sync.staging_dir or None,
    )
