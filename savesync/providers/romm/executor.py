from __future__ import annotations

import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from savesync.core.logging_setup import log_event

from .layout import LibraryLayout
from .models import LocalSave, SaveCatalog, SyncAction, SyncItem
from .scanner import find_save_files
from .timestamps import (
    authoritative_timestamp,
    file_modified_at,
    format_backup_timestamp,
    set_file_modified_at,
)

logger = logging.getLogger("executor")

BACKUP_DIR_NAME = ".backup"


def backup_path_for(save: LocalSave) -> Path:
    path = save.path
    stamp = format_backup_timestamp(save.last_modified)
    return path.parent / BACKUP_DIR_NAME / f"{path.stem} [{stamp}]{path.suffix}"


def backup_save(save: LocalSave) -> Path:
    """Copy a local save into the `.backup` folder beside it. Never moves."""
    dest = backup_path_for(save)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(save.path, dest)
    log_event(logger, "DEBUG", "save_backed_up", source=str(save.path), backup=str(dest))
    return dest


def check_emulator(slug: str, emulator: str, layout: LibraryLayout):
    if emulator not in layout.save_dir_names(slug):
        raise RuntimeError(f"emulator_not_mapped:{slug}: {emulator!r} is not a save folder of this platform")


def resolve_destination_dir(item: SyncItem, layout: LibraryLayout) -> Path:
    if item.selected_emulator:
        check_emulator(item.slug, item.selected_emulator, layout)
        return layout.save_root / item.selected_emulator
    if item.local is not None:
        return item.local.path.parent
    known = find_save_files(item.slug, layout)
    if known:
        return known[0].path.parent
    raise RuntimeError(f"save_dir_unknown:{item.slug}: no existing save files to infer the save folder from")


def restamp(path: Path, stamp: datetime) -> datetime:
    """Set the mtime to `stamp` and return what the filesystem kept."""
    set_file_modified_at(path, stamp)
    stored = file_modified_at(path)
    if stored != stamp:
        # FAT32 keeps 2 s, exFAT 10 ms; the next pass will compare against the rounded value.
        log_event(
            logger,
            "WARNING",
            "mtime_precision_loss",
            path=str(path),
            wanted=stamp.isoformat(),
            stored=stored.isoformat(),
        )
    return stored


def _staging_root(staging_dir: Optional[str]) -> Path:
    return Path(staging_dir or tempfile.gettempdir()) / "savesync" / "uploads"


def upload(item: SyncItem, catalog: SaveCatalog, staging_dir: Optional[str] = None) -> LocalSave:
    if item.local is None:
        raise RuntimeError("cannot_upload_without_local_save")

    local = item.local
    staging_root = _staging_root(staging_dir)
    staging_root.mkdir(parents=True, exist_ok=True)
    # The server names the save after the uploaded file, so stage it under the game name.
    staged = staging_root / f"{item.game_base}{local.path.suffix}"
    shutil.copy2(local.path, staged)

    log_event(logger, "INFO", "upload_started", game=item.game_base, rom_id=item.rom_id, source=str(local.path))
    try:
        uploaded = catalog.upload_save(item.rom_id, str(staged))
    finally:
        staged.unlink(missing_ok=True)

    # Not plain updated_at: a name token outranks it wherever saves are compared.
    stamp = authoritative_timestamp(uploaded)
    try:
        local.last_modified = restamp(local.path, stamp)
    except OSError as e:
        raise RuntimeError(f"restamp_failed: {e}") from e

    log_event(logger, "INFO", "upload_completed", game=item.game_base, save_id=uploaded.id, stamped=stamp.isoformat())
    return local


def download(item: SyncItem, catalog: SaveCatalog, layout: LibraryLayout) -> LocalSave:
    if item.remote is None:
        raise RuntimeError("cannot_download_without_remote_save")

    remote = item.remote
    dest_dir = resolve_destination_dir(item, layout)

    if item.local is not None:
        try:
            backup_save(item.local)
        except OSError as e:
            raise RuntimeError(f"backup_failed: {e}") from e

    log_event(logger, "INFO", "download_started", game=item.game_base, download_path=remote.download_path)
    try:
        data = catalog.download_save(remote.download_path)
    except Exception as e:
        raise RuntimeError(f"download_failed: {e}") from e

    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = dest_dir / f"{item.game_base}{remote.extension}"

    with tempfile.NamedTemporaryFile(dir=dest_dir, prefix=".", suffix=".part", delete=False) as tmp:
        tmp_path = Path(tmp.name)
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, dest)
    finally:
        tmp_path.unlink(missing_ok=True)

    stamp = authoritative_timestamp(remote)
    stored = restamp(dest, stamp)

    # Only drop the differently named old save once the new one is in place.
    if item.local is not None and item.local.path != dest:
        item.local.path.unlink(missing_ok=True)

    log_event(logger, "INFO", "download_completed", game=item.game_base, dest=str(dest), stamped=stamp.isoformat())
    return LocalSave(slug=item.slug, path=dest, last_modified=stored)


def execute_sync(
    item: SyncItem,
    catalog: SaveCatalog,
    layout: LibraryLayout,
    staging_dir: Optional[str] = None,
) -> Optional[LocalSave]:
    """Carry out one decided item. Returns the resulting local save, None for Skip."""
    if item.action == SyncAction.UPLOAD:
        return upload(item, catalog, staging_dir=staging_dir)
    if item.action == SyncAction.DOWNLOAD:
        return download(item, catalog, layout)
    return None
