from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from savesync.core.logging_setup import log_event

from .layout import LibraryLayout
from .models import LocalRom, LocalSave
from .timestamps import from_mtime_ns

logger = logging.getLogger("scanner")

SKIP_EXTENSIONS = (
    ".txt", ".nfo", ".diz", ".db",
    ".ini", ".cfg", ".conf",
    ".jpg", ".jpeg", ".png", ".gif", ".bmp",
    ".m3u",
    ".cue",
    ".srm", ".sav", ".state",
)

SKIP_NAMES = {"desktop.ini", "thumbs.db", ".ds_store"}


def sha1_file(path: Path) -> str:
    h = hashlib.sha1()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 64), b""):
            h.update(chunk)
    return h.hexdigest()


def should_skip_file(filename: str) -> bool:
    lower = filename.lower()
    if lower in SKIP_NAMES:
        return True
    return lower.endswith(SKIP_EXTENSIONS)


def _list_visible_files(directory: Path) -> List[os.DirEntry]:
    with os.scandir(directory) as it:
        entries = [e for e in it if not e.name.startswith(".") and e.is_file()]
    entries.sort(key=lambda e: e.name)
    return entries


def find_save_files(slug: str, layout: LibraryLayout) -> List[LocalSave]:
    """List save files for a platform across all of its mapped save folders.

    No mapping or no folder on disk is a normal state and yields an empty list.
    """
    save_dirs = layout.save_dirs(slug)
    if not save_dirs:
        log_event(logger, "DEBUG", "save_folder_unmapped", slug=slug)
        return []

    saves: List[LocalSave] = []
    for save_dir in save_dirs:
        if not save_dir.is_dir():
            log_event(logger, "DEBUG", "save_dir_missing", slug=slug, path=str(save_dir))
            continue
        try:
            entries = _list_visible_files(save_dir)
        except OSError as e:
            log_event(logger, "ERROR", "save_dir_read_failed", path=str(save_dir), error=str(e))
            continue

        for entry in entries:
            try:
                st = entry.stat()
            except OSError as e:
                log_event(logger, "WARNING", "save_stat_failed", path=entry.path, error=str(e))
                continue
            saves.append(
                LocalSave(
                    slug=slug,
                    path=Path(entry.path),
                    last_modified=from_mtime_ns(st.st_mtime_ns),
                )
            )

    log_event(logger, "DEBUG", "save_files_found", slug=slug, count=len(saves))
    return saves


def scan_rom_directory(slug: str, rom_dir: Path, saves_by_stem: Dict[str, LocalSave]) -> List[LocalRom]:
    try:
        entries = _list_visible_files(rom_dir)
    except OSError as e:
        log_event(logger, "ERROR", "rom_dir_read_failed", slug=slug, path=str(rom_dir), error=str(e))
        return []

    roms: List[LocalRom] = []
    for entry in entries:
        if should_skip_file(entry.name):
            continue
        rom_path = Path(entry.path)
        try:
            st = entry.stat()
        except OSError as e:
            log_event(logger, "WARNING", "rom_stat_failed", path=entry.path, error=str(e))
            continue

        try:
            content_hash = sha1_file(rom_path)
        except OSError as e:
            # Still listed; an empty hash simply never matches the catalog.
            content_hash = ""
            log_event(logger, "WARNING", "rom_hash_failed", path=entry.path, error=str(e))

        roms.append(
            LocalRom(
                slug=slug,
                path=rom_path,
                file_name=entry.name,
                content_hash=content_hash,
                last_modified=from_mtime_ns(st.st_mtime_ns),
                save_file=saves_by_stem.get(rom_path.stem),
            )
        )
    return roms


def scan_all_roms(layout: LibraryLayout, slugs: Optional[Iterable[str]] = None) -> Dict[str, List[LocalRom]]:
    """Scan every mapped platform folder and pair ROMs with their local saves.

    Returns slug -> ROMs, only for platforms where at least one ROM was found.
    """
    result: Dict[str, List[LocalRom]] = {}
    wanted = list(slugs) if slugs is not None else layout.slugs()
    log_event(logger, "DEBUG", "rom_scan_started", root=str(layout.rom_root), platforms=len(wanted))

    for slug in wanted:
        rom_dir = layout.rom_dir(slug)
        if rom_dir is None:
            log_event(logger, "DEBUG", "rom_folder_unmapped", slug=slug)
            continue
        if not rom_dir.is_dir():
            log_event(logger, "DEBUG", "rom_dir_missing", slug=slug, path=str(rom_dir))
            continue

        saves_by_stem = {save.stem: save for save in find_save_files(slug, layout)}
        roms = scan_rom_directory(slug, rom_dir, saves_by_stem)
        if roms:
            result[slug] = roms
            log_event(logger, "DEBUG", "roms_found", slug=slug, count=len(roms))

    total = sum(len(roms) for roms in result.values())
    log_event(logger, "INFO", "rom_scan_completed", platforms=len(result), roms=total)
    return result


def emulator_directories_with_status(slug: str, layout: LibraryLayout) -> List[dict]:
    """Describe each save folder a platform maps to; the first is the default."""
    out = []
    for name, path in zip(layout.save_dir_names(slug), layout.save_dirs(slug)):
        exists = path.is_dir()
        count = 0
        if exists:
            try:
                count = len(_list_visible_files(path))
            except OSError as e:
                log_event(logger, "WARNING", "save_dir_read_failed", path=str(path), error=str(e))
        out.append(
            {
                "directory_name": name,
                "path": str(path),
                "exists": exists,
                "has_saves": count > 0,
                "save_count": count,
            }
        )
    return out
