from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from savesync.core.logging_setup import log_event

from .decision import build_sync_item
from .layout import LibraryLayout
from .models import LocalRom, SaveCatalog, SyncItem
from .scanner import scan_all_roms

logger = logging.getLogger("matcher")


def match_catalog(
    catalog: SaveCatalog,
    local_roms: Dict[str, List[LocalRom]],
    covered: Optional[Set[str]] = None,
) -> int:
    """Attach remote identity and remote saves to local ROMs, matched by content hash.

    Platforms missing from the catalog, or whose listing fails, are skipped and
    their ROMs stay unmatched. Slugs whose remote listing succeeded are added
    to `covered` when given. Returns the number of matched ROMs.

    Raises whatever `catalog.list_platforms()` raises; without the platform
    list nothing can be matched.
    """
    platforms = {p.slug: p for p in catalog.list_platforms()}
    matched = 0

    for slug, roms in local_roms.items():
        platform = platforms.get(slug)
        if platform is None:
            log_event(logger, "WARNING", "remote_platform_missing", slug=slug, roms=len(roms))
            continue

        try:
            saves_by_rom = catalog.list_saves_by_platform(platform.id)
        except Exception as e:
            log_event(logger, "ERROR", "remote_saves_failed", slug=slug, platform_id=platform.id, error=str(e))
            continue

        try:
            remote_roms = catalog.list_roms(platform.id)
        except Exception as e:
            log_event(logger, "ERROR", "remote_roms_failed", slug=slug, platform_id=platform.id, error=str(e))
            continue

        by_hash = {}
        for remote in remote_roms:
            if remote.content_hash:
                by_hash.setdefault(remote.content_hash, remote)

        for rom in roms:
            if not rom.content_hash:
                continue
            remote = by_hash.get(rom.content_hash.lower())
            if remote is None:
                continue
            rom.rom_id = remote.id
            rom.rom_name = remote.name
            rom.remote_saves = list(saves_by_rom.get(remote.id, []))
            matched += 1

        if covered is not None:
            covered.add(slug)

        log_event(
            logger,
            "DEBUG",
            "platform_matched",
            slug=slug,
            platform_id=platform.id,
            local=len(roms),
            remote=len(remote_roms),
        )

    return matched


def plan_sync_items(local_roms: Dict[str, List[LocalRom]], layout: Optional[LibraryLayout] = None) -> List[SyncItem]:
    items: List[SyncItem] = []
    for slug in sorted(local_roms):
        choices = len(layout.save_dir_names(slug)) if layout is not None else 1
        for rom in local_roms[slug]:
            item = build_sync_item(rom, emulator_choices=choices)
            if item is not None:
                items.append(item)
    return items


@dataclass
class SyncPlan:
    items: List[SyncItem] = field(default_factory=list)
    # Platforms scanned locally and listed remotely without error.
    covered_slugs: Set[str] = field(default_factory=set)


def find_sync_plan(catalog: SaveCatalog, layout: LibraryLayout) -> SyncPlan:
    """Scan, match and decide. Skipped and unmatched ROMs are left out."""
    local_roms = scan_all_roms(layout)
    covered: Set[str] = set()
    matched = match_catalog(catalog, local_roms, covered)
    items = plan_sync_items(local_roms, layout)
    log_event(
        logger,
        "INFO",
        "sync_items_planned",
        local=sum(len(r) for r in local_roms.values()),
        matched=matched,
        items=len(items),
        covered=sorted(covered),
    )
    return SyncPlan(items=items, covered_slugs=covered)


def find_sync_items(catalog: SaveCatalog, layout: LibraryLayout) -> List[SyncItem]:
    return find_sync_plan(catalog, layout).items
