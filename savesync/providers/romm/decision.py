from __future__ import annotations

from typing import Optional, Sequence

from .models import LocalRom, LocalSave, RemoteSave, SyncAction, SyncItem
from .timestamps import authoritative_timestamp


def latest_remote_save(saves: Sequence[RemoteSave]) -> Optional[RemoteSave]:
    if not saves:
        return None
    return max(saves, key=authoritative_timestamp)


def decide_action(local: Optional[LocalSave], remote: Optional[RemoteSave]) -> SyncAction:
    """Pick the side that wins for one ROM; the newer save is authoritative."""
    if local is None and remote is None:
        return SyncAction.SKIP
    if remote is None:
        return SyncAction.UPLOAD
    if local is None:
        return SyncAction.DOWNLOAD

    remote_time = authoritative_timestamp(remote)
    if local.last_modified < remote_time:
        return SyncAction.DOWNLOAD
    if local.last_modified > remote_time:
        return SyncAction.UPLOAD
    return SyncAction.SKIP


def rom_sync_action(rom: LocalRom) -> SyncAction:
    return decide_action(rom.save_file, latest_remote_save(rom.remote_saves))


def build_sync_item(rom: LocalRom, emulator_choices: int = 1) -> Optional[SyncItem]:
    """Return the SyncItem for a matched ROM, or None when nothing needs doing."""
    if rom.rom_id is None:
        return None
    remote = latest_remote_save(rom.remote_saves)
    action = decide_action(rom.save_file, remote)
    if action == SyncAction.SKIP:
        return None
    return SyncItem(
        rom_id=rom.rom_id,
        slug=rom.slug,
        game_base=rom.game_base,
        action=action,
        local=rom.save_file,
        remote=remote,
        rom_name=rom.rom_name,
        emulator_choices=emulator_choices,
    )
