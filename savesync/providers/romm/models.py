from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RemotePlatform(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    slug: str
    name: str = ""


class RemoteRom(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int
    name: str = ""
    platform_id: int = 0
    # RomM exposes the content hash as `sha1_hash`.
    content_hash: str = Field(default="", alias="sha1_hash")

    @field_validator("content_hash", mode="before")
    @classmethod
    def _normalize_hash(cls, value):
        return (value or "").strip().lower()


class RemoteSave(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    rom_id: int
    file_name: str
    file_extension: str = ""
    download_path: str = ""
    updated_at: datetime
    emulator: str = ""

    @field_validator("updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def extension(self) -> str:
        """File extension with a leading dot, whatever form the server used."""
        ext = (self.file_extension or "").strip()
        if not ext:
            return Path(self.file_name).suffix
        return ext if ext.startswith(".") else f".{ext}"


class SaveCatalog(Protocol):
    """The remote operations the sync engine depends on."""

    def list_platforms(self) -> List[RemotePlatform]: ...

    def list_roms(self, platform_id: int) -> List[RemoteRom]: ...

    def list_saves_by_platform(self, platform_id: int) -> Dict[int, List[RemoteSave]]: ...

    def download_save(self, download_path: str) -> bytes: ...

    def upload_save(self, rom_id: int, local_path: str) -> RemoteSave: ...


@dataclass
class LocalSave:
    slug: str
    path: Path
    last_modified: datetime

    @property
    def stem(self) -> str:
        return self.path.stem


@dataclass
class LocalRom:
    slug: str
    path: Path
    file_name: str
    content_hash: str
    last_modified: datetime
    save_file: Optional[LocalSave] = None
    # Filled in by the catalog matcher.
    rom_id: Optional[int] = None
    rom_name: str = ""
    remote_saves: List[RemoteSave] = field(default_factory=list)

    @property
    def game_base(self) -> str:
        return Path(self.file_name).stem

    @property
    def matched(self) -> bool:
        return self.rom_id is not None


class SyncAction(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    SKIP = "skip"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    ALERT = "alert"
    CLEAN = "clean"


@dataclass
class SyncItem:
    rom_id: int
    slug: str
    game_base: str
    action: SyncAction
    local: Optional[LocalSave] = None
    remote: Optional[RemoteSave] = None
    rom_name: str = ""
    # Save subdirectory picked by a person when several emulators are mapped.
    selected_emulator: Optional[str] = None
    # Number of save subdirectories mapped for the platform at planning time.
    emulator_choices: int = 1

    @property
    def key(self) -> tuple[str, str]:
        return (self.game_base, self.slug)

    @property
    def display_name(self) -> str:
        return self.rom_name or self.game_base

    def needs_emulator_selection(self) -> bool:
        return (
            self.action == SyncAction.DOWNLOAD
            and self.local is None
            and not self.selected_emulator
            and self.emulator_choices > 1
        )

    def with_emulator(self, emulator: str) -> "SyncItem":
        return replace(self, selected_emulator=emulator)

    def to_dict(self) -> dict:
        return {
            "rom_id": self.rom_id,
            "rom_name": self.rom_name,
            "slug": self.slug,
            "game_base": self.game_base,
            "action": self.action.value,
            "local_path": str(self.local.path) if self.local else None,
            "local_modified": self.local.last_modified.isoformat() if self.local else None,
            "remote_save_id": self.remote.id if self.remote else None,
            "remote_file_name": self.remote.file_name if self.remote else None,
            "selected_emulator": self.selected_emulator,
        }


@dataclass
class SyncIssue:
    item: SyncItem
    needs_emulator: bool = False
    error_message: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return self.item.key

    def to_dict(self) -> dict:
        return {
            **self.item.to_dict(),
            "needs_emulator": self.needs_emulator,
            "error_message": self.error_message,
        }
