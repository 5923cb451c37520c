import hashlib
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from savesync.providers.romm.layout import Firmware, LibraryLayout
from savesync.providers.romm.models import RemotePlatform, RemoteRom, RemoteSave
from savesync.providers.romm.timestamps import set_file_modified_at

T0 = datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)


class FakeCatalog:
    """In-memory stand-in for the RomM server."""

    def __init__(self):
        self.platforms: list[RemotePlatform] = []
        self.roms: dict[int, list[RemoteRom]] = {}
        self.saves: dict[int, list[RemoteSave]] = {}
        self.blobs: dict[str, bytes] = {}
        self.uploads: list[tuple[int, str, bytes]] = []
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []
        self.clock = T0 + timedelta(hours=1)
        self._next_id = 1000

    def _maybe_fail(self, op: str):
        self.calls.append(op)
        err = self.errors.get(op)
        if err is not None:
            raise err

    def add_platform(self, platform_id: int, slug: str, name: str = "") -> RemotePlatform:
        platform = RemotePlatform(id=platform_id, slug=slug, name=name or slug)
        self.platforms.append(platform)
        return platform

    def add_rom(self, platform_id: int, rom_id: int, content: bytes, name: str = "") -> RemoteRom:
        rom = RemoteRom(
            id=rom_id,
            name=name or f"rom-{rom_id}",
            platform_id=platform_id,
            sha1_hash=hashlib.sha1(content).hexdigest(),
        )
        self.roms.setdefault(platform_id, []).append(rom)
        return rom

    def add_save(self, rom_id: int, file_name: str, updated_at: datetime, data: bytes = b"remote") -> RemoteSave:
        self._next_id += 1
        save = RemoteSave(
            id=self._next_id,
            rom_id=rom_id,
            file_name=file_name,
            file_extension=Path(file_name).suffix.lstrip("."),
            download_path=f"/api/saves/{self._next_id}/content",
            updated_at=updated_at,
        )
        self.saves.setdefault(self._platform_of(rom_id), []).append(save)
        self.blobs[save.download_path] = data
        return save

    def _platform_of(self, rom_id: int) -> int:
        for platform_id, roms in self.roms.items():
            if any(r.id == rom_id for r in roms):
                return platform_id
        raise KeyError(rom_id)

    def list_platforms(self):
        self._maybe_fail("list_platforms")
        return list(self.platforms)

    def list_roms(self, platform_id: int):
        self._maybe_fail("list_roms")
        return list(self.roms.get(platform_id, []))

    def list_saves_by_platform(self, platform_id: int):
        self._maybe_fail("list_saves_by_platform")
        grouped: dict[int, list[RemoteSave]] = {}
        for save in self.saves.get(platform_id, []):
            grouped.setdefault(save.rom_id, []).append(save)
        return grouped

    def download_save(self, download_path: str) -> bytes:
        self._maybe_fail("download_save")
        return self.blobs[download_path]

    def upload_save(self, rom_id: int, local_path: str) -> RemoteSave:
        self._maybe_fail("upload_save")
        path = Path(local_path)
        data = path.read_bytes()
        self.uploads.append((rom_id, path.name, data))
        self.clock += timedelta(minutes=5)
        return self.add_save(rom_id, path.name, self.clock, data)


class Library:
    """Builds ROM and save folders under a temp dir."""

    def __init__(self, root: Path, firmware: Firmware = Firmware.MUOS):
        self.rom_root = root / "roms"
        self.save_root = root / "saves"
        self.rom_root.mkdir()
        self.save_root.mkdir()
        self.firmware = firmware
        self.rom_directories: dict[str, str] = {}
        self.save_directories: dict[str, tuple[str, ...]] = {}

    @property
    def layout(self) -> LibraryLayout:
        return LibraryLayout(
            firmware=self.firmware,
            rom_root=self.rom_root,
            save_root=self.save_root,
            rom_directories=dict(self.rom_directories),
            save_directories=dict(self.save_directories),
        )

    def map_platform(self, slug: str, rom_folder: str, *save_folders: str):
        self.rom_directories[slug] = rom_folder
        self.save_directories[slug] = tuple(save_folders)
        (self.rom_root / rom_folder).mkdir(parents=True, exist_ok=True)

    def add_rom(self, slug: str, file_name: str, content: bytes) -> Path:
        path = self.rom_root / self.rom_directories[slug] / file_name
        path.write_bytes(content)
        return path

    def add_save(self, folder: str, file_name: str, data: bytes = b"local", modified: datetime = T0) -> Path:
        path = self.save_root / folder / file_name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        set_file_modified_at(path, modified)
        return path


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def library(tmp_path: Path) -> Library:
    return Library(tmp_path)
