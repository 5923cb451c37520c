from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from savesync.core.config import LibraryConfig


class Firmware(str, Enum):
    MUOS = "muos"
    NEXTUI = "nextui"


# (rom root, save root) used when the config leaves them empty.
DEFAULT_ROOTS: Dict[Firmware, Tuple[str, str]] = {
    Firmware.MUOS: ("/mnt/union/ROMS", "/run/muos/storage/save/file"),
    Firmware.NEXTUI: ("/mnt/SDCARD/Roms", "/mnt/SDCARD/Saves"),
}


@dataclass(frozen=True)
class LibraryLayout:
    """Where ROMs and saves live on this device, per platform slug.

    Resolved once at startup and handed to the scanner, matcher and executor.
    """

    firmware: Firmware
    rom_root: Path
    save_root: Path
    rom_directories: Dict[str, str] = field(default_factory=dict)
    save_directories: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, library: LibraryConfig) -> "LibraryLayout":
        firmware = Firmware(library.firmware)
        default_rom_root, default_save_root = DEFAULT_ROOTS[firmware]
        return cls(
            firmware=firmware,
            rom_root=Path(library.rom_directory or default_rom_root),
            save_root=Path(library.save_directory or default_save_root),
            rom_directories={slug: folder for slug, folder in library.rom_directories.items() if folder},
            save_directories={
                slug: tuple(f for f in folders if f)
                for slug, folders in library.save_directories.items()
            },
        )

    def slugs(self) -> List[str]:
        return sorted(self.rom_directories)

    def rom_dir(self, slug: str) -> Optional[Path]:
        folder = self.rom_directories.get(slug)
        if not folder:
            return None
        return self.rom_root / folder

    def save_dir_names(self, slug: str) -> List[str]:
        names = list(self.save_directories.get(slug, ()))
        # NextUI keeps exactly one save folder per platform.
        if self.firmware == Firmware.NEXTUI:
            return names[:1]
        return names

    def save_dirs(self, slug: str) -> List[Path]:
        return [self.save_root / name for name in self.save_dir_names(slug)]
