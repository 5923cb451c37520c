from .auto_sync import AutoSync, build_auto_sync
from .client import RommClient
from .layout import Firmware, LibraryLayout
from .matcher import find_sync_items

__all__ = ["AutoSync", "build_auto_sync", "Firmware", "LibraryLayout", "RommClient", "find_sync_items"]
