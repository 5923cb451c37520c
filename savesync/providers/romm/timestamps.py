"""Timestamp handling shared by the decision engine and the executor.

Remote saves may embed a timestamp in their file name, e.g.
``Pokemon [2024-03-01 10-30-00-000].sav``. The embedded value is preferred over
the server's ``updated_at`` because it survives re-uploads and server clock
drift. The same layout is used to name local backups.
"""

from __future__ import annotations

import os
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from .models import RemoteSave

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

TOKEN_RE = re.compile(r"\[([^\[\]]*)\]")
TOKEN_LAYOUT_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2}) (\d{2})-(\d{2})-(\d{2})-(\d{3})$"
)


def parse_timestamp_token(file_name: str) -> Optional[datetime]:
    """Return the UTC time encoded in a ``[YYYY-MM-DD HH-MM-SS-mmm]`` token.

    Tokens are tried from the right so region/revision tags earlier in the
    name do not shadow the timestamp. Returns None when no token parses.
    """
    for raw in reversed(TOKEN_RE.findall(file_name or "")):
        match = TOKEN_LAYOUT_RE.match(raw.strip())
        if not match:
            continue
        year, month, day, hour, minute, second, millis = (int(p) for p in match.groups())
        try:
            return datetime(
                year, month, day, hour, minute, second, millis * 1000, tzinfo=timezone.utc
            )
        except ValueError:
            continue
    return None


def authoritative_timestamp(save: RemoteSave) -> datetime:
    parsed = parse_timestamp_token(save.file_name)
    if parsed is not None:
        return parsed
    return save.updated_at


def format_backup_timestamp(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    stamp = f"{value.strftime('%Y-%m-%d %H-%M-%S')}-{value.microsecond // 1000:03d}"
    return stamp.replace(":", "-")


def from_mtime_ns(mtime_ns: int) -> datetime:
    # Truncate to microseconds so values round-trip through datetime.
    return EPOCH + timedelta(microseconds=mtime_ns // 1000)


def file_modified_at(path: Path) -> datetime:
    return from_mtime_ns(path.stat().st_mtime_ns)


def set_file_modified_at(path: Path, value: datetime):
    micros = (value.astimezone(timezone.utc) - EPOCH) // timedelta(microseconds=1)
    ns = micros * 1000
    os.utime(path, ns=(ns, ns))
