from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List
from urllib.parse import urljoin

import requests

from savesync.core.config import HostConfig
from savesync.core.logging_setup import log_event

from .models import RemotePlatform, RemoteRom, RemoteSave

logger = logging.getLogger("romm")

ENDPOINT_PLATFORMS = "/api/platforms"
ENDPOINT_ROMS = "/api/roms"
ENDPOINT_SAVES = "/api/saves"

ROM_PAGE_SIZE = 250


class RommClient:
    """Minimal RomM API client covering what save sync needs."""

    def __init__(self, host: HostConfig, session: requests.Session | None = None):
        self.host = host
        self.base_url = host.url()
        self.timeout = int(host.timeout_sec)
        self.download_timeout = int(host.download_timeout_sec)
        self.session = session or requests.Session()
        if host.username:
            self.session.auth = (host.username, host.password)

    def _url(self, path: str) -> str:
        return urljoin(self.base_url.rstrip("/") + "/", path.lstrip("/"))

    def _check(self, res: requests.Response, action: str) -> requests.Response:
        if res.status_code >= 400:
            detail = (res.text or "")[:200]
            raise RuntimeError(f"{action}_failed_status_{res.status_code}: {detail}")
        return res

    def _get_json(self, path: str, params: dict | None = None) -> Any:
        res = self.session.get(self._url(path), params=params, timeout=self.timeout)
        return self._check(res, "get").json()

    def list_platforms(self) -> List[RemotePlatform]:
        payload = self._get_json(ENDPOINT_PLATFORMS)
        return [RemotePlatform.model_validate(p) for p in payload or []]

    def list_roms(self, platform_id: int) -> List[RemoteRom]:
        roms: List[RemoteRom] = []
        offset = 0
        while True:
            payload = self._get_json(
                ENDPOINT_ROMS,
                params={"platform_id": platform_id, "limit": ROM_PAGE_SIZE, "offset": offset},
            )
            # Older servers return a bare list instead of a page object.
            if isinstance(payload, list):
                return [RemoteRom.model_validate(r) for r in payload]

            items = payload.get("items") or []
            roms.extend(RemoteRom.model_validate(r) for r in items)
            total = int(payload.get("total") or 0)
            offset += len(items)
            if not items or offset >= total:
                break
        log_event(logger, "DEBUG", "roms_listed", platform_id=platform_id, count=len(roms))
        return roms

    def list_saves_by_platform(self, platform_id: int) -> Dict[int, List[RemoteSave]]:
        payload = self._get_json(ENDPOINT_SAVES, params={"platform_id": platform_id})
        grouped: Dict[int, List[RemoteSave]] = {}
        for raw in payload or []:
            save = RemoteSave.model_validate(raw)
            grouped.setdefault(save.rom_id, []).append(save)
        return grouped

    def download_save(self, download_path: str) -> bytes:
        if not download_path:
            raise RuntimeError("download_path_missing")
        res = self.session.get(self._url(download_path), timeout=self.download_timeout)
        return self._check(res, "download").content

    def upload_save(self, rom_id: int, local_path: str) -> RemoteSave:
        path = Path(local_path)
        with path.open("rb") as f:
            res = self.session.post(
                self._url(ENDPOINT_SAVES),
                params={"rom_id": rom_id},
                files={"saveFile": (path.name, f, "application/octet-stream")},
                timeout=self.download_timeout,
            )
        payload = self._check(res, "upload").json()
        if not isinstance(payload, dict):
            raise RuntimeError("upload_unexpected_response")
        return RemoteSave.model_validate(payload)
