from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

PROJECT_ROOT = Path.cwd()
RUNTIME_DIR = PROJECT_ROOT / "runtime"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
DEFAULT_CONFIG_TEMPLATE_PATH = PROJECT_ROOT / "config.yaml.example"


class HostConfig(BaseModel):
    display_name: str = ""
    root_uri: str = "http://127.0.0.1"
    port: int = Field(default=0, ge=0, le=65535)
    username: str = ""
    password: str = ""
    timeout_sec: int = 30 * 60
    download_timeout_sec: int = 60 * 60

    def url(self) -> str:
        root = (self.root_uri or "").rstrip("/")
        if self.port:
            return f"{root}:{self.port}"
        return root

    def to_loggable(self) -> dict:
        return {
            "display_name": self.display_name,
            "root_uri": self.root_uri,
            "port": self.port,
            "username": self.username,
            "password": "*" * len(self.password),
        }


class LibraryConfig(BaseModel):
    firmware: Literal["muos", "nextui"] = "muos"
    # Empty means the firmware's default mount point.
    rom_directory: str = ""
    save_directory: str = ""
    # slug -> ROM folder name under rom_directory
    rom_directories: dict[str, str] = Field(default_factory=dict)
    # slug -> save folder names under save_directory; more than one means
    # several emulators can own saves for the platform.
    save_directories: dict[str, list[str]] = Field(default_factory=dict)


class SyncConfig(BaseModel):
    # 0 means disabled; positive values are seconds between scheduled runs.
    poll_interval_sec: int = Field(default=0, ge=0, le=86400)
    status_delay_sec: float = Field(default=0.4, ge=0, le=10)
    staging_dir: str = ""


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = str(RUNTIME_DIR / "savesync.log")


class AppConfig(BaseModel):
    host: HostConfig = Field(default_factory=HostConfig)
    library: LibraryConfig = Field(default_factory=LibraryConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    web_bind_host: str = "127.0.0.1"
    web_port: int = 8766


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    import yaml

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            try:
                template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        ensure_runtime_dirs(cfg)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path = DEFAULT_CONFIG_PATH):
    import yaml

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
