from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from savesync.core.config import DEFAULT_CONFIG_PATH, load_config
from savesync.core.logging_setup import setup_logging
from savesync.providers.romm.auto_sync import build_auto_sync
from savesync.providers.romm.layout import LibraryLayout
from savesync.providers.romm.matcher import find_sync_items
from savesync.providers.romm.scanner import scan_all_roms

app = typer.Typer(add_completion=False)
console = Console()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _fail(error: Exception | str) -> None:
    _print_json({"ok": False, "error": str(error)})
    raise typer.Exit(2)


@app.command("config-show")
def config_show(path: Path = DEFAULT_CONFIG_PATH):
    """Show current config.yaml (password masked)."""
    cfg = load_config(path)
    data = cfg.model_dump()
    data["host"] = cfg.host.to_loggable()
    _print_json(data)


@app.command("config-validate")
def config_validate(
    path: Path = DEFAULT_CONFIG_PATH,
    strict: bool = typer.Option(False, "--strict", help="Return non-zero when validation fails."),
):
    """Validate config and on-device prerequisites."""
    out: dict[str, Any] = {
        "ok": True,
        "checked_at": _now_iso(),
        "config_path": str(path),
        "checks": {
            "config_exists": path.exists(),
            "host_configured": False,
            "credentials_configured": False,
            "rom_root_exists": False,
            "save_root_exists": False,
            "platforms_mapped": False,
            "web_port_valid": False,
        },
        "warnings": [],
        "errors": [],
    }

    try:
        cfg = load_config(path)
    except Exception as e:
        out["ok"] = False
        out["errors"].append(f"load_config_failed: {e}")
        _print_json(out)
        if strict:
            raise typer.Exit(2)
        return

    layout = LibraryLayout.from_config(cfg.library)
    checks = out["checks"]
    checks["host_configured"] = bool(cfg.host.root_uri.strip())
    checks["credentials_configured"] = bool(cfg.host.username and cfg.host.password)
    checks["rom_root_exists"] = layout.rom_root.is_dir()
    checks["save_root_exists"] = layout.save_root.is_dir()
    checks["platforms_mapped"] = bool(layout.slugs())
    checks["web_port_valid"] = 1 <= int(cfg.web_port) <= 65535

    if not checks["host_configured"]:
        out["errors"].append("host_root_uri_missing")
    if not checks["credentials_configured"]:
        out["warnings"].append("credentials_incomplete: username/password not fully configured")
    if not checks["rom_root_exists"]:
        out["errors"].append(f"rom_root_missing: {layout.rom_root}")
    if not checks["save_root_exists"]:
        out["warnings"].append(f"save_root_missing: {layout.save_root}")
    if not checks["platforms_mapped"]:
        out["errors"].append("no_platforms_mapped")
    if not checks["web_port_valid"]:
        out["errors"].append(f"web_port_out_of_range: {cfg.web_port}")
    for slug in layout.slugs():
        if not layout.save_dir_names(slug):
            out["warnings"].append(f"save_folder_unmapped: {slug}")

    out["ok"] = len(out["errors"]) == 0
    _print_json(out)
    if strict and not out["ok"]:
        raise typer.Exit(2)


@app.command()
def status():
    """Show host, library roots and mapped platforms."""
    cfg = load_config()
    layout = LibraryLayout.from_config(cfg.library)

    table = Table(title="romm-save-sync status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(DEFAULT_CONFIG_PATH))
    table.add_row("host", cfg.host.url())
    table.add_row("user", cfg.host.username or "(unset)")
    table.add_row("firmware", layout.firmware.value)
    table.add_row("rom_root", str(layout.rom_root))
    table.add_row("save_root", str(layout.save_root))
    table.add_row("platforms", ", ".join(layout.slugs()) or "(none)")
    poll_interval = int(cfg.sync.poll_interval_sec or 0)
    table.add_row("auto_sync", "on" if poll_interval > 0 else "off")
    table.add_row("log", cfg.logging.file)
    table.add_row("web", f"http://{cfg.web_bind_host}:{cfg.web_port}")
    console.print(table)


@app.command()
def scan(json_output: bool = typer.Option(False, "--json", help="Output as JSON.")):
    """List local ROMs with their content hash and paired save."""
    cfg = load_config()
    setup_logging(cfg.logging.level, cfg.logging.file)
    roms = scan_all_roms(LibraryLayout.from_config(cfg.library))

    if json_output:
        _print_json(
            {
                slug: [
                    {
                        "file_name": rom.file_name,
                        "path": str(rom.path),
                        "sha1": rom.content_hash,
                        "save": str(rom.save_file.path) if rom.save_file else None,
                    }
                    for rom in items
                ]
                for slug, items in roms.items()
            }
        )
        return

    table = Table(title="Local ROMs")
    table.add_column("Platform")
    table.add_column("ROM")
    table.add_column("SHA1")
    table.add_column("Save")
    for slug, items in sorted(roms.items()):
        for rom in items:
            table.add_row(
                slug,
                rom.file_name,
                rom.content_hash or "(hash failed)",
                rom.save_file.path.name if rom.save_file else "-",
            )
    console.print(table)


@app.command()
def plan(json_output: bool = typer.Option(False, "--json", help="Output as JSON.")):
    """Show what a sync would do, without transferring anything."""
    cfg = load_config()
    setup_logging(cfg.logging.level, cfg.logging.file)
    auto_sync = build_auto_sync(cfg)
    try:
        items = find_sync_items(auto_sync.catalog, auto_sync.layout)
    except Exception as e:
        _fail(e)

    if json_output:
        _print_json([{**item.to_dict(), "needs_emulator": item.needs_emulator_selection()} for item in items])
        return

    table = Table(title=f"Save sync plan ({auto_sync.host_label})")
    table.add_column("Platform")
    table.add_column("Game")
    table.add_column("Action")
    table.add_column("Note")
    for item in items:
        note = "select emulator" if item.needs_emulator_selection() else ""
        table.add_row(item.slug, item.display_name, item.action.value, note)
    console.print(table)


@app.command("run-once")
def run_once():
    """Run one full sync cycle and print summary JSON."""
    cfg = load_config()
    setup_logging(cfg.logging.level, cfg.logging.file)
    auto_sync = build_auto_sync(cfg)
    auto_sync.status_delay_sec = 0

    summary = auto_sync.run_once() or {}
    issues = auto_sync.get_issues()
    _print_json({**summary, "issues": [issue.to_dict() for issue in issues]})
    if summary.get("fatal_error") or issues:
        raise typer.Exit(2)


@app.command()
def serve():
    """Start the web API with the periodic sync scheduler."""
    from savesync.web.main import main as web_main

    web_main()


def main():
    app()


if __name__ == "__main__":
    main()
