import threading
from datetime import timedelta

from savesync.providers.romm.auto_sync import AutoSync
from savesync.providers.romm.models import SyncStatus

from conftest import T0, FakeCatalog, Library


class _BlockingCatalog(FakeCatalog):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def list_platforms(self):
        self.entered.set()
        self.release.wait(5)
        return super().list_platforms()


def _auto_sync(catalog: FakeCatalog, library: Library) -> AutoSync:
    return AutoSync(catalog, library.layout, host_label="test-host", staging_dir=str(library.save_root.parent / "staging"))


def _gba_rom(catalog: FakeCatalog, library: Library, name: str, rom_id: int, content: bytes):
    library.add_rom("gba", f"{name}.gba", content)
    catalog.add_rom(3, rom_id, content, name=name)


def test_wait_before_any_start_returns_immediately(catalog: FakeCatalog, library: Library):
    auto_sync = _auto_sync(catalog, library)
    assert auto_sync.wait(0) is True
    assert auto_sync.status == SyncStatus.IDLE
    assert auto_sync.is_running is False


def test_cycle_uploads_and_downloads_then_goes_clean(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA")
    catalog.add_platform(3, "gba")
    _gba_rom(catalog, library, "Pokemon", 42, b"pokemon")
    _gba_rom(catalog, library, "Zelda", 43, b"zelda")
    library.add_save("mGBA", "Pokemon.sav", b"local", modified=T0)
    library.add_save("mGBA", "Zelda.sav", b"old", modified=T0)
    catalog.add_save(43, "Zelda.sav", T0 + timedelta(minutes=1), data=b"new")
    auto_sync = _auto_sync(catalog, library)

    summary = auto_sync.run_once()

    assert summary is not None
    assert summary["host"] == "test-host"
    assert summary["planned"] == 2
    assert summary["uploaded"] == 1
    assert summary["downloaded"] == 1
    assert summary["failed"] == 0
    assert summary["status"] == "clean"
    assert auto_sync.status == SyncStatus.CLEAN
    assert auto_sync.has_issues is False
    assert auto_sync.show_button is False
    assert (library.save_root / "mGBA" / "Zelda.sav").read_bytes() == b"new"

    second = auto_sync.run_once()
    assert second is not None and second["planned"] == 0


def test_start_while_running_is_rejected(library: Library):
    catalog = _BlockingCatalog()
    auto_sync = _auto_sync(catalog, library)

    assert auto_sync.start() is True
    assert catalog.entered.wait(5)
    assert auto_sync.is_running is True
    assert auto_sync.start() is False
    assert auto_sync.wait(0) is False

    catalog.release.set()
    assert auto_sync.wait(5) is True
    assert auto_sync.is_running is False
    assert auto_sync.start() is True
    assert auto_sync.wait(5) is True


def test_emulator_choice_is_filed_as_issue_and_resolved(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA", "gpSP")
    catalog.add_platform(3, "gba")
    _gba_rom(catalog, library, "Pokemon", 42, b"pokemon")
    catalog.add_save(42, "Pokemon.sav", T0, data=b"remote")
    auto_sync = _auto_sync(catalog, library)

    summary = auto_sync.run_once()

    assert summary is not None and summary["needs_emulator"] == 1
    assert "download_save" not in catalog.calls
    [issue] = auto_sync.get_issues()
    assert issue.needs_emulator is True
    assert issue.key == ("Pokemon", "gba")
    assert auto_sync.status == SyncStatus.ALERT
    assert auto_sync.has_issues and auto_sync.show_button

    assert auto_sync.resolve_issue(issue) is False
    assert auto_sync.resolve_issue(issue, emulator="gpSP") is True

    assert (library.save_root / "gpSP" / "Pokemon.sav").read_bytes() == b"remote"
    assert auto_sync.get_issues() == []
    assert auto_sync.has_issues is False
    assert auto_sync.show_button is False
    assert auto_sync.status == SyncStatus.CLEAN


def test_failed_transfer_becomes_issue_and_cycle_continues(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA")
    catalog.add_platform(3, "gba")
    _gba_rom(catalog, library, "Pokemon", 42, b"pokemon")
    _gba_rom(catalog, library, "Zelda", 43, b"zelda")
    library.add_save("mGBA", "Pokemon.sav", modified=T0)
    catalog.add_save(43, "Zelda.sav", T0)
    catalog.errors["upload_save"] = RuntimeError("upload_failed_status_500: boom")
    auto_sync = _auto_sync(catalog, library)

    summary = auto_sync.run_once()

    assert summary is not None
    assert summary["failed"] == 1
    assert summary["downloaded"] == 1
    [issue] = auto_sync.get_issues()
    assert issue.key == ("Pokemon", "gba")
    assert issue.needs_emulator is False
    assert "upload_failed_status_500" in issue.error_message
    assert auto_sync.status == SyncStatus.ALERT

    del catalog.errors["upload_save"]
    assert auto_sync.resolve_issue(issue) is True
    assert auto_sync.status == SyncStatus.CLEAN


def test_failed_resolve_records_error(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA")
    catalog.add_platform(3, "gba")
    _gba_rom(catalog, library, "Pokemon", 42, b"pokemon")
    library.add_save("mGBA", "Pokemon.sav", modified=T0)
    catalog.errors["upload_save"] = RuntimeError("first")
    auto_sync = _auto_sync(catalog, library)
    auto_sync.run_once()
    [issue] = auto_sync.get_issues()

    catalog.errors["upload_save"] = RuntimeError("second")
    assert auto_sync.resolve_issue(issue) is False

    [current] = auto_sync.get_issues()
    assert current.error_message == "second"
    assert auto_sync.has_issues is True


def test_issue_list_is_a_copy_and_remove_is_by_key(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA", "gpSP")
    catalog.add_platform(3, "gba")
    _gba_rom(catalog, library, "Pokemon", 42, b"pokemon")
    _gba_rom(catalog, library, "Zelda", 43, b"zelda")
    catalog.add_save(42, "Pokemon.sav", T0)
    catalog.add_save(43, "Zelda.sav", T0)
    auto_sync = _auto_sync(catalog, library)
    auto_sync.run_once()

    issues = auto_sync.get_issues()
    assert len(issues) == 2
    issues.clear()
    assert len(auto_sync.get_issues()) == 2

    pokemon = auto_sync.find_issue("gba", "Pokemon")
    assert pokemon is not None
    assert auto_sync.remove_issue(pokemon) is True
    assert auto_sync.remove_issue(pokemon) is False
    assert auto_sync.has_issues is True

    zelda = auto_sync.find_issue("gba", "Zelda")
    assert zelda is not None
    assert auto_sync.remove_issue(zelda) is True
    assert auto_sync.has_issues is False
    assert auto_sync.show_button is False
    assert auto_sync.status == SyncStatus.CLEAN


def test_clear_issues_and_mark_complete(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA", "gpSP")
    catalog.add_platform(3, "gba")
    _gba_rom(catalog, library, "Pokemon", 42, b"pokemon")
    catalog.add_save(42, "Pokemon.sav", T0)
    auto_sync = _auto_sync(catalog, library)

    auto_sync.run_once()
    auto_sync.clear_issues()
    assert auto_sync.get_issues() == []
    assert auto_sync.status == SyncStatus.IDLE
    assert auto_sync.has_issues is False

    auto_sync.run_once()
    auto_sync.mark_complete()
    assert auto_sync.get_issues() == []
    assert auto_sync.status == SyncStatus.CLEAN
    assert auto_sync.show_button is False


def test_planning_failure_alerts_and_keeps_previous_issues(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA", "gpSP")
    catalog.add_platform(3, "gba")
    _gba_rom(catalog, library, "Pokemon", 42, b"pokemon")
    catalog.add_save(42, "Pokemon.sav", T0)
    auto_sync = _auto_sync(catalog, library)
    auto_sync.run_once()
    assert len(auto_sync.get_issues()) == 1

    catalog.errors["list_platforms"] = RuntimeError("get_failed_status_503: down")
    summary = auto_sync.run_once()

    assert summary is not None
    assert "get_failed_status_503" in summary["fatal_error"]
    assert summary["status"] == "alert"
    assert auto_sync.status == SyncStatus.ALERT
    assert auto_sync.has_issues and auto_sync.show_button
    assert len(auto_sync.get_issues()) == 1
    assert auto_sync.is_running is False


def test_platform_listing_failure_carries_issues_over(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA")
    library.map_platform("snes", "SFC", "Snes9x")
    catalog.add_platform(3, "gba")
    catalog.add_platform(4, "snes")
    _gba_rom(catalog, library, "Pokemon", 42, b"pokemon")
    library.add_save("mGBA", "Pokemon.sav", modified=T0)
    catalog.errors["upload_save"] = RuntimeError("upload_failed_status_500: boom")
    auto_sync = _auto_sync(catalog, library)
    auto_sync.run_once()
    assert len(auto_sync.get_issues()) == 1

    catalog.errors["list_saves_by_platform"] = RuntimeError("get_failed_status_502: gateway")
    summary = auto_sync.run_once()

    assert summary is not None
    assert summary["carried"] == 1
    assert summary["planned"] == 0
    [issue] = auto_sync.get_issues()
    assert issue.key == ("Pokemon", "gba")
    assert "upload_failed_status_500" in issue.error_message
    assert auto_sync.status == SyncStatus.ALERT
    assert auto_sync.has_issues and auto_sync.show_button

    del catalog.errors["list_saves_by_platform"]
    del catalog.errors["upload_save"]
    summary = auto_sync.run_once()

    assert summary is not None
    assert summary["uploaded"] == 1
    assert summary["carried"] == 0
    assert auto_sync.get_issues() == []
    assert auto_sync.status == SyncStatus.CLEAN


def test_issue_is_not_duplicated_when_found_again(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA", "gpSP")
    catalog.add_platform(3, "gba")
    _gba_rom(catalog, library, "Pokemon", 42, b"pokemon")
    catalog.add_save(42, "Pokemon.sav", T0)
    auto_sync = _auto_sync(catalog, library)

    auto_sync.run_once()
    summary = auto_sync.run_once()

    assert summary is not None and summary["carried"] == 0
    assert [i.key for i in auto_sync.get_issues()] == [("Pokemon", "gba")]


def test_resolve_rejects_unmapped_emulator_folder(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA", "gpSP")
    catalog.add_platform(3, "gba")
    _gba_rom(catalog, library, "Pokemon", 42, b"pokemon")
    catalog.add_save(42, "Pokemon.sav", T0, data=b"remote")
    auto_sync = _auto_sync(catalog, library)
    auto_sync.run_once()
    [issue] = auto_sync.get_issues()

    assert auto_sync.resolve_issue(issue, emulator="../escaped") is False
    assert auto_sync.resolve_issue(issue, emulator=str(library.save_root.parent / "elsewhere")) is False

    [current] = auto_sync.get_issues()
    assert current.error_message.startswith("emulator_not_mapped:gba")
    assert "download_save" not in catalog.calls
    assert not (library.save_root.parent / "escaped").exists()
    assert not (library.save_root.parent / "elsewhere").exists()


def test_unmatched_roms_never_become_issues(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA")
    catalog.add_platform(3, "gba")
    library.add_rom("gba", "Homebrew.gba", b"homebrew")
    library.add_save("mGBA", "Homebrew.sav")
    auto_sync = _auto_sync(catalog, library)

    summary = auto_sync.run_once()

    assert summary is not None and summary["planned"] == 0
    assert auto_sync.get_issues() == []
    assert auto_sync.status == SyncStatus.CLEAN


def test_dismiss_button_and_snapshot(catalog: FakeCatalog, library: Library):
    library.map_platform("gba", "GBA", "mGBA", "gpSP")
    catalog.add_platform(3, "gba")
    _gba_rom(catalog, library, "Pokemon", 42, b"pokemon")
    catalog.add_save(42, "Pokemon.sav", T0)
    auto_sync = _auto_sync(catalog, library)
    auto_sync.run_once()

    auto_sync.dismiss_button()
    snap = auto_sync.snapshot()

    assert snap["show_button"] is False
    assert snap["has_issues"] is True
    assert snap["issue_count"] == 1
    assert snap["status"] == "alert"
    assert snap["host"] == "test-host"
