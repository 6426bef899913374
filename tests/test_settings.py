"""
Tests for the settings store and its debounced writer.
"""
import json
import time

from core.models import WorkspaceSettings
from core.settings import SettingsStore


class CountingStore(SettingsStore):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes = []

    def save(self, settings):
        self.writes.append(settings)
        return super().save(settings)


def sample_settings() -> WorkspaceSettings:
    return WorkspaceSettings(
        working_directory="/work/project",
        environment="staging",
        user="2",
        last_apk_installed="app-v2.apk",
        last_saved="2026-10-19T09:30:00",
    )


# ============= LOAD =============

def test_missing_file_gives_defaults(store):
    settings = store.load()
    assert settings == WorkspaceSettings()
    assert settings.working_directory is None
    assert settings.environment == "dev"
    assert settings.user == "1"


def test_malformed_file_gives_defaults(store):
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{not json", encoding="utf-8")
    assert store.load() == WorkspaceSettings()


def test_non_object_document_gives_defaults(store):
    store.path.parent.mkdir(parents=True)
    store.path.write_text("[1, 2, 3]", encoding="utf-8")
    assert store.load() == WorkspaceSettings()


def test_unknown_keys_ignored_and_missing_keys_default(store):
    store.path.parent.mkdir(parents=True)
    store.path.write_text(json.dumps({"workingDirectory": "/p", "theme": "dark"}), encoding="utf-8")

    settings = store.load()
    assert settings.working_directory == "/p"
    assert settings.environment == "dev"
    assert settings.last_apk_installed is None


# ============= SAVE =============

def test_round_trip(store):
    settings = sample_settings()
    assert store.save(settings)
    assert store.load() == settings


def test_document_uses_camel_case_keys(store):
    store.save(sample_settings())
    data = json.loads(store.path.read_text(encoding="utf-8"))
    assert set(data) == {"workingDirectory", "environment", "user", "lastApkInstalled", "lastSaved"}
    assert data["lastApkInstalled"] == "app-v2.apk"


def test_save_creates_parent_directory(tmp_path):
    store = SettingsStore(tmp_path / "a" / "b" / "settings.json")
    assert store.save(WorkspaceSettings(environment="prod"))
    assert store.path.exists()


def test_save_failure_is_reported_not_raised(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    store = SettingsStore(blocker / "settings.json")
    assert store.save(WorkspaceSettings()) is False


# ============= DEBOUNCE =============

def test_rapid_saves_collapse_into_one_write(tmp_path):
    store = CountingStore(tmp_path / "settings.json", debounce_seconds=0.1)
    for env in ["dev", "qa", "staging", "prod"]:
        store.schedule(WorkspaceSettings(environment=env))

    time.sleep(0.5)
    assert len(store.writes) == 1
    assert store.load().environment == "prod"


def test_flush_writes_pending_immediately(tmp_path):
    store = CountingStore(tmp_path / "settings.json", debounce_seconds=30)
    store.schedule(WorkspaceSettings(user="7"))
    assert store.has_pending

    assert store.flush()
    assert not store.has_pending
    assert len(store.writes) == 1
    assert store.load().user == "7"

    # Nothing left for the cancelled timer to write
    assert store.flush()
    assert len(store.writes) == 1


def test_close_flushes_and_stops_scheduling(tmp_path):
    store = CountingStore(tmp_path / "settings.json", debounce_seconds=30)
    store.schedule(WorkspaceSettings(environment="qa"))
    store.close()
    assert store.load().environment == "qa"

    store.schedule(WorkspaceSettings(environment="prod"))
    assert not store.has_pending
    assert store.load().environment == "qa"


class SlowStore(SettingsStore):
    """Holds up writes of one user value so a newer save can overtake it."""

    def __init__(self, *args, slow_user: str, **kwargs):
        super().__init__(*args, **kwargs)
        self.slow_user = slow_user

    def save(self, settings):
        if settings.user == self.slow_user:
            time.sleep(0.3)
        return super().save(settings)


def test_close_during_slow_timer_write_keeps_newest_value(tmp_path):
    store = SlowStore(tmp_path / "settings.json", debounce_seconds=0.05, slow_user="old")
    store.schedule(WorkspaceSettings(user="old"))
    time.sleep(0.1)

    store.schedule(WorkspaceSettings(user="new"))
    store.close()
    time.sleep(0.4)

    assert store.load().user == "new"


def test_stale_timer_value_not_written_after_flush(tmp_path):
    store = CountingStore(tmp_path / "settings.json", debounce_seconds=30)
    store.schedule(WorkspaceSettings(user="old"))
    stale = store._take_pending()
    store.schedule(WorkspaceSettings(user="new"))
    assert store.flush()

    assert store._write(*stale)
    assert [s.user for s in store.writes] == ["new"]
    assert store.load().user == "new"
