"""
Shared fixtures: throwaway workspaces, fake toolchain scripts, isolated stores.
"""
import os
from pathlib import Path

import pytest

from core.config import Toolchain
from core.session import Session
from core.settings import SettingsStore
from utils.history import RunHistory


class StubProbe:
    """Studio probe answering from a list; the last answer repeats."""

    def __init__(self, *answers: bool):
        self.answers = list(answers) or [False]
        self.calls = 0

    def is_running(self) -> bool:
        index = min(self.calls, len(self.answers) - 1)
        self.calls += 1
        return self.answers[index]

    def __call__(self) -> bool:
        return self.is_running()


@pytest.fixture
def make_script(tmp_path):
    """Write an executable /bin/sh script and return its path."""

    def _make(name: str, body: str, folder: Path = None) -> Path:
        folder = folder or (tmp_path / "bin")
        folder.mkdir(parents=True, exist_ok=True)
        script = folder / name
        script.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
        os.chmod(script, 0o755)
        return script

    return _make


@pytest.fixture
def workspace(tmp_path):
    """A valid Maestro project with one flow and one APK."""
    root = (tmp_path / "project").resolve()
    flows = root / ".maestro" / "flows" / "core"
    flows.mkdir(parents=True)
    (flows / "login.yaml").write_text("appId: com.example\n---\n- launchApp\n", encoding="utf-8")
    (root / "app-v2.apk").write_bytes(b"PK\x03\x04fake-apk")
    return root


@pytest.fixture
def store(tmp_path):
    return SettingsStore(tmp_path / "appdata" / "settings.json", debounce_seconds=0.05)


@pytest.fixture
def history(tmp_path):
    return RunHistory(tmp_path / "appdata" / "runs.jsonl")


@pytest.fixture
def toolchain(tmp_path, make_script):
    """Fake adb, flow runner and studio; the reset script lives in the workspace."""
    adb = make_script("adb", 'echo "adb $@"\necho Success')
    runner = make_script("npm", 'echo "runner $@ env=$TEST_ENV user=$TEST_USER"')
    maestro = make_script("maestro", 'echo "studio starting"\nsleep 30')
    return Toolchain(
        adb=str(adb),
        maestro=str(maestro),
        flow_runner=str(runner),
        flow_runner_args=["run", "test:flow"],
        reset_script="scripts/emulator-reset.sh",
        fallback_timeout=15,
        studio_startup_timeout=10,
        timeout_policy="unknown",
    )


@pytest.fixture
def make_session(toolchain, store, history):
    """Build a Session over the isolated store, history and fake toolchain."""
    sessions = []

    def _make(device_online: bool = False, probe=None, **overrides) -> Session:
        session = Session(
            toolchain=overrides.pop("toolchain", toolchain),
            store=overrides.pop("store", store),
            history=overrides.pop("history", history),
            probe=probe or StubProbe(False),
            device_check=lambda: device_online,
        )
        sessions.append(session)
        return session

    yield _make

    for session in sessions:
        session.stop_studio()
        session.close()
