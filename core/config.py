"""
Configuration and constants for Maestro Test Manager.

Every value can be overridden with a MAESTRO_TM_* environment variable.
"""
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List


def _env(name: str, default: str) -> str:
    return os.environ.get(f"MAESTRO_TM_{name}", default)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(f"MAESTRO_TM_{name}")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# External tools
ADB_BINARY = _env("ADB", shutil.which("adb") or "adb")
MAESTRO_BINARY = _env("MAESTRO", shutil.which("maestro") or "maestro")
FLOW_RUNNER_BINARY = _env("FLOW_RUNNER", shutil.which("npm") or "npm")
FLOW_RUNNER_SCRIPT = _env("FLOW_RUNNER_SCRIPT", "test:flow")

# Relative paths are resolved against the workspace root
EMULATOR_RESET_SCRIPT = _env("RESET_SCRIPT", "scripts/emulator-reset.sh")

# Workspace layout
FLOW_SUBDIR = (".maestro", "flows", "core")
FLOW_EXTENSIONS = (".yaml", ".yml")
PACKAGE_EXTENSIONS = (".apk",)

# adb install prints this on a successful install, exit code alone is not enough
INSTALL_SUCCESS_MARKER = "Success"

# Companion studio server
STUDIO_HOST = _env("STUDIO_HOST", "localhost")
STUDIO_PORT = int(_env("STUDIO_PORT", "9999"))
STUDIO_PATH = "/interact"
STUDIO_PROBE_TIMEOUT = _env_float("STUDIO_PROBE_TIMEOUT", 2.0)
STUDIO_STARTUP_TIMEOUT = _env_float("STUDIO_STARTUP_TIMEOUT", 60.0)

# Supervision
SUPERVISOR_FALLBACK_TIMEOUT = _env_float("FALLBACK_TIMEOUT", 300.0)  # 5 minutes
TIMEOUT_POLICY = _env("TIMEOUT_POLICY", "unknown")  # unknown | success | failure
PROGRESS_CHECK_INTERVAL = 0.2  # seconds between output reads / readiness checks
READ_CHUNK_SIZE = 4096
DEVICE_QUERY_TIMEOUT = 10

# Persistence
APP_DATA_DIR = Path(_env("HOME", str(Path.home() / ".maestro-test-manager")))
SETTINGS_FILE = APP_DATA_DIR / "settings.json"
HISTORY_FILE = APP_DATA_DIR / "runs.jsonl"
SETTINGS_DEBOUNCE_SECONDS = _env_float("SETTINGS_DEBOUNCE", 0.5)

DEFAULT_ENVIRONMENT = "dev"
DEFAULT_USER = "1"

LOG_LEVEL = _env("LOG_LEVEL", "INFO")


@dataclass
class Toolchain:
    """External commands and limits used by a session."""
    adb: str = ADB_BINARY
    maestro: str = MAESTRO_BINARY
    flow_runner: str = FLOW_RUNNER_BINARY
    flow_runner_args: List[str] = field(default_factory=lambda: ["run", FLOW_RUNNER_SCRIPT])
    reset_script: str = EMULATOR_RESET_SCRIPT
    studio_host: str = STUDIO_HOST
    studio_port: int = STUDIO_PORT
    studio_probe_timeout: float = STUDIO_PROBE_TIMEOUT
    studio_startup_timeout: float = STUDIO_STARTUP_TIMEOUT
    fallback_timeout: float = SUPERVISOR_FALLBACK_TIMEOUT
    timeout_policy: str = TIMEOUT_POLICY

    @property
    def studio_url(self) -> str:
        return f"http://{self.studio_host}:{self.studio_port}{STUDIO_PATH}"

    def resolve_reset_script(self, workspace: Path) -> Path:
        script = Path(self.reset_script).expanduser()
        if script.is_absolute():
            return script
        return workspace / script
