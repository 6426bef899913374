"""
Data models and enums for Maestro Test Manager.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import DEFAULT_ENVIRONMENT, DEFAULT_USER


class RunStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    UNKNOWN = "unknown"


class TimeoutPolicy(Enum):
    """What a supervised operation reports when the fallback timeout fires."""
    UNKNOWN = "unknown"
    SUCCESS = "success"
    FAILURE = "failure"

    @classmethod
    def parse(cls, value) -> "TimeoutPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class DeviceMode(Enum):
    ONLINE = "device"
    OFFLINE = "offline"
    UNAUTHORIZED = "unauthorized"
    RECOVERY = "recovery"
    SIDELOAD = "sideload"
    UNKNOWN = "unknown"


@dataclass
class DeviceInfo:
    """A device or emulator reported by adb."""
    serial: str
    mode: DeviceMode
    product: Optional[str] = None
    model: Optional[str] = None
    device: Optional[str] = None
    transport_id: Optional[str] = None


# camelCase keys of the settings document
_SETTINGS_KEYS = {
    "working_directory": "workingDirectory",
    "environment": "environment",
    "user": "user",
    "last_apk_installed": "lastApkInstalled",
    "last_saved": "lastSaved",
}


@dataclass
class WorkspaceSettings:
    """The persisted settings document. Replaced wholesale on every change."""
    working_directory: Optional[str] = None
    environment: str = DEFAULT_ENVIRONMENT
    user: str = DEFAULT_USER
    last_apk_installed: Optional[str] = None
    last_saved: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {key: getattr(self, attr) for attr, key in _SETTINGS_KEYS.items()}

    @classmethod
    def from_dict(cls, data: dict) -> "WorkspaceSettings":
        """Build from a settings document. Unknown keys are ignored."""
        settings = cls()
        if not isinstance(data, dict):
            return settings
        for attr, key in _SETTINGS_KEYS.items():
            value = data.get(key)
            if value is None:
                continue
            setattr(settings, attr, str(value))
        return settings


@dataclass(frozen=True)
class FileDescriptor:
    """A flow file or package archive found in a workspace."""
    name: str
    absolute_path: str
    relative_path: str
    last_modified: datetime
    size_bytes: int

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "absolutePath": self.absolute_path,
            "relativePath": self.relative_path,
            "lastModified": self.last_modified.isoformat(timespec="seconds"),
            "sizeBytes": self.size_bytes,
        }


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    message: str


@dataclass(frozen=True)
class ScanResult:
    tests: List[FileDescriptor] = field(default_factory=list)
    packages: List[FileDescriptor] = field(default_factory=list)
    message: str = ""


@dataclass(frozen=True)
class SubprocessResult:
    """Outcome of one supervised invocation. Produced exactly once."""
    success: bool
    output: str
    error: Optional[str] = None
    exit_code: Optional[int] = None
    status: RunStatus = RunStatus.FAILED
    timed_out: bool = False
    duration: float = 0.0

    @classmethod
    def failed(cls, error: str, output: str = "", exit_code: Optional[int] = None,
               duration: float = 0.0) -> "SubprocessResult":
        return cls(success=False, output=output, error=error, exit_code=exit_code,
                   status=RunStatus.FAILED, duration=duration)


@dataclass
class CommandSpec:
    """One external command to supervise."""
    name: str
    command: str
    args: List[str] = field(default_factory=list)
    cwd: Optional[Path] = None
    env: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    timeout_policy: TimeoutPolicy = TimeoutPolicy.UNKNOWN
    success_marker: Optional[str] = None
    # Polled while the process runs; True resolves success and leaves it running
    ready_check: Optional[Callable[[], bool]] = None

    def display(self) -> str:
        return " ".join([self.command] + [str(a) for a in self.args])


@dataclass(frozen=True)
class OutputChunk:
    """A piece of process output, in receipt order."""
    text: str


@dataclass(frozen=True)
class Completed:
    """Terminal event of a supervised operation."""
    result: SubprocessResult
