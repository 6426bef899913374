"""
Core module for Maestro Test Manager.
Contains models, configuration, settings, scanner, supervisor, probe and session.
"""
from .models import (
    RunStatus, TimeoutPolicy, DeviceMode, DeviceInfo, WorkspaceSettings,
    FileDescriptor, ValidationResult, ScanResult, SubprocessResult,
    CommandSpec, OutputChunk, Completed,
)
from .config import (
    ADB_BINARY, MAESTRO_BINARY, FLOW_RUNNER_BINARY, EMULATOR_RESET_SCRIPT,
    FLOW_SUBDIR, FLOW_EXTENSIONS, PACKAGE_EXTENSIONS, INSTALL_SUCCESS_MARKER,
    STUDIO_PORT, STUDIO_PATH, SUPERVISOR_FALLBACK_TIMEOUT, SETTINGS_FILE,
    Toolchain,
)
from .settings import SettingsStore
from .scanner import validate_workspace, scan_workspace
from .supervisor import Supervisor, Resolution
from .probe import StudioProbe
from .session import Session

__all__ = [
    # Models
    "RunStatus",
    "TimeoutPolicy",
    "DeviceMode",
    "DeviceInfo",
    "WorkspaceSettings",
    "FileDescriptor",
    "ValidationResult",
    "ScanResult",
    "SubprocessResult",
    "CommandSpec",
    "OutputChunk",
    "Completed",
    # Config
    "ADB_BINARY",
    "MAESTRO_BINARY",
    "FLOW_RUNNER_BINARY",
    "EMULATOR_RESET_SCRIPT",
    "FLOW_SUBDIR",
    "FLOW_EXTENSIONS",
    "PACKAGE_EXTENSIONS",
    "INSTALL_SUCCESS_MARKER",
    "STUDIO_PORT",
    "STUDIO_PATH",
    "SUPERVISOR_FALLBACK_TIMEOUT",
    "SETTINGS_FILE",
    "Toolchain",
    # Classes
    "SettingsStore",
    "Supervisor",
    "Resolution",
    "StudioProbe",
    "Session",
    # Functions
    "validate_workspace",
    "scan_workspace",
]
