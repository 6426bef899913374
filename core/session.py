"""
Session: the explicit context every handler works on.

Owns the settings document, the current workspace file lists and the single
supervised-operation slot. All failures come back as result objects.
"""
import dataclasses
import logging
import threading
import webbrowser
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from utils.history import RunHistory

from .config import HISTORY_FILE, INSTALL_SUCCESS_MARKER, DEFAULT_ENVIRONMENT, DEFAULT_USER, Toolchain
from .devices import has_online_device, list_devices
from .models import (
    CommandSpec, DeviceInfo, FileDescriptor, RunStatus, ScanResult, SubprocessResult,
    TimeoutPolicy, ValidationResult, WorkspaceSettings,
)
from .probe import StudioProbe
from .scanner import scan_workspace, validate_workspace
from .settings import SettingsStore
from .supervisor import Supervisor

logger = logging.getLogger(__name__)

OutputCallback = Optional[Callable[[str], None]]

STUDIO_PROCESS = "studio"


class Session:
    """
    One workspace, one settings document, one in-flight supervised operation.
    """

    def __init__(
        self,
        toolchain: Optional[Toolchain] = None,
        store: Optional[SettingsStore] = None,
        history: Optional[RunHistory] = None,
        probe: Optional[StudioProbe] = None,
        supervisor: Optional[Supervisor] = None,
        device_check: Optional[Callable[[], bool]] = None,
    ):
        self.toolchain = toolchain or Toolchain()
        self.store = store or SettingsStore()
        self.history = history or RunHistory(HISTORY_FILE)
        self.probe = probe or StudioProbe(self.toolchain.studio_url, self.toolchain.studio_probe_timeout)
        self.supervisor = supervisor or Supervisor()
        self._device_check = device_check or (lambda: has_online_device(self.toolchain.adb))

        self.tests: List[FileDescriptor] = []
        self.packages: List[FileDescriptor] = []
        self.scan_message = ""
        self._workspace: Optional[Path] = None

        self._busy = threading.Lock()
        self._current_operation: Optional[str] = None
        self._state_lock = threading.Lock()

        self.settings = self.store.load()
        if self.settings.working_directory:
            self._restore_workspace(self.settings.working_directory)

    # ==================== Workspace ====================

    @property
    def workspace(self) -> Optional[Path]:
        """The current workspace root, set only once it validated."""
        return self._workspace

    @property
    def busy_with(self) -> Optional[str]:
        return self._current_operation

    def _restore_workspace(self, path: str) -> None:
        validation = validate_workspace(path)
        if not validation.valid:
            logger.warning("Saved workspace %s is no longer valid: %s", path, validation.message)
            self.scan_message = validation.message
            return
        self._workspace = Path(path)
        self._apply_scan(scan_workspace(self._workspace))

    def _apply_scan(self, result: ScanResult) -> ScanResult:
        with self._state_lock:
            self.tests = list(result.tests)
            self.packages = list(result.packages)
            self.scan_message = result.message
        return result

    def select_workspace(self, path) -> ValidationResult:
        """Validate path and, when valid, make it the workspace and scan it."""
        validation = validate_workspace(path)
        if not validation.valid:
            logger.info("Rejected workspace %s: %s", path, validation.message)
            return validation
        root = Path(path).expanduser().resolve()
        self._workspace = root
        self._apply_scan(scan_workspace(root))
        self._update_settings(working_directory=str(root))
        logger.info("Workspace set to %s", root)
        return validation

    def refresh(self) -> ScanResult:
        """Re-scan the current workspace. Validation runs first."""
        if self._workspace is None:
            return ScanResult(message="No workspace selected.")
        validation = validate_workspace(self._workspace)
        if not validation.valid:
            self._workspace = None
            return self._apply_scan(ScanResult(message=validation.message))
        return self._apply_scan(scan_workspace(self._workspace))

    def clear_workspace(self) -> None:
        self._workspace = None
        self._apply_scan(ScanResult(message="Workspace cleared."))
        self._update_settings(working_directory=None, environment=DEFAULT_ENVIRONMENT, user=DEFAULT_USER)

    # ==================== Settings ====================

    def _update_settings(self, **changes) -> WorkspaceSettings:
        """Replace the settings document and schedule a debounced save."""
        with self._state_lock:
            changes["last_saved"] = datetime.now().isoformat(timespec="seconds")
            self.settings = dataclasses.replace(self.settings, **changes)
            settings = self.settings
        self.store.schedule(settings)
        return settings

    def set_environment(self, environment: str) -> WorkspaceSettings:
        environment = (environment or "").strip()
        if not environment:
            raise ValueError("environment must not be empty")
        return self._update_settings(environment=environment)

    def set_user(self, user: str) -> WorkspaceSettings:
        user = str(user or "").strip()
        if not user:
            raise ValueError("user must not be empty")
        return self._update_settings(user=user)

    # ==================== Devices ====================

    def list_devices(self) -> List[DeviceInfo]:
        return list_devices(self.toolchain.adb)

    # ==================== Supervised operations ====================

    def _exclusive(self, name: str, operation: Callable[[], SubprocessResult]) -> SubprocessResult:
        """Run operation unless another supervised operation is in flight."""
        if not self._busy.acquire(blocking=False):
            logger.warning("Refusing %s: %s is still running", name, self._current_operation)
            return SubprocessResult.failed(f"Another operation is in progress: {self._current_operation}")
        self._current_operation = name
        try:
            return operation()
        finally:
            self._current_operation = None
            self._busy.release()

    def _spec(self, name: str, command: str, args: List[str], cwd: Optional[Path],
              **extra) -> CommandSpec:
        extra.setdefault("timeout", self.toolchain.fallback_timeout)
        extra.setdefault("timeout_policy", TimeoutPolicy.parse(self.toolchain.timeout_policy))
        return CommandSpec(name=name, command=command, args=args, cwd=cwd, **extra)

    def _reset_spec(self, args: List[str]):
        """CommandSpec for the emulator reset script, or a failed result."""
        script = Path(self.toolchain.reset_script).expanduser()
        if not script.is_absolute():
            if self._workspace is None:
                return SubprocessResult.failed("No workspace selected. Select a directory first.")
            script = self.toolchain.resolve_reset_script(self._workspace)
        if not script.is_file():
            return SubprocessResult.failed(f"Emulator reset script not found: {script}")
        cwd = self._workspace or script.parent
        return self._spec("emulator-reset", str(script), args, cwd)

    def restart_emulator(self, on_output: OutputCallback = None) -> SubprocessResult:
        """Run the emulator reset script with no arguments."""
        spec = self._reset_spec([])
        if isinstance(spec, SubprocessResult):
            return spec
        return self._exclusive(spec.name, lambda: self.supervisor.run(spec, on_output))

    def _resolve_package(self, package: str) -> Optional[Path]:
        for descriptor in self.packages:
            if package in (descriptor.name, descriptor.relative_path):
                return Path(descriptor.absolute_path)
        path = Path(package).expanduser()
        if not path.is_absolute() and self._workspace is not None:
            path = self._workspace / path
        return path if path.is_file() else None

    def install_package(self, package: str, on_output: OutputCallback = None) -> SubprocessResult:
        """
        Install an APK on the running device.

        With no online device the reset script gets the APK path and does the
        install after booting the emulator; the result is the script's.
        """
        apk = self._resolve_package(package)
        if apk is None:
            return SubprocessResult.failed(f"Package not found: {package}")

        def install() -> SubprocessResult:
            if self._device_check():
                spec = self._spec("package-install", self.toolchain.adb, ["install", str(apk)],
                                  self._workspace or apk.parent, success_marker=INSTALL_SUCCESS_MARKER)
            else:
                logger.info("No device detected, delegating install of %s to the reset script", apk.name)
                spec = self._reset_spec([str(apk)])
                if isinstance(spec, SubprocessResult):
                    return spec
                if on_output is not None:
                    on_output(f"No device detected. Restarting emulator to install {apk.name}\n")
            return self.supervisor.run(spec, on_output)

        result = self._exclusive("package-install", install)
        if result.success:
            self._update_settings(last_apk_installed=apk.name)
        return result

    def _find_test(self, name: str) -> Optional[FileDescriptor]:
        for descriptor in self.tests:
            if name in (descriptor.name, descriptor.relative_path):
                return descriptor
        return None

    def run_flow(self, name: str, on_output: OutputCallback = None) -> SubprocessResult:
        """Run one flow file through the package-script runner."""
        if self._workspace is None:
            return SubprocessResult.failed("No workspace selected. Select a directory first.")
        test = self._find_test(name)
        if test is None:
            return SubprocessResult.failed(f"Flow not found: {name}")

        settings = self.settings
        spec = self._spec(
            "flow-test",
            self.toolchain.flow_runner,
            list(self.toolchain.flow_runner_args) + [test.relative_path],
            self._workspace,
            env={"TEST_ENV": settings.environment, "TEST_USER": settings.user},
        )

        def run() -> SubprocessResult:
            result = self.supervisor.run(spec, on_output)
            self.history.record_run(test.name, settings.environment, settings.user,
                                    result.status.value, result.exit_code, result.duration)
            return result

        return self._exclusive(spec.name, run)

    def open_studio(self, on_output: OutputCallback = None, open_browser: bool = True) -> SubprocessResult:
        """
        Open Maestro Studio. An instance already answering on the studio port
        is reused; otherwise `maestro studio` is launched and left running
        once it answers.
        """
        url = self.toolchain.studio_url
        if self.probe.is_running():
            logger.info("Maestro Studio already running at %s", url)
            if open_browser:
                self._open_viewer(url)
            return SubprocessResult(success=True, output=f"Maestro Studio already running at {url}\n",
                                    status=RunStatus.SUCCESS)
        if self._workspace is None:
            return SubprocessResult.failed("No workspace selected. Select a directory first.")

        spec = self._spec(STUDIO_PROCESS, self.toolchain.maestro, ["studio"], self._workspace,
                          timeout=self.toolchain.studio_startup_timeout, ready_check=self.probe)
        result = self._exclusive(spec.name, lambda: self.supervisor.run(spec, on_output))
        if result.success and open_browser:
            self._open_viewer(url)
        return result

    def _open_viewer(self, url: str) -> None:
        if not webbrowser.open(url):
            logger.warning("No browser available to open %s", url)

    def studio_launched(self) -> bool:
        return self.supervisor.detached(STUDIO_PROCESS) is not None

    def stop_studio(self) -> bool:
        """Stop a studio process this session launched."""
        return self.supervisor.stop_detached(STUDIO_PROCESS)

    # ==================== Reporting ====================

    def test_cases(self) -> List[Dict[str, object]]:
        return self.history.test_cases(t.name for t in self.tests)

    def status(self) -> Dict[str, object]:
        settings = self.settings
        return {
            "workspace": str(self._workspace) if self._workspace else None,
            "environment": settings.environment,
            "user": settings.user,
            "last_apk_installed": settings.last_apk_installed,
            "tests": [t.name for t in self.tests],
            "packages": [p.name for p in self.packages],
            "message": self.scan_message,
            "busy_with": self._current_operation,
        }

    def close(self) -> None:
        """Cancel an in-flight operation and flush pending settings."""
        if self._current_operation is not None:
            self.supervisor.cancel()
        self.store.close()
