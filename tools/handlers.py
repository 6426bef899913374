"""
MCP Tool definitions for Maestro Test Manager.

One tool per workspace action. Long-running tools execute in a worker thread
and forward process output to the client as log messages while they run;
the tool result carries the final status block.
"""
import logging
from typing import Callable, Optional

import anyio.from_thread
import anyio.to_thread
from mcp.server.fastmcp import Context, FastMCP

from core.devices import format_devices
from core.models import SubprocessResult
from core.session import Session

logger = logging.getLogger(__name__)

# Global session instance, created on first use
_session: Optional[Session] = None


def get_session() -> Session:
    global _session
    if _session is None:
        _session = Session()
    return _session


def close_session() -> None:
    """Flush settings and release the global session."""
    global _session
    if _session is not None:
        _session.close()
        _session = None


def _filter_output(result: str, max_lines: int = None, output_mode: str = "tail", grep: str = None) -> str:
    """Filter and limit output to protect LLM context window."""
    if not max_lines and not grep:
        return result

    lines = result.split('\n')
    header_lines = []
    output_lines = []
    in_output = False

    for line in lines:
        if line.startswith("OUTPUT:"):
            in_output = True
            header_lines.append(line)
        elif in_output:
            output_lines.append(line)
        else:
            header_lines.append(line)

    original_count = len(output_lines)

    if grep:
        output_lines = [l for l in output_lines if grep in l]

    truncated = False
    if max_lines and len(output_lines) > max_lines:
        truncated = True
        if output_mode == "head":
            output_lines = output_lines[:max_lines]
        else:
            output_lines = output_lines[-max_lines:]

    if truncated or grep:
        truncate_info = []
        if grep:
            truncate_info.append(f"GREP: '{grep}' ({len(output_lines)} matches)")
        if truncated:
            truncate_info.append(f"TRUNCATED: {len(output_lines)}/{original_count} lines ({output_mode})")
        header_lines.insert(-1, '\n'.join(truncate_info))

    return '\n'.join(header_lines + output_lines)


def _format_result(operation: str, result: SubprocessResult) -> str:
    parts = [
        f"OPERATION: {operation}",
        f"STATUS: {result.status.value.upper()}",
        f"EXIT_CODE: {result.exit_code if result.exit_code is not None else 'unknown'}",
    ]
    if result.timed_out:
        parts.append("TIMED_OUT: true")
    if result.error:
        parts.append(f"ERROR: {result.error}")
    parts.append(f"DURATION: {result.duration:.1f}s")
    parts.append("OUTPUT:")
    parts.append(result.output.rstrip() if result.output.strip() else "(no output)")
    return '\n'.join(parts)


def _format_files(title: str, files: list) -> list:
    lines = [f"{title} ({len(files)}):"]
    for f in files:
        size_kb = f.size_bytes / 1024
        lines.append(f"  {f.relative_path}  {size_kb:.1f} KB  modified {f.last_modified:%Y-%m-%d %H:%M}")
    if not files:
        lines.append("  (none)")
    return lines


def _format_status(session: Session) -> str:
    status = session.status()
    lines = [
        f"STATUS: {'READY' if status['workspace'] else 'NO_WORKSPACE'}",
        f"Workspace: {status['workspace'] or 'Not loaded'}",
        f"Environment: {status['environment']}",
        f"User: {status['user']}",
        f"Last APK installed: {status['last_apk_installed'] or '-'}",
    ]
    if status["busy_with"]:
        lines.append(f"Running: {status['busy_with']}")
    if session.studio_launched():
        lines.append("Studio: launched by this session")
    lines.append(f"Message: {status['message'] or '-'}")
    lines.append("")
    lines.extend(_format_files("Tests", session.tests))
    lines.extend(_format_files("Packages", session.packages))
    return '\n'.join(lines)


async def _supervised(ctx: Context, operation: Callable[[Callable[[str], None]], SubprocessResult]) -> SubprocessResult:
    """Run a blocking session operation in a worker thread, streaming its output to ctx."""

    def forward(text: str) -> None:
        anyio.from_thread.run(ctx.info, text.rstrip("\n"))

    return await anyio.to_thread.run_sync(lambda: operation(forward))


def register_tools(mcp: FastMCP, session: Optional[Session] = None):
    """Register all MCP tools with the server."""

    def current() -> Session:
        return session or get_session()

    # ==================== TOOL 1: select_workspace ====================
    @mcp.tool()
    def select_workspace(path: str) -> str:
        """
        Select the Maestro project directory to work in.

        Args:
            path: Directory containing .maestro/flows/core/

        The directory is validated first; tests and APKs are listed only for
        a valid project. The choice is remembered across restarts.
        """
        validation = current().select_workspace(path)
        if not validation.valid:
            return f"STATUS: INVALID\nPath: {path}\nReason: {validation.message}"
        return _format_status(current())

    # ==================== TOOL 2: workspace_status ====================
    @mcp.tool()
    def workspace_status(refresh: bool = False) -> str:
        """
        Show the current workspace, run settings, and discovered tests/APKs.

        Args:
            refresh: Re-scan the workspace directory first
        """
        if refresh:
            current().refresh()
        return _format_status(current())

    # ==================== TOOL 3: clear_workspace ====================
    @mcp.tool()
    def clear_workspace() -> str:
        """Forget the current workspace and reset environment/user to defaults."""
        current().clear_workspace()
        return "STATUS: CLEARED\nWorkspace cleared. Use select_workspace to get started."

    # ==================== TOOL 4: configure_run ====================
    @mcp.tool()
    def configure_run(environment: str = None, user: str = None) -> str:
        """
        Set the environment and/or test user passed to flow runs.

        Args:
            environment: e.g. "dev", "staging", "prod"
            user: Test user identifier, e.g. "1"
        """
        s = current()
        try:
            if environment is not None:
                s.set_environment(environment)
            if user is not None:
                s.set_user(user)
        except ValueError as e:
            return f"STATUS: ERROR\nReason: {e}"
        return f"STATUS: UPDATED\nEnvironment: {s.settings.environment}\nUser: {s.settings.user}"

    # ==================== TOOL 5: list_devices ====================
    @mcp.tool()
    def list_devices() -> str:
        """List devices and emulators visible to adb."""
        return format_devices(current().list_devices())

    # ==================== TOOL 6: restart_emulator ====================
    @mcp.tool()
    async def restart_emulator(ctx: Context, max_lines: int = None, grep: str = None) -> str:
        """
        Restart the Android emulator with the project's reset script.

        Output streams as log messages while the script runs.

        Args:
            max_lines: Limit returned output to the last N lines
            grep: Only return output lines containing this string
        """
        result = await _supervised(ctx, lambda forward: current().restart_emulator(forward))
        return _filter_output(_format_result("restart_emulator", result), max_lines, "tail", grep)

    # ==================== TOOL 7: install_package ====================
    @mcp.tool()
    async def install_package(package: str, ctx: Context, max_lines: int = None, grep: str = None) -> str:
        """
        Install an APK on the running device or emulator.

        If no device is online, the emulator reset script is run with the APK
        and performs the install after boot.

        Args:
            package: APK file name from workspace_status, or a path
            max_lines: Limit returned output to the last N lines
            grep: Only return output lines containing this string
        """
        result = await _supervised(ctx, lambda forward: current().install_package(package, forward))
        return _filter_output(_format_result("install_package", result), max_lines, "tail", grep)

    # ==================== TOOL 8: run_flow ====================
    @mcp.tool()
    async def run_flow(flow: str, ctx: Context, max_lines: int = 200, grep: str = None) -> str:
        """
        Run one Maestro flow (headed) with the configured environment and user.

        Args:
            flow: Flow file name from workspace_status, e.g. "login.yaml"
            max_lines: Limit returned output to the last N lines (default 200)
            grep: Only return output lines containing this string
        """
        result = await _supervised(ctx, lambda forward: current().run_flow(flow, forward))
        return _filter_output(_format_result("run_flow", result), max_lines, "tail", grep)

    # ==================== TOOL 9: studio ====================
    @mcp.tool()
    async def studio(ctx: Context, action: str = "open") -> str:
        """
        Manage Maestro Studio: open or stop.

        Args:
            action: "open" reuses a running studio or launches one;
                    "stop" stops a studio launched by this session
        """
        action = action.lower()
        if action == "open":
            result = await _supervised(ctx, lambda forward: current().open_studio(forward))
            return _format_result("studio", result)
        elif action == "stop":
            if current().stop_studio():
                return "STATUS: STOPPED\nMaestro Studio stopped."
            return "STATUS: NOT_RUNNING\nNo studio process was launched by this session."
        else:
            return f"STATUS: ERROR\nReason: Unknown action '{action}'. Use: open, stop"

    # ==================== TOOL 10: test_cases ====================
    @mcp.tool()
    def test_cases() -> str:
        """Last known result of each flow in the workspace: passing, failing, unknown or pending."""
        cases = current().test_cases()
        if not cases:
            return "STATUS: NO_TESTS\nNo flows in the current workspace."
        lines = [f"STATUS: FOUND_{len(cases)}_TEST_CASE(S)", ""]
        for case in cases:
            line = f"  {case['flow']}: {str(case['status']).upper()}"
            if case["last_run"]:
                line += f" (last run {case['last_run']}, env {case['environment']}, user {case['user']}, {case['runs']} run(s))"
            lines.append(line)
        return '\n'.join(lines)
