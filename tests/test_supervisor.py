"""
Tests for the subprocess supervisor, using short-lived /bin/sh processes.
"""
import threading
import time

from core.models import CommandSpec, Completed, OutputChunk, RunStatus, SubprocessResult, TimeoutPolicy
from core.supervisor import Resolution, Supervisor


def sh(name: str, script: str, **kwargs) -> CommandSpec:
    return CommandSpec(name=name, command="/bin/sh", args=["-c", script], **kwargs)


# ============= COMPLETION =============

def test_streams_output_and_succeeds():
    """stdout and stderr both reach the listener and the accumulated output."""
    chunks = []
    result = Supervisor().run(sh("echo", "echo hello; echo oops 1>&2"), chunks.append)

    assert result.success
    assert result.status == RunStatus.SUCCESS
    assert result.exit_code == 0
    assert result.error is None
    assert "hello" in result.output
    assert "oops" in result.output
    assert "".join(chunks) == result.output
    assert "\r\n" not in result.output


def test_nonzero_exit_is_failure():
    result = Supervisor().run(sh("failing", "echo partial; exit 3"))

    assert not result.success
    assert result.status == RunStatus.FAILED
    assert result.exit_code == 3
    assert "code 3" in result.error
    assert "partial" in result.output


def test_missing_executable_is_failure():
    result = Supervisor().run(CommandSpec(name="ghost", command="/nonexistent/bin/ghost-tool"))

    assert not result.success
    assert result.exit_code is None
    assert result.error.startswith("Failed to start")


def test_success_marker_required():
    """Exit code 0 without the marker still fails."""
    missing = Supervisor().run(sh("install", "echo Failure [INSTALL_FAILED]", success_marker="Success"))
    assert not missing.success
    assert missing.exit_code == 0
    assert "Success" in missing.error

    present = Supervisor().run(sh("install", "echo Performing Streamed Install; echo Success",
                                  success_marker="Success"))
    assert present.success


def test_environment_and_working_directory(tmp_path):
    result = Supervisor().run(sh("env", 'echo "var=$MY_VAR"; pwd', cwd=tmp_path, env={"MY_VAR": "abc"}))

    assert result.success
    assert "var=abc" in result.output
    assert str(tmp_path.resolve()) in result.output


def test_listener_errors_do_not_break_supervision():
    def explode(text):
        raise RuntimeError("listener bug")

    result = Supervisor().run(sh("echo", "echo one; echo two"), explode)
    assert result.success
    assert "two" in result.output


# ============= SINGLE RESOLUTION =============

def test_resolution_first_wins():
    resolution = Resolution()
    first = SubprocessResult(success=True, output="", status=RunStatus.SUCCESS)
    second = SubprocessResult.failed("late timeout")

    assert not resolution.done
    assert resolution.settle(first)
    assert not resolution.settle(second)
    assert resolution.done
    assert resolution.result is first


def test_stream_ends_with_exactly_one_completion():
    events = list(Supervisor().stream(sh("echo", "echo a; echo b; exit 0", timeout=0.5)))

    completions = [e for e in events if isinstance(e, Completed)]
    assert len(completions) == 1
    assert events[-1] is completions[0]
    assert all(isinstance(e, OutputChunk) for e in events[:-1])


def test_stream_spawn_error_completes_once():
    events = list(Supervisor().stream(CommandSpec(name="ghost", command="/nonexistent/ghost")))
    assert len(events) == 1
    assert isinstance(events[0], Completed)
    assert not events[0].result.success


# ============= TIMEOUT POLICY =============

def test_timeout_reports_unknown_by_default():
    start = time.time()
    result = Supervisor().run(sh("slow", "sleep 10", timeout=0.5))

    assert time.time() - start < 5
    assert result.timed_out
    assert result.status == RunStatus.UNKNOWN
    assert not result.success
    assert "unknown" in result.error


def test_timeout_policy_success():
    result = Supervisor().run(sh("slow", "sleep 10", timeout=0.5, timeout_policy=TimeoutPolicy.SUCCESS))

    assert result.timed_out
    assert result.success
    assert result.status == RunStatus.SUCCESS


def test_timeout_policy_failure():
    result = Supervisor().run(sh("slow", "sleep 10", timeout=0.5, timeout_policy=TimeoutPolicy.FAILURE))

    assert result.timed_out
    assert not result.success
    assert result.status == RunStatus.FAILED
    assert "timed out" in result.error


def test_exit_before_timeout_wins():
    result = Supervisor().run(sh("quick", "exit 0", timeout=5, timeout_policy=TimeoutPolicy.FAILURE))
    assert result.success
    assert not result.timed_out


def test_timeout_policy_parse():
    assert TimeoutPolicy.parse("SUCCESS") == TimeoutPolicy.SUCCESS
    assert TimeoutPolicy.parse("failure") == TimeoutPolicy.FAILURE
    assert TimeoutPolicy.parse("bogus") == TimeoutPolicy.UNKNOWN
    assert TimeoutPolicy.parse(TimeoutPolicy.FAILURE) == TimeoutPolicy.FAILURE


# ============= READINESS AND CANCELLATION =============

def test_ready_check_leaves_process_running():
    supervisor = Supervisor()
    result = supervisor.run(sh("server", "echo listening; sleep 30", timeout=10, ready_check=lambda: True))

    assert result.success
    assert result.exit_code is None
    assert not result.timed_out
    detached = supervisor.detached("server")
    assert detached is not None
    assert detached.is_alive()

    assert supervisor.stop_detached("server")
    assert supervisor.detached("server") is None
    assert not supervisor.stop_detached("server")


def test_cancel_terminates_in_flight_process():
    supervisor = Supervisor()
    started = threading.Event()
    results = []

    def listener(text):
        started.set()

    worker = threading.Thread(
        target=lambda: results.append(supervisor.run(sh("long", "echo ready; sleep 10", timeout=8), listener)))
    worker.start()
    assert started.wait(5)
    supervisor.cancel()
    worker.join(5)

    assert not worker.is_alive()
    assert results[0].error == "Cancelled"
    assert not results[0].success


def test_closing_stream_early_terminates_process():
    supervisor = Supervisor()
    stream = supervisor.stream(sh("long", "echo first; sleep 10"))
    first = next(stream)
    assert isinstance(first, OutputChunk)
    start = time.time()
    stream.close()
    assert time.time() - start < 5


def test_cancel_before_start_applies_to_next_invocation():
    supervisor = Supervisor()
    supervisor.cancel()

    start = time.time()
    result = supervisor.run(sh("long", "echo never; sleep 10"))
    assert result.error == "Cancelled"
    assert time.time() - start < 5

    # The request is consumed by the cancelled invocation
    assert supervisor.run(sh("quick", "echo done")).success
