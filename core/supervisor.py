"""
Supervisor for external commands: streams output, resolves exactly once.

Each invocation spawns one process on a pseudo-terminal and polls it until
the first of these signals settles the result:
- the process exits (EOF once its remaining output is read)
- the spawn fails (executable missing or not executable)
- an optional readiness check passes (the process is left running)
- the fallback timeout fires (outcome decided by the TimeoutPolicy)
- cancel() is called
"""
import logging
import os
import shlex
import threading
import time
from typing import Callable, Dict, Iterator, List, Optional, Union

import pexpect

from .config import PROGRESS_CHECK_INTERVAL, READ_CHUNK_SIZE
from .models import (
    CommandSpec, Completed, OutputChunk, RunStatus, SubprocessResult, TimeoutPolicy,
)

logger = logging.getLogger(__name__)

READY_CHECK_INTERVAL = 1.0

Event = Union[OutputChunk, Completed]


class Resolution:
    """First-wins holder for the terminal result of one invocation."""

    def __init__(self):
        self._lock = threading.Lock()
        self._result: Optional[SubprocessResult] = None

    def settle(self, result: SubprocessResult) -> bool:
        """Record result if nothing was recorded yet. Returns True if it won."""
        with self._lock:
            if self._result is not None:
                return False
            self._result = result
            return True

    @property
    def done(self) -> bool:
        with self._lock:
            return self._result is not None

    @property
    def result(self) -> Optional[SubprocessResult]:
        with self._lock:
            return self._result


class DetachedProcess:
    """A process left running after its operation resolved. Output is drained and logged."""

    def __init__(self, name: str, child: pexpect.spawn):
        self.name = name
        self._child = child
        self._thread = threading.Thread(target=self._drain, name=f"drain-{name}", daemon=True)
        self._thread.start()

    def _drain(self):
        while True:
            try:
                data = self._child.read_nonblocking(size=READ_CHUNK_SIZE, timeout=1)
            except pexpect.TIMEOUT:
                continue
            except (pexpect.EOF, OSError, ValueError):
                break
            if data:
                logger.debug("[%s] %s", self.name, data.rstrip())
        logger.debug("Detached process %s closed its output", self.name)

    def is_alive(self) -> bool:
        try:
            return self._child.isalive()
        except pexpect.ExceptionPexpect:
            return False

    def stop(self) -> None:
        try:
            self._child.close(force=True)
        except (pexpect.ExceptionPexpect, OSError) as e:
            logger.warning("Could not stop %s cleanly: %s", self.name, e)


class Supervisor:
    """
    Runs CommandSpecs one at a time per caller.
    The session is responsible for allowing only one in-flight invocation.
    """

    def __init__(self):
        self._cancel = threading.Event()
        self._detached: Dict[str, DetachedProcess] = {}
        self._lock = threading.Lock()

    def run(self, spec: CommandSpec, on_output: Optional[Callable[[str], None]] = None) -> SubprocessResult:
        """Run spec to completion, forwarding each output chunk to on_output."""
        for event in self.stream(spec):
            if isinstance(event, Completed):
                return event.result
            if on_output is not None:
                try:
                    on_output(event.text)
                except Exception:
                    logger.exception("Output listener for %s failed", spec.name)
        # stream() always ends with a Completed event
        raise RuntimeError(f"{spec.name}: supervision ended without a result")

    def cancel(self) -> None:
        """Terminate the in-flight invocation, if any."""
        self._cancel.set()

    def detached(self, name: str) -> Optional[DetachedProcess]:
        with self._lock:
            proc = self._detached.get(name)
        if proc is not None and not proc.is_alive():
            with self._lock:
                self._detached.pop(name, None)
            return None
        return proc

    def stop_detached(self, name: str) -> bool:
        with self._lock:
            proc = self._detached.pop(name, None)
        if proc is None:
            return False
        proc.stop()
        return True

    def _spawn(self, spec: CommandSpec) -> pexpect.spawn:
        args: List[str] = [str(a) for a in spec.args]
        env = None
        if spec.env:
            env = dict(os.environ)
            env.update(spec.env)
        # pexpect splits the command line itself when no args are given
        command = spec.command if args else shlex.quote(spec.command)
        return pexpect.spawn(
            command,
            args,
            cwd=str(spec.cwd) if spec.cwd else None,
            env=env,
            encoding="utf-8",
            codec_errors="replace",
            timeout=None,
        )

    def stream(self, spec: CommandSpec) -> Iterator[Event]:
        """
        Yield OutputChunk events in receipt order, then exactly one Completed.

        Closing the generator early terminates the process. A cancel() issued
        before the invocation starts cancels it; the request is consumed when
        the invocation finishes.
        """
        resolution = Resolution()
        start = time.time()
        output: List[str] = []
        logger.info("Running %s: %s", spec.name, spec.display())

        try:
            child = self._spawn(spec)
        except (pexpect.ExceptionPexpect, OSError) as e:
            logger.error("Could not start %s: %s", spec.name, e)
            resolution.settle(SubprocessResult.failed(f"Failed to start {spec.command}: {e}"))
            self._cancel.clear()
            yield Completed(resolution.result)
            return

        deadline = start + spec.timeout if spec.timeout else None
        last_ready_check = 0.0
        keep_child = False
        try:
            while not resolution.done:
                if self._cancel.is_set():
                    resolution.settle(SubprocessResult.failed(
                        "Cancelled", output="".join(output), duration=time.time() - start))
                    break

                try:
                    data = child.read_nonblocking(size=READ_CHUNK_SIZE, timeout=PROGRESS_CHECK_INTERVAL)
                except pexpect.TIMEOUT:
                    data = ""
                except pexpect.EOF:
                    child.close()
                    resolution.settle(self._exit_result(child, spec, "".join(output), start))
                    break

                if data:
                    text = data.replace("\r\n", "\n")
                    output.append(text)
                    yield OutputChunk(text)

                now = time.time()
                if spec.ready_check is not None and now - last_ready_check >= READY_CHECK_INTERVAL:
                    last_ready_check = now
                    if spec.ready_check():
                        resolution.settle(SubprocessResult(
                            success=True, output="".join(output), status=RunStatus.SUCCESS,
                            duration=now - start))
                        self._detach(spec.name, child)
                        keep_child = True
                        break

                if deadline is not None and now >= deadline:
                    resolution.settle(self._timeout_result(spec, "".join(output), start))
                    break
        finally:
            if not keep_child and child.isalive():
                logger.info("Terminating %s", spec.name)
                child.close(force=True)
            self._cancel.clear()

        result = resolution.result
        self._log_result(spec, result)
        yield Completed(result)

    def _detach(self, name: str, child: pexpect.spawn) -> None:
        with self._lock:
            previous = self._detached.pop(name, None)
            self._detached[name] = DetachedProcess(name, child)
        if previous is not None and previous.is_alive():
            logger.warning("Replacing still-running detached process %s", name)

    def _exit_result(self, child: pexpect.spawn, spec: CommandSpec, output: str, start: float) -> SubprocessResult:
        duration = time.time() - start
        code = child.exitstatus
        signal = child.signalstatus
        if code is None and signal is not None:
            return SubprocessResult.failed(
                f"{spec.name} was terminated by signal {signal}", output=output, duration=duration)
        if code != 0:
            return SubprocessResult.failed(
                f"{spec.name} exited with code {code}", output=output, exit_code=code, duration=duration)
        if spec.success_marker and spec.success_marker not in output:
            return SubprocessResult.failed(
                f"{spec.name} exited with code 0 but did not report '{spec.success_marker}'",
                output=output, exit_code=0, duration=duration)
        return SubprocessResult(success=True, output=output, exit_code=0,
                                status=RunStatus.SUCCESS, duration=duration)

    def _timeout_result(self, spec: CommandSpec, output: str, start: float) -> SubprocessResult:
        duration = time.time() - start
        policy = TimeoutPolicy.parse(spec.timeout_policy)
        if policy == TimeoutPolicy.SUCCESS:
            return SubprocessResult(success=True, output=output, status=RunStatus.SUCCESS,
                                    timed_out=True, duration=duration)
        if policy == TimeoutPolicy.FAILURE:
            return SubprocessResult(success=False, output=output, status=RunStatus.FAILED,
                                    error=f"{spec.name} timed out after {spec.timeout:.0f}s",
                                    timed_out=True, duration=duration)
        return SubprocessResult(success=False, output=output, status=RunStatus.UNKNOWN,
                                error=f"{spec.name} still running after {spec.timeout:.0f}s; outcome unknown",
                                timed_out=True, duration=duration)

    def _log_result(self, spec: CommandSpec, result: SubprocessResult) -> None:
        if result.success:
            logger.info("%s finished: %s (%.1fs)", spec.name, result.status.value, result.duration)
        else:
            logger.warning("%s finished: %s - %s", spec.name, result.status.value, result.error)
