"""Process supervisor with concurrent stream draining and tree termination.

rcopy-runner runtime module v0.1.0

This module provides:
- Launch of the copy tool with stdout/stderr redirected and no stdin
- Two StreamPumps draining stdout and stderr concurrently
- Separately observable "process exited" and "streams drained" signals
- Cooperative cancellation that terminates the whole process subtree

Key design points:
- POSIX: start_new_session=True so the child leads its own process group
- Windows: CREATE_NEW_PROCESS_GROUP, subtree killed with taskkill /T
- The kill is issued at most once; later requests share the same attempt
- Termination failures are logged and swallowed
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import shutil
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any, Callable

from ..errors import LaunchError
from ..events import LineEvent, ProgressEvent, StreamName
from .cancellation import CancelToken
from .command import RunRequest
from .stream_pump import DEFAULT_CHUNK_SIZE, StreamPump

__all__ = [
    "ProcessHandle",
    "ProcessSupervisor",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL
DEFAULT_DRAIN_TIMEOUT = 5.0  # seconds to wait for pumps after exit

STREAM_LIMIT = 2 ** 16  # StreamReader buffer limit, same as asyncio's default

PumpFactory = Callable[..., StreamPump]


class _ExitNotifyingProtocol(asyncio.subprocess.SubprocessStreamProtocol):
    """Stream protocol that also reports the moment the child exits.

    ``Process.wait()`` only returns once every pipe is closed, which a
    descendant holding stdout open can postpone indefinitely.
    """

    def __init__(
        self,
        exited: asyncio.Future[None],
        *,
        limit: int,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__(limit=limit, loop=loop)
        self._exited = exited

    def process_exited(self) -> None:
        super().process_exited()
        if not self._exited.done():
            self._exited.set_result(None)


@dataclass
class ProcessHandle:
    """The running child and the work draining its streams.

    Owned by exactly one ProcessSupervisor for the lifetime of one run.
    """

    process: asyncio.subprocess.Process
    exited: asyncio.Future[None]
    pumps: list[StreamPump] = field(default_factory=list)
    tasks: list[asyncio.Task[None]] = field(default_factory=list)

    @property
    def pid(self) -> int:
        return self.process.pid


class ProcessSupervisor:
    """Owns one child process from launch to teardown.

    Example:
        supervisor = ProcessSupervisor(request, on_line=print_line)
        await supervisor.start(cancel_token)
        try:
            code = await supervisor.wait_exit()
            await supervisor.wait_drained()
        finally:
            await supervisor.close()
    """

    def __init__(
        self,
        request: RunRequest,
        *,
        on_line: Callable[[LineEvent], None] | None = None,
        on_progress: Callable[[ProgressEvent], None] | None = None,
        encoding: str = "utf-8",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        drain_timeout: float = DEFAULT_DRAIN_TIMEOUT,
        pump_factory: PumpFactory = StreamPump,
    ) -> None:
        # Fail on a bad encoding before anything is spawned
        codecs.lookup(encoding)

        self.request = request
        self.encoding = encoding
        self.chunk_size = chunk_size
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self.drain_timeout = drain_timeout

        self._on_line = on_line
        self._on_progress = on_progress
        self._pump_factory = pump_factory

        self._handle: ProcessHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._kill_task: asyncio.Task[None] | None = None
        self._close_task: asyncio.Task[None] | None = None
        self._kill_requested = asyncio.Event()
        self._cancelled = False
        self._closed = False
        self._unregister_cancel: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def pid(self) -> int | None:
        return self._handle.pid if self._handle else None

    @property
    def returncode(self) -> int | None:
        return self._handle.process.returncode if self._handle else None

    @property
    def is_running(self) -> bool:
        return self._handle is not None and self._handle.process.returncode is None

    @property
    def cancelled(self) -> bool:
        """True once cancellation hit a run that had not finished."""
        return self._cancelled

    @property
    def is_finished(self) -> bool:
        """True once the child exited and both streams reached end of stream."""
        handle = self._handle
        if handle is None or handle.process.returncode is None:
            return False
        return all(task.done() and not task.cancelled() for task in handle.tasks)

    @property
    def kill_issued(self) -> bool:
        return self._kill_task is not None

    @property
    def pumps(self) -> list[StreamPump]:
        return list(self._handle.pumps) if self._handle else []

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    async def start(self, cancel_token: CancelToken | None = None) -> None:
        """Launch the child and start both pumps.

        Args:
            cancel_token: Optional token; when triggered the process tree is killed

        Raises:
            LaunchError: If the process could not be created
            RuntimeError: If called twice
        """
        if self._handle is not None or self._closed:
            raise RuntimeError("ProcessSupervisor can only be started once")

        self._loop = asyncio.get_running_loop()
        exited: asyncio.Future[None] = self._loop.create_future()
        process = await self._spawn(exited)
        self._handle = ProcessHandle(process=process, exited=exited)

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv0={self.request.executable} cwd={self.request.cwd}"
        )

        if cancel_token is not None:
            self._unregister_cancel = cancel_token.register(self._on_cancel_signal)

        for name, stream in (("stdout", process.stdout), ("stderr", process.stderr)):
            pump = self._pump_factory(
                name,
                stream,
                self._make_chunk_callback(name),
                self._make_progress_callback(name),
                encoding=self.encoding,
                chunk_size=self.chunk_size,
            )
            self._handle.pumps.append(pump)
            self._handle.tasks.append(
                asyncio.create_task(pump.run(), name=f"pump-{name}-{process.pid}")
            )

    async def _spawn(self, exited: asyncio.Future[None]) -> asyncio.subprocess.Process:
        resolved = shutil.which(self.request.executable)
        if resolved is None:
            raise LaunchError(self.request.executable, "executable not found on PATH")

        try:
            argv = self.request.argv(resolved)
        except ValueError as e:
            raise LaunchError(self.request.executable, f"invalid command line: {e}") from e

        logger.debug(f"[SUBPROCESS] Preparing to execute: {argv}")

        loop = asyncio.get_running_loop()
        try:
            # stdin=DEVNULL: the child must never inherit our stdin
            transport, protocol = await loop.subprocess_exec(
                lambda: _ExitNotifyingProtocol(exited, limit=STREAM_LIMIT, loop=loop),
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.request.cwd,
                **self._build_subprocess_kwargs(),
            )
        except OSError as e:
            raise LaunchError(self.request.executable, e.strerror or str(e)) from e

        return asyncio.subprocess.Process(transport, protocol, loop)

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific isolation kwargs."""
        kwargs: dict[str, Any] = {}
        if IS_WINDOWS:
            kwargs["creationflags"] = (
                subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.CREATE_NO_WINDOW
            )
        else:
            # POSIX: start_new_session (equivalent to setsid), pgid == pid
            kwargs["start_new_session"] = True
        return kwargs

    def _make_chunk_callback(self, stream: StreamName) -> Callable[[str], None]:
        def on_chunk(text: str) -> None:
            if self._on_line is not None:
                self._on_line(LineEvent(stream=stream, text=text))
        return on_chunk

    def _make_progress_callback(self, stream: StreamName) -> Callable[[int], None] | None:
        if self._on_progress is None:
            return None

        publish = self._on_progress

        def on_progress(percent: int) -> None:
            publish(ProgressEvent(stream=stream, percent=percent))
        return on_progress

    # ------------------------------------------------------------------
    # Exit and drain
    # ------------------------------------------------------------------

    async def wait_exit(self) -> int:
        """Wait for the child to exit and return its raw exit code.

        Resolves when the child itself exits, even if a descendant still
        holds its stdout/stderr open. Pumps may still be delivering buffered
        output when this returns; use ``wait_drained()`` to wait for them.
        """
        handle = self._handle
        if handle is None:
            raise RuntimeError("ProcessSupervisor has not been started")
        await asyncio.shield(handle.exited)
        returncode = handle.process.returncode
        if returncode is None:
            raise RuntimeError(f"Exit reported without a return code pid={handle.pid}")
        logger.debug(f"Subprocess exited pid={handle.pid} returncode={returncode}")
        return returncode

    async def wait_drained(self, timeout: float | None = None) -> bool:
        """Wait for both pumps to finish.

        With ``timeout=None`` the wait is unbounded for as long as no kill
        has been issued; once the subtree is being killed the remaining wait
        is bounded by ``drain_timeout``. Pump failures are logged, never
        raised. Pumps still running after the timeout are cancelled, so no
        chunk is delivered once this returns.

        Returns:
            True if both pumps reached end of stream
        """
        if self._handle is None or not self._handle.tasks:
            return True

        if timeout is None:
            await self._wait_pumps_or_kill(self._handle.tasks)
            if self._kill_requested.is_set():
                timeout = self.drain_timeout

        done, pending = await asyncio.wait(self._handle.tasks, timeout=timeout)

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.debug(f"Pump {task.get_name()} failed: {task.exception()!r}")

        if pending:
            logger.warning(
                f"Abandoning {len(pending)} pump(s) still draining after {timeout}s "
                f"pid={self._handle.pid}"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        return not pending

    async def _wait_pumps_or_kill(self, tasks: list[asyncio.Task[None]]) -> None:
        """Wait until every pump is done or a kill has been issued."""
        kill_wait = asyncio.ensure_future(self._kill_requested.wait())
        try:
            pending = set(tasks)
            while pending and not kill_wait.done():
                _, pending = await asyncio.wait(
                    pending | {kill_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                pending.discard(kill_wait)
        finally:
            kill_wait.cancel()

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def _on_cancel_signal(self) -> None:
        """Token callback; may run on any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._request_cancel)

    def _request_cancel(self) -> None:
        if self._closed or self._handle is None:
            return
        if self.is_finished:
            logger.debug(f"Cancel ignored, run already finished pid={self._handle.pid}")
            return
        self._cancelled = True
        logger.info(f"Cancelling run pid={self._handle.pid}")
        self._ensure_kill_task()

    def _ensure_kill_task(self) -> asyncio.Task[None]:
        if self._kill_task is None:
            self._kill_requested.set()
            self._kill_task = asyncio.ensure_future(self._terminate_tree())
        return self._kill_task

    async def terminate(self) -> None:
        """Terminate the process and its descendants.

        Idempotent: every call shares the first attempt. A no-op when the
        process was never started.
        """
        if self._handle is None:
            return
        await asyncio.shield(self._ensure_kill_task())

    async def _terminate_tree(self) -> None:
        """Terminate the subtree gracefully, then forcefully.

        Termination strategy:
        1. SIGTERM to the process group (CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for the child to exit
        3. SIGKILL to the group (taskkill /T /F on Windows); this also sweeps
           descendants that outlived the child
        4. Wait up to kill_timeout for the child to exit
        """
        handle = self._handle
        if handle is None:
            return
        process = handle.process
        pid = process.pid
        logger.debug(f"Terminating process tree pid={pid}")

        try:
            if process.returncode is None:
                await self._terminate_gracefully(process)
                if await self._wait_exited(handle, self.term_timeout):
                    logger.debug(
                        f"Subprocess terminated gracefully pid={pid} "
                        f"returncode={process.returncode}"
                    )
                else:
                    logger.debug(f"Force killing process tree pid={pid}")

            await self._kill_tree(process)

            if not await self._wait_exited(handle, self.kill_timeout):
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except Exception as e:
            logger.debug(f"Error terminating process tree pid={pid}: {e}")

    @staticmethod
    async def _wait_exited(handle: ProcessHandle, timeout: float) -> bool:
        """Wait up to ``timeout`` for the child itself to exit."""
        try:
            await asyncio.wait_for(asyncio.shield(handle.exited), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _terminate_gracefully(self, process: asyncio.subprocess.Process) -> None:
        if IS_WINDOWS:
            try:
                # Works because we used CREATE_NEW_PROCESS_GROUP
                os.kill(process.pid, signal.CTRL_BREAK_EVENT)
                logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
            except (ProcessLookupError, OSError) as e:
                logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
                process.terminate()
        else:
            self._signal_group(process, signal.SIGTERM)

    async def _kill_tree(self, process: asyncio.subprocess.Process) -> None:
        if IS_WINDOWS:
            if process.returncode is not None:
                return
            try:
                killer = await asyncio.create_subprocess_exec(
                    "taskkill", "/PID", str(process.pid), "/T", "/F",
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
                await killer.wait()
                logger.debug(f"taskkill /T /F pid={process.pid} returncode={killer.returncode}")
            except OSError as e:
                logger.debug(f"taskkill failed, falling back to kill: {e}")
                process.kill()
        else:
            self._signal_group(process, signal.SIGKILL)

    @staticmethod
    def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
        """Send ``sig`` to the child's process group (POSIX).

        The group id equals the child pid thanks to start_new_session, and
        stays valid while any descendant is alive even after the child exits.
        """
        try:
            os.killpg(process.pid, sig)
            logger.debug(f"Sent {signal.Signals(sig).name} to process group pgid={process.pid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to direct signal: {e}")
            if process.returncode is None:
                process.send_signal(sig)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Release the process handle, shielded from cancellation.

        Terminates the subtree unless the run already finished (the child
        exited and its output reached end of stream), then waits, bounded by
        drain_timeout, for the pumps to settle.
        """
        if self._close_task is None:
            self._close_task = asyncio.ensure_future(self._do_close())
        try:
            await asyncio.shield(self._close_task)
        except asyncio.CancelledError:
            # If shield itself is cancelled, still wait for the cleanup
            await self._close_task

    async def _do_close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._unregister_cancel is not None:
            self._unregister_cancel()
            self._unregister_cancel = None

        if self._handle is None:
            return

        if not self.is_finished:
            await self.terminate()
        elif self._kill_task is not None:
            await asyncio.shield(self._kill_task)

        await self.wait_drained(self.drain_timeout)
        logger.debug(f"Process handle released pid={self._handle.pid}")
