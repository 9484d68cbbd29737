"""
Command runner for the window-manager bridge.

Executes external tools (yabai, mdfind) as subprocesses with a hard timeout.
Non-zero exit codes are not failures: many wrapped tools print useful output
alongside an error status, so callers inspect content instead.

On timeout the process gets SIGTERM, then SIGKILL after a grace period, and
the call returns whatever output was captured up to that point.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
import subprocess
import threading
import time
from typing import List, Mapping, Optional, Sequence, Union

from .errors import CommandFailedError, ToolNotFoundError

logger = logging.getLogger(__name__)

Command = Union[str, Sequence[str]]

DEFAULT_TIMEOUT = 10.0
DEFAULT_KILL_GRACE = 1.0
DEFAULT_PATH_PREFIX = ("/usr/local/bin", "/opt/homebrew/bin")
FALLBACK_PATH = "/usr/bin:/bin"


class CommandResult:
    """Result of one subprocess execution.

    Attributes:
        command: The argv that was executed
        output: Combined stdout and stderr
        returncode: Exit status (negative when killed by a signal)
        timed_out: Whether the timeout watchdog fired
        duration_ms: Wall time in milliseconds
    """

    def __init__(
        self,
        command: List[str],
        output: str,
        returncode: Optional[int],
        timed_out: bool = False,
        duration_ms: float = 0.0,
    ):
        self.command = command
        self.output = output
        self.returncode = returncode
        self.timed_out = timed_out
        self.duration_ms = duration_ms

    @property
    def success(self) -> bool:
        return not self.timed_out and self.returncode == 0

    @property
    def command_line(self) -> str:
        return shlex.join(self.command)

    def __repr__(self) -> str:
        status = "timeout" if self.timed_out else f"rc={self.returncode}"
        return f"CommandResult({self.command_line[:50]} {status} {self.duration_ms:.1f}ms)"


class CommandRunner:
    """Runs external commands with a PATH prefix and a timeout watchdog.

    The runner holds no shared mutable state beyond call statistics,
    which are updated under a lock, so one instance can serve the event loop
    and worker threads at the same time.

    Example:
        >>> runner = CommandRunner()
        >>> output = await runner.run(["yabai", "-m", "query", "--spaces"])
    """

    def __init__(
        self,
        path_prefix: Optional[Sequence[str]] = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        kill_grace_period: float = DEFAULT_KILL_GRACE,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        """Initialize the runner.

        Args:
            path_prefix: Directories prepended to PATH for every child
            default_timeout: Timeout used when a call does not pass one (seconds)
            kill_grace_period: Delay between SIGTERM and SIGKILL (seconds)
            base_env: Environment to extend (defaults to os.environ at call time)
        """
        self.path_prefix = list(path_prefix if path_prefix is not None else DEFAULT_PATH_PREFIX)
        self.default_timeout = default_timeout
        self.kill_grace_period = kill_grace_period
        self._base_env = dict(base_env) if base_env is not None else None

        self._stats_lock = threading.Lock()
        self._call_count = 0
        self._timeout_count = 0
        self._total_duration_ms = 0.0

    @classmethod
    def from_config(cls, config) -> "CommandRunner":
        return cls(
            path_prefix=config.path_prefix,
            default_timeout=config.command_timeout,
            kill_grace_period=config.kill_grace_period,
        )

    def build_environment(self) -> dict:
        """Inherited environment with the fixed search path prepended."""
        env = dict(self._base_env if self._base_env is not None else os.environ)
        prefix = os.pathsep.join(self.path_prefix)
        existing = env.get("PATH")
        if existing:
            env["PATH"] = f"{prefix}{os.pathsep}{existing}" if prefix else existing
        else:
            env["PATH"] = f"{prefix}{os.pathsep}{FALLBACK_PATH}" if prefix else FALLBACK_PATH
        return env

    def which(self, executable: str) -> Optional[str]:
        """Locate an executable the way child processes will see it.

        Absolute paths are checked directly; bare names are searched on the
        prefixed PATH.
        """
        if os.path.isabs(executable):
            if os.path.isfile(executable) and os.access(executable, os.X_OK):
                return executable
            return None
        return shutil.which(executable, path=self.build_environment()["PATH"])

    @staticmethod
    def normalize(command: Command) -> List[str]:
        """Turn a command string or sequence into an argv list."""
        if isinstance(command, str):
            argv = shlex.split(command)
        else:
            argv = [str(part) for part in command]
        if not argv:
            raise ValueError("Cannot run an empty command")
        return argv

    async def run(self, command: Command, timeout: Optional[float] = None) -> str:
        """Run a command without blocking the event loop.

        Args:
            command: argv sequence, or a string split with shlex
            timeout: Seconds before the process is terminated (default_timeout if None)

        Returns:
            Combined stdout/stderr (possibly partial or empty after a timeout)

        Raises:
            ToolNotFoundError: The executable does not exist
            CommandFailedError: The process could not be spawned
        """
        result = await self.execute(command, timeout)
        return result.output

    def run_sync(self, command: Command, timeout: Optional[float] = None) -> str:
        """Blocking form of run() for worker threads.

        Raises:
            RuntimeError: Called from a thread that is running an event loop
        """
        return self.execute_sync(command, timeout).output

    async def execute(self, command: Command, timeout: Optional[float] = None) -> CommandResult:
        """Run a command and return the full CommandResult."""
        argv = self.normalize(command)
        timeout = self.default_timeout if timeout is None else timeout
        env = self.build_environment()
        loop = asyncio.get_running_loop()
        start = loop.time()

        logger.debug(f"Executing: {shlex.join(argv)} (timeout={timeout}s)")

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError(argv[0], env.get("PATH")) from e
        except OSError as e:
            raise CommandFailedError(shlex.join(argv), str(e)) from e

        chunks: List[bytes] = []
        reader = asyncio.create_task(self._drain(proc.stdout, chunks))
        timed_out = False

        try:
            try:
                await asyncio.wait_for(proc.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(f"Command timed out after {timeout}s: {shlex.join(argv)}")
                await self._terminate(proc)

            # A grandchild may still hold the pipe open; never wait on it unbounded
            done, _ = await asyncio.wait({reader}, timeout=self.kill_grace_period + 0.5)
            if not done:
                reader.cancel()
        except asyncio.CancelledError:
            reader.cancel()
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
            raise

        duration_ms = (loop.time() - start) * 1000
        result = CommandResult(
            command=argv,
            output=b"".join(chunks).decode("utf-8", errors="replace"),
            returncode=proc.returncode,
            timed_out=timed_out,
            duration_ms=duration_ms,
        )
        self._record(result)
        return result

    def execute_sync(self, command: Command, timeout: Optional[float] = None) -> CommandResult:
        """Blocking form of execute()."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            raise RuntimeError(
                "run_sync() must not be called from an event loop thread; use 'await run()'"
            )

        argv = self.normalize(command)
        timeout = self.default_timeout if timeout is None else timeout
        env = self.build_environment()
        start = time.monotonic()

        logger.debug(f"Executing (sync): {shlex.join(argv)} (timeout={timeout}s)")

        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=env,
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError(argv[0], env.get("PATH")) from e
        except OSError as e:
            raise CommandFailedError(shlex.join(argv), str(e)) from e

        timed_out = False
        try:
            output, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.warning(f"Command timed out after {timeout}s: {shlex.join(argv)}")
            output = self._terminate_sync(proc)

        duration_ms = (time.monotonic() - start) * 1000
        result = CommandResult(
            command=argv,
            output=(output or b"").decode("utf-8", errors="replace"),
            returncode=proc.returncode,
            timed_out=timed_out,
            duration_ms=duration_ms,
        )
        self._record(result)
        return result

    @staticmethod
    async def _drain(stream: asyncio.StreamReader, chunks: List[bytes]) -> None:
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            chunks.append(chunk)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL after the grace period."""
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace_period)
        except asyncio.TimeoutError:
            logger.warning(f"Process {proc.pid} ignored SIGTERM, sending SIGKILL")
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()

    def _terminate_sync(self, proc: subprocess.Popen) -> bytes:
        """SIGTERM, then SIGKILL; returns the output captured so far."""
        proc.terminate()
        try:
            output, _ = proc.communicate(timeout=self.kill_grace_period)
            return output or b""
        except subprocess.TimeoutExpired:
            logger.warning(f"Process {proc.pid} ignored SIGTERM, sending SIGKILL")
            proc.kill()

        try:
            output, _ = proc.communicate(timeout=self.kill_grace_period + 0.5)
            return output or b""
        except subprocess.TimeoutExpired as e:
            # A grandchild still holds the pipe; give up on the rest of the output
            proc.stdout.close()
            proc.wait()
            return e.output or b""

    def _record(self, result: CommandResult) -> None:
        with self._stats_lock:
            self._call_count += 1
            self._total_duration_ms += result.duration_ms
            if result.timed_out:
                self._timeout_count += 1

        if result.returncode not in (0, None) and not result.timed_out:
            logger.debug(
                f"Command exited with {result.returncode}: {result.command_line} "
                f"output={result.output.strip()[:200]!r}"
            )

    def get_stats(self) -> dict:
        """Call statistics."""
        with self._stats_lock:
            calls = self._call_count
            timeouts = self._timeout_count
            total = self._total_duration_ms
        return {
            "calls": calls,
            "timeouts": timeouts,
            "total_duration_ms": round(total, 2),
            "avg_duration_ms": round(total / calls, 2) if calls else 0.0,
        }
