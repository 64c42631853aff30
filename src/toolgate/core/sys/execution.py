"""Command execution with hard deadlines.

Provides:
- CommandResult with the combined stdout/stderr rendering
- SandboxProtocol for process runners
- LocalSandbox, which runs a command string through a single ``/bin/sh -c``
- CommandExecutor, which maps raw outcomes onto the error taxonomy

The shell is used only for PATH lookup and argv splitting. Callers must have
validated the command first; the validator already forbids every operator
that would let the shell compose commands.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

import psutil

from toolgate.core.console import get_logger
from toolgate.core.result import Err, ExecutionFailure, ExecutionTimeout, Ok, Result

logger = get_logger(__name__)

SHELL = "/bin/sh"
DEFAULT_TIMEOUT = 30.0

# Time allowed for pipes to drain after the process tree was killed.
_KILL_GRACE = 2.0
_READ_CHUNK = 4096


@dataclass(slots=True)
class CommandResult:
    """Result of a shell command execution."""

    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def output(self) -> str:
        """Stdout, then stderr on its own line; never interleaved."""
        combined = self.stdout
        if self.stderr:
            if combined:
                combined += "\n"
            combined += self.stderr
        return combined

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0


class SandboxProtocol(Protocol):
    """Protocol for command runners."""

    async def run_command(
        self,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Result[CommandResult, ExecutionFailure]: ...


async def _drain(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    if stream is None:
        return
    while chunk := await stream.read(_READ_CHUNK):
        sink.extend(chunk)


def _kill_tree(pid: int) -> None:
    """Kill a process and every descendant it spawned."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    try:
        procs = parent.children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        procs = []
    procs.append(parent)
    for proc in procs:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue


class LocalSandbox:
    """Execute commands on the local system through one shell process."""

    async def run_command(
        self,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Result[CommandResult, ExecutionFailure]:
        try:
            proc = await asyncio.create_subprocess_exec(
                SHELL,
                "-c",
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(env) if env is not None else None,
            )
        except OSError as exc:
            return Err(ExecutionFailure(f"failed to start command: {exc}", exit_code=None))

        logger.debug("spawned pid %s: %s", proc.pid, command)
        stdout_buf = bytearray()
        stderr_buf = bytearray()
        drain = asyncio.gather(_drain(proc.stdout, stdout_buf), _drain(proc.stderr, stderr_buf))
        timed_out = False

        try:
            done, _ = await asyncio.wait({drain}, timeout=timeout)
            if not done:
                timed_out = True
                logger.warning("command timed out after %ss: %s", timeout, command)
                await asyncio.to_thread(_kill_tree, proc.pid)
                try:
                    await asyncio.wait_for(drain, _KILL_GRACE)
                except asyncio.TimeoutError:
                    logger.debug("pipes still open after kill: %s", command)
            returncode = await proc.wait()
        except asyncio.CancelledError:
            await asyncio.to_thread(_kill_tree, proc.pid)
            drain.cancel()
            raise

        return Ok(
            CommandResult(
                returncode=None if timed_out else returncode,
                stdout=stdout_buf.decode(errors="replace"),
                stderr=stderr_buf.decode(errors="replace"),
                timed_out=timed_out,
            )
        )


class CommandExecutor:
    """Run validated commands under a wall-clock deadline.

    ``capture`` returns the raw outcome (help probes ignore exit codes);
    ``run`` maps it onto ExecutionTimeout / ExecutionFailure. Both keep the
    captured output: a timeout never discards what was already written.
    """

    def __init__(
        self,
        sandbox: SandboxProtocol | None = None,
        *,
        default_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.sandbox: SandboxProtocol = sandbox or LocalSandbox()
        self.default_timeout = default_timeout

    async def capture(
        self,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Result[CommandResult, ExecutionFailure]:
        return await self.sandbox.run_command(
            command, env=env, timeout=self.default_timeout if timeout is None else timeout
        )

    async def run(
        self,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Result[str, ExecutionTimeout | ExecutionFailure]:
        deadline = self.default_timeout if timeout is None else timeout
        outcome = await self.capture(command, env=env, timeout=deadline)
        if isinstance(outcome, Err):
            return outcome

        result = outcome.value
        if result.timed_out:
            return Err(
                ExecutionTimeout(
                    f"command timed out after {deadline:g}s", output=result.output, timeout=deadline
                )
            )
        if result.returncode != 0:
            return Err(
                ExecutionFailure(
                    f"command failed: exit status {result.returncode}",
                    output=result.output,
                    exit_code=result.returncode,
                )
            )
        return Ok(result.output)


__all__ = [
    "DEFAULT_TIMEOUT",
    "SHELL",
    "CommandExecutor",
    "CommandResult",
    "LocalSandbox",
    "SandboxProtocol",
]
