"""Run one scanning engine as a bounded child process.

The child gets its own session (process group) so that a forced kill also
takes down any helpers it spawned. Output is read in chunks and capped;
exceeding the cap or the wall-clock timeout kills the whole group.
"""

import asyncio
import contextlib
import logging
import os
import signal
import time
from collections.abc import Collection, Sequence
from dataclasses import dataclass
from pathlib import Path

from app.core.errors import AdapterError, ToolOutputLimitError, ToolTimeoutError

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024
# Stderr is only kept for diagnostics.
_STDERR_TAIL_BYTES = 4096


@dataclass(frozen=True)
class ProcessOutput:
    """Captured result of a finished child process."""

    returncode: int
    stdout: bytes
    stderr: bytes
    duration_ms: int

    @property
    def stderr_tail(self) -> str:
        return self.stderr[-_STDERR_TAIL_BYTES:].decode("utf-8", errors="replace").strip()


async def _read_capped(stream: asyncio.StreamReader, limit: int, name: str) -> bytes:
    buf = bytearray()
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return bytes(buf)
        buf.extend(chunk)
        if len(buf) > limit:
            raise ToolOutputLimitError(f"{name} exceeded {limit} bytes")


async def _read_tail(stream: asyncio.StreamReader) -> bytes:
    tail = bytearray()
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return bytes(tail)
        tail.extend(chunk)
        if len(tail) > _STDERR_TAIL_BYTES:
            del tail[: len(tail) - _STDERR_TAIL_BYTES]


def _force_kill(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the child's process group; fall back to the child alone."""
    if proc.returncode is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError):
        with contextlib.suppress(ProcessLookupError):
            proc.kill()


async def run_bounded_process(
    argv: Sequence[str],
    *,
    cwd: str | os.PathLike[str],
    timeout: float,
    max_output_bytes: int,
    accepted_exit_codes: Collection[int] | None = (0,),
) -> ProcessOutput:
    """
    Run argv to completion inside cwd and return its output.

    Raises ToolTimeoutError after killing the process when it runs past
    timeout, ToolOutputLimitError when stdout grows past max_output_bytes,
    and AdapterError when it cannot be started or exits with a code outside
    accepted_exit_codes (None accepts any exit code).
    """
    start = time.perf_counter()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=os.fspath(Path(cwd)),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        raise AdapterError(f"Failed to start {argv[0]}: {e}", cause=e) from e

    async def _communicate() -> tuple[bytes, bytes, int]:
        assert proc.stdout is not None and proc.stderr is not None
        stdout_task = asyncio.ensure_future(_read_capped(proc.stdout, max_output_bytes, "stdout"))
        stderr_task = asyncio.ensure_future(_read_tail(proc.stderr))
        try:
            stdout, stderr = await asyncio.gather(stdout_task, stderr_task)
        except BaseException:
            stdout_task.cancel()
            stderr_task.cancel()
            raise
        returncode = await proc.wait()
        return stdout, stderr, returncode

    try:
        stdout, stderr, returncode = await asyncio.wait_for(_communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        _force_kill(proc)
        await proc.wait()
        raise ToolTimeoutError(
            f"{argv[0]} exceeded {timeout:.0f}s and was killed", cause=e
        ) from e
    except ToolOutputLimitError:
        _force_kill(proc)
        await proc.wait()
        raise
    except BaseException:
        # Cancellation from above: never leave the engine running.
        _force_kill(proc)
        raise

    duration_ms = int((time.perf_counter() - start) * 1000)
    output = ProcessOutput(
        returncode=returncode,
        stdout=stdout,
        stderr=stderr,
        duration_ms=duration_ms,
    )
    if accepted_exit_codes is not None and returncode not in accepted_exit_codes:
        raise AdapterError(
            f"{argv[0]} exited with code {returncode}: {output.stderr_tail[:500]}"
        )
    return output
