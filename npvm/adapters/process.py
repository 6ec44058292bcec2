"""Subprocess helpers shared by the package-manager adapters.

Commands are always spawned with ``create_subprocess_exec`` (no shell), so
caller-supplied names only ever become single argv entries.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import structlog

from npvm.exceptions import ExecutionError

log = structlog.get_logger("npvm.process")

_READ_CHUNK = 4096


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


@dataclass
class OutputChunk:
    """A piece of stdout/stderr, delivered while the process is still running."""

    stream: Literal["stdout", "stderr"]
    text: str


@dataclass
class ProcessExit:
    """Terminal event of :func:`stream_command`. Always the last item yielded."""

    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


ProcessEvent = OutputChunk | ProcessExit


async def _spawn(args: list[str], cwd: str | Path | None) -> asyncio.subprocess.Process:
    try:
        return await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError, NotADirectoryError) as exc:
        raise ExecutionError(f"cannot execute {args[0]}: {exc}", command=args) from exc


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()


async def run_command(
    args: list[str],
    cwd: str | Path | None = None,
    *,
    timeout: float | None = None,
    check: bool = True,
) -> CommandResult:
    """Run *args* to completion and capture its output.

    Raises ``ExecutionError`` when the binary is missing, on *timeout*, and (with
    *check*) on a non-zero exit code.
    """
    proc = await _spawn(args, cwd)
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        await _kill(proc)
        raise ExecutionError(
            f"{args[0]} timed out after {timeout}s", command=args
        ) from exc

    result = CommandResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if check and result.returncode != 0:
        raise ExecutionError(
            f"{' '.join(args[:2])} failed (exit {result.returncode}): {result.stderr.strip()}",
            command=args,
            returncode=result.returncode,
            stderr=result.stderr,
        )
    return result


async def stream_command(
    args: list[str],
    cwd: str | Path | None = None,
) -> AsyncIterator[ProcessEvent]:
    """Yield output chunks as they arrive, then a single :class:`ProcessExit`.

    stdout and stderr are drained concurrently so neither pipe can fill up and
    stall the child. Closing the iterator early kills the process.
    """
    proc = await _spawn(args, cwd)
    queue: asyncio.Queue[OutputChunk | None] = asyncio.Queue()

    async def _pump(reader: asyncio.StreamReader | None, name: Literal["stdout", "stderr"]) -> None:
        # A multi-byte character may straddle two reads.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            if reader is None:
                return
            while True:
                data = await reader.read(_READ_CHUNK)
                text = decoder.decode(data, final=not data)
                if text:
                    await queue.put(OutputChunk(name, text))
                if not data:
                    break
        finally:
            await queue.put(None)

    pumps = [
        asyncio.create_task(_pump(proc.stdout, "stdout")),
        asyncio.create_task(_pump(proc.stderr, "stderr")),
    ]
    try:
        open_streams = len(pumps)
        while open_streams:
            chunk = await queue.get()
            if chunk is None:
                open_streams -= 1
                continue
            yield chunk
        returncode = await proc.wait()
        log.debug("process.exited", command=args[:2], returncode=returncode)
        yield ProcessExit(returncode)
    finally:
        for task in pumps:
            task.cancel()
        await _kill(proc)
