# mediabridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Subprocess helpers for the media-control binary.

ExternalProcessStream owns one long-running helper process and exposes its
stdout as an async iterator of text lines:

    stream = ExternalProcessStream()
    async for line in stream.start("/opt/homebrew/bin/media-control",
                                   ["stream", "--no-diff"]):
        ...
    stream.terminate()

A stream is single-use — once exhausted, construct a new instance to
restart.  A non-zero exit raises ExecutionFailed from the iterator.

run_process() is the one-shot variant used for playback commands.
"""

import asyncio
import codecs
import logging
import os

from .errors import ExecutionFailed, StreamFailure

logger = logging.getLogger("media-bridge.process")

HELPER_PATHS = [
    "/opt/homebrew/bin/media-control",  # Apple Silicon
    "/usr/local/bin/media-control",     # Intel
]

CHUNK_SIZE = 4096


def find_executable(paths) -> str | None:
    """Return the first path that exists and is executable."""
    for path in paths:
        if path and os.path.isfile(path) and os.access(path, os.X_OK):
            return path
    return None


class ExternalProcessStream:
    """Line-oriented reader over one helper subprocess."""

    def __init__(self):
        self._proc: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None
        self._stderr_chunks: list[bytes] = []
        self._started = False
        self._terminated = False

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    def start(self, executable: str, args=()):
        """Return an async iterator over the process' stdout lines."""
        if self._started:
            raise RuntimeError("ExternalProcessStream is single-use; create a new one")
        self._started = True
        return self._lines(executable, list(args))

    async def _lines(self, executable, args):
        try:
            self._proc = await asyncio.create_subprocess_exec(
                executable, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise StreamFailure(f"Could not start {executable}: {e}") from e

        logger.debug("Started %s %s (pid %d)", executable, " ".join(args), self._proc.pid)
        self._stderr_task = asyncio.create_task(self._drain_stderr(self._proc.stderr))
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""

        try:
            while True:
                chunk = await self._proc.stdout.read(CHUNK_SIZE)
                if not chunk:
                    break
                buffer += decoder.decode(chunk)
                while "\n" in buffer:
                    line, buffer = buffer.split("\n", 1)
                    line = line.rstrip("\r")
                    if line:
                        yield line

            # Flush whatever the process wrote without a final newline
            buffer += decoder.decode(b"", final=True)
            if buffer.strip():
                yield buffer.rstrip("\r\n")

            returncode = await self._proc.wait()
            if returncode != 0 and not self._terminated:
                if self._stderr_task:
                    await self._stderr_task
                stderr_text = b"".join(self._stderr_chunks).decode("utf-8", errors="replace")
                raise ExecutionFailed(returncode, stderr_text)
        finally:
            self.terminate()

    async def _drain_stderr(self, reader):
        while True:
            chunk = await reader.read(CHUNK_SIZE)
            if not chunk:
                return
            self._stderr_chunks.append(chunk)

    def terminate(self):
        """Kill the process and stop line delivery. Safe to call repeatedly."""
        self._terminated = True
        proc = self._proc
        if proc is not None and proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            logger.debug("Terminated helper (pid %d)", proc.pid)
        if self._stderr_task and not self._stderr_task.done():
            self._stderr_task.cancel()


async def run_process(executable: str, args=()) -> str:
    """Run a command to completion and return its stdout.

    Raises ExecutionFailed when the exit code is non-zero.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            executable, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise StreamFailure(f"Could not start {executable}: {e}") from e
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise ExecutionFailed(proc.returncode, stderr.decode("utf-8", errors="replace"))
    return stdout.decode("utf-8", errors="replace")
