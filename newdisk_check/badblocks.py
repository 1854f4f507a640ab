"""Destructive write test supervision

badblocks runs as a child process. While the main task waits for it to exit,
a monitor task samples write_bytes from /proc/<pid>/io and reports percent
complete and an ETA. Relay tasks pass the bad block list from stdout and the
pass messages from stderr to the Reporter so nothing badblocks finds is lost;
its in-place progress redraws go to the terminal only.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
import sys
import time
from collections.abc import Awaitable, Callable
from typing import Any, TextIO

from .models import DestructiveRunProgress
from .output import Reporter
from .system import DiskTools

BADBLOCKS_PASSES = 4  # -w writes and verifies four patterns
BADBLOCKS_BLOCK_SIZE = 4096
GIB = 1024 * 1024 * 1024

PROGRESS_MARK = "% done"


def compute_progress(total_bytes: int, written_bytes: int, elapsed_seconds: int) -> DestructiveRunProgress:
    """Extrapolate the time remaining from the average rate since the start"""
    eta_seconds = elapsed_seconds * total_bytes // written_bytes - elapsed_seconds
    return DestructiveRunProgress(
        total_bytes=total_bytes,
        written_bytes=written_bytes,
        elapsed_seconds=elapsed_seconds,
        eta_seconds=eta_seconds,
    )


def format_eta(seconds: int) -> str:
    seconds = max(seconds, 0)
    return f"{seconds // 3600:02d}:{seconds % 3600 // 60:02d}:{seconds % 60:02d}"


async def launch_subprocess(cmd: list[str]) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


class DestructiveWriteSupervisor:
    """Run badblocks -w and report its progress until it exits"""

    def __init__(
        self,
        tools: DiskTools,
        reporter: Reporter,
        poll_interval: float = 30,
        clock: Callable[[], float] = time.monotonic,
        launch: Callable[[list[str]], Awaitable[Any]] = launch_subprocess,
        terminal: TextIO | None = None,
    ) -> None:
        self.tools = tools
        self.reporter = reporter
        self.poll_interval = poll_interval
        self.clock = clock
        self.launch = launch
        self.terminal = terminal or sys.stderr
        self.latest: DestructiveRunProgress | None = None
        self.samples = 0

    def run(self, device: str, total_bytes: int) -> int:
        """Block until badblocks exits and return its exit status"""
        return asyncio.run(self.supervise(device, total_bytes))

    async def supervise(self, device: str, total_bytes: int) -> int:
        cmd = self.tools.badblocks_command(device, BADBLOCKS_BLOCK_SIZE)
        self.reporter.info(f"Running: {' '.join(cmd)}")
        process = await self.launch(cmd)
        started = self.clock()

        relays = []
        if getattr(process, "stdout", None) is not None:
            relays.append(asyncio.create_task(self._relay_output(process.stdout)))
        if getattr(process, "stderr", None) is not None:
            relays.append(asyncio.create_task(self._relay_messages(process.stderr)))
        monitor = asyncio.create_task(self._monitor(process, total_bytes, started))

        try:
            returncode = await process.wait()
        finally:
            monitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await monitor

        await asyncio.gather(*relays)
        return returncode

    async def _monitor(self, process: Any, total_bytes: int, started: float) -> None:
        while process.returncode is None:
            written = self.tools.read_write_bytes(process.pid)
            if written:
                elapsed = int(self.clock() - started)
                self.latest = compute_progress(total_bytes, written, elapsed)
                self.samples += 1
                self.reporter.info(
                    f"Badblocks progress: {self.latest.percent}%   ETA: {format_eta(self.latest.eta_seconds)}"
                )
            await asyncio.sleep(self.poll_interval)

    async def _relay_output(self, stream: asyncio.StreamReader) -> None:
        async for raw in stream:
            line = raw.decode(errors="replace").rstrip()
            if line:
                self.reporter.warn(f"badblocks: {line}")

    async def _relay_messages(self, stream: asyncio.StreamReader) -> None:
        pending = ""
        while True:
            chunk = await stream.read(1024)
            if not chunk:
                break
            pending = self._emit_messages(pending + chunk.decode(errors="replace"))
        self._emit_messages(pending + "\n")

    def _emit_messages(self, text: str) -> str:
        """Report complete stderr lines, echo redraws, return the unfinished tail"""
        parts = re.split(r"([\r\n\b])", text)
        for segment, separator in zip(parts[0:-1:2], parts[1::2]):
            line = segment.strip()
            if separator == "\n" and line and PROGRESS_MARK not in line:
                self.reporter.info(f"badblocks: {line}")
            elif segment or separator != "\n":
                self.terminal.write(segment + separator)
        self.terminal.flush()
        return parts[-1]
