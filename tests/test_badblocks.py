"""Tests for the destructive write test supervisor."""
import asyncio
import io
import itertools
import sys

import pytest

from newdisk_check.badblocks import DestructiveWriteSupervisor, compute_progress, format_eta


class FakeStream:
    """Async stand-in for a process pipe, read by line or by chunk."""

    def __init__(self, lines):
        self._lines = list(lines)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._lines:
            raise StopAsyncIteration
        await asyncio.sleep(0)
        return self._lines.pop(0)

    async def read(self, n=-1):
        await asyncio.sleep(0)
        return self._lines.pop(0) if self._lines else b""


class FakeProcess:
    """Process that exits when finish() is called."""

    def __init__(self, returncode=0, stdout_lines=None, stderr_chunks=None):
        self.pid = 4242
        self.returncode = None
        self.stdout = FakeStream(stdout_lines) if stdout_lines is not None else None
        self.stderr = FakeStream(stderr_chunks) if stderr_chunks is not None else None
        self._final = returncode
        self._exited = asyncio.Event()

    def finish(self):
        self._exited.set()

    async def wait(self):
        await self._exited.wait()
        self.returncode = self._final
        return self._final


def test_eta_is_linear_from_start():
    """250 of 1000 bytes after 30s leaves 90s."""
    progress = compute_progress(total_bytes=1000, written_bytes=250, elapsed_seconds=30)
    assert progress.eta_seconds == 90
    assert progress.percent == 25


def test_percent_truncates():
    assert compute_progress(1000, 999, 100).percent == 99
    assert compute_progress(1000, 1000, 100).percent == 100


@pytest.mark.parametrize(
    "seconds,expected",
    [(0, "00:00:00"), (90, "00:01:30"), (3661, "01:01:01"), (360000, "100:00:00"), (-5, "00:00:00")],
)
def test_format_eta(seconds, expected):
    assert format_eta(seconds) == expected


def make_supervisor(tools, reporter, process, writes, terminal=None):
    """Build a supervisor whose process exits once all writes are sampled."""
    samples = list(writes)

    def read_write_bytes(pid):
        assert pid == process.pid
        value = samples.pop(0) if samples else None
        if not samples:
            process.finish()
        return value

    async def launch(cmd):
        launch.cmd = cmd
        return process

    tools.read_write_bytes = read_write_bytes
    tools.badblocks_command = lambda device, block_size: ["badblocks", "-b", str(block_size), "-wsv", device]
    supervisor = DestructiveWriteSupervisor(
        tools,
        reporter,
        poll_interval=0,
        clock=itertools.count(0, 30).__next__,
        launch=launch,
        terminal=terminal or io.StringIO(),
    )
    return supervisor, launch


class TestSupervisor:
    """Test progress sampling and exit handling."""

    @pytest.mark.asyncio
    async def test_reports_progress_until_exit(self, tools, reporter, caplog):
        process = FakeProcess(returncode=0)
        supervisor, launch = make_supervisor(tools, reporter, process, [250, 500])

        assert await supervisor.supervise("/dev/sdb", 1000) == 0
        assert launch.cmd == ["badblocks", "-b", "4096", "-wsv", "/dev/sdb"]
        assert "Badblocks progress: 25%   ETA: 00:01:30" in caplog.text
        assert "Badblocks progress: 50%   ETA: 00:01:00" in caplog.text
        assert supervisor.latest.written_bytes == 500
        assert supervisor.samples == 2

    @pytest.mark.asyncio
    async def test_zero_writes_are_not_reported(self, tools, reporter, caplog):
        process = FakeProcess(returncode=0)
        supervisor, _ = make_supervisor(tools, reporter, process, [None, 0, 0])

        await supervisor.supervise("/dev/sdb", 1000)
        assert "Badblocks progress" not in caplog.text
        assert supervisor.latest is None

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_returned(self, tools, reporter):
        process = FakeProcess(returncode=1)
        supervisor, _ = make_supervisor(tools, reporter, process, [100])
        assert await supervisor.supervise("/dev/sdb", 1000) == 1

    @pytest.mark.asyncio
    async def test_bad_blocks_are_relayed_in_full(self, tools, reporter, caplog):
        lines = [b"1024\n", b"1025\n", b"\n", b"70000001\n"]
        process = FakeProcess(returncode=0, stdout_lines=lines)
        supervisor, _ = make_supervisor(tools, reporter, process, [100, 200, 300])

        await supervisor.supervise("/dev/sdb", 1000)
        relayed = [r.getMessage() for r in caplog.records if r.getMessage().startswith("badblocks: ")]
        assert relayed == ["badblocks: 1024", "badblocks: 1025", "badblocks: 70000001"]

    @pytest.mark.asyncio
    async def test_pass_messages_are_logged(self, tools, reporter, caplog):
        """Summary lines on stderr reach the log; progress redraws do not."""
        chunks = [
            b"Checking for bad blocks in read-write mode\nFrom block 0 to 1953506645\n",
            b"Testing with pattern 0xaa:   0.01% done, 0:02 elapsed. (0/0/0 errors)",
            b"\b" * 48 + b"  12.50% done, 1:10:02 elapsed. (0/0/0 errors)",
            b"\b" * 48 + b"done                                                 \n",
            b"Reading and comparing: done                                                 \n",
            b"Pass completed, 2 bad blocks found. (0/2/0 errors)\n",
        ]
        terminal = io.StringIO()
        process = FakeProcess(returncode=0, stderr_chunks=chunks)
        supervisor, _ = make_supervisor(tools, reporter, process, [100, 200], terminal=terminal)

        await supervisor.supervise("/dev/sdb", 1000)
        logged = [r.getMessage() for r in caplog.records]
        assert "badblocks: Checking for bad blocks in read-write mode" in logged
        assert "badblocks: From block 0 to 1953506645" in logged
        assert "badblocks: Pass completed, 2 bad blocks found. (0/2/0 errors)" in logged
        assert not any("% done" in message for message in logged)
        assert "12.50% done, 1:10:02 elapsed." in terminal.getvalue()

    @pytest.mark.asyncio
    async def test_unterminated_message_is_logged_at_exit(self, tools, reporter, caplog):
        process = FakeProcess(returncode=1, stderr_chunks=[b"badblocks: Device or resource busy while trying to open"])
        supervisor, _ = make_supervisor(tools, reporter, process, [None])

        assert await supervisor.supervise("/dev/sdb", 1000) == 1
        assert "badblocks: badblocks: Device or resource busy while trying to open" in caplog.text

    @pytest.mark.asyncio
    async def test_monitor_stops_with_process(self, tools, reporter):
        """No task is left sampling once the process has exited."""
        process = FakeProcess(returncode=0)
        supervisor, _ = make_supervisor(tools, reporter, process, [100])
        await supervisor.supervise("/dev/sdb", 1000)

        pending = [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]
        assert pending == []


def test_run_with_real_process(tools, reporter, caplog):
    """run() drives an actual child process to completion."""
    script = (
        "import sys; print('4096'); sys.stdout.flush(); "
        "sys.stderr.write('Pass completed, 1 bad blocks found. (1/0/0 errors)\\n'); sys.exit(3)"
    )
    tools.badblocks_command = lambda device, block_size: [sys.executable, "-c", script]
    tools.read_write_bytes = lambda pid: None
    supervisor = DestructiveWriteSupervisor(tools, reporter, poll_interval=0.01, terminal=io.StringIO())

    assert supervisor.run("/dev/sdb", 1000) == 3
    assert "badblocks: 4096" in caplog.text
    assert "badblocks: Pass completed, 1 bad blocks found." in caplog.text
