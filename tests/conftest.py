"""Common fixtures for newdisk_check tests."""
import logging
import subprocess

import pytest

from newdisk_check.models import DeviceHandle, RunMode, Timings
from newdisk_check.output import Reporter
from newdisk_check.stages import PipelineContext

BY_ID = "/dev/disk/by-id/ata-WDC_WD80EFAX-68KNBN0_VAGXXXXX"

WRITE_OPERATIONS = {"badblocks", "wipe_signatures"}


class FakeTools:
    """Stand-in for DiskTools that records every call."""

    def __init__(self):
        self.calls = []
        self.block_devices = {"/dev/sdb"}
        self.realpaths = {}
        self.aliases = {"/dev/sdb": BY_ID}
        self.lsblk = "NAME SIZE TYPE\nsda  20G disk\nsdb 7.3T disk\n"
        self.pool_text = ""
        self.pool_error = None
        self.zoned = False
        self.identity = ("WDC WD80EFAX-68KNBN0", "5400 rpm")
        self.running = []
        self.report = "SMART overall-health self-assessment test result: PASSED\n"
        self.self_test_returncode = 0
        self.self_test_error = None
        self.capacity = 8001563222016
        self.wipe_returncode = 0
        self.wipe_error = None

    def _record(self, *call):
        self.calls.append(call)

    def called(self, name):
        return [call for call in self.calls if call[0] == name]

    def is_block_device(self, path):
        self._record("is_block_device", path)
        return path in self.block_devices

    def resolve(self, path):
        self._record("resolve", path)
        return self.realpaths.get(path, path)

    def find_persistent_alias(self, canonical_path):
        self._record("find_persistent_alias", canonical_path)
        return self.aliases.get(canonical_path)

    def list_block_devices(self):
        self._record("list_block_devices")
        return self.lsblk

    def capacity_bytes(self, device):
        self._record("capacity_bytes", device)
        return self.capacity

    def pool_status(self):
        self._record("pool_status")
        if self.pool_error:
            raise self.pool_error
        return self.pool_text

    def reports_zoned(self, device):
        self._record("reports_zoned", device)
        return self.zoned

    def smart_identity(self, device):
        self._record("smart_identity", device)
        return self.identity

    def smart_report(self, device):
        self._record("smart_report", device)
        return self.report

    def running_self_test(self, device):
        self._record("running_self_test", device)
        if self.running:
            return self.running.pop(0)
        return None

    def start_self_test(self, device, kind):
        self._record("start_self_test", device, kind)
        if self.self_test_error:
            raise self.self_test_error
        return subprocess.CompletedProcess(["smartctl", "-t", kind, device], self.self_test_returncode, "", "")

    def wipe_signatures(self, device):
        self._record("wipe_signatures", device)
        if self.wipe_error:
            raise self.wipe_error
        return subprocess.CompletedProcess(["wipefs", "-af", device], self.wipe_returncode, "", "wipefs: error")


class Prompter:
    """Scripted answers for interactive prompts."""

    def __init__(self, answers=()):
        self.answers = list(answers)
        self.questions = []

    def __call__(self, question):
        self.questions.append(question)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {question}")
        return self.answers.pop(0)


@pytest.fixture
def tools():
    """Return a fake DiskTools."""
    return FakeTools()


@pytest.fixture
def reporter(caplog):
    """Return a Reporter whose records reach caplog."""
    logger = logging.getLogger("tests.newdisk_check")
    logger.setLevel(logging.INFO)
    caplog.set_level(logging.INFO, logger="tests.newdisk_check")
    return Reporter(logger)


@pytest.fixture
def make_ctx(tools, reporter):
    """Build a PipelineContext with scripted prompts and no real sleeping."""

    def _make(path="/dev/sdb", mode=RunMode.INTERACTIVE, answers=(), identified=False):
        sleeps = []
        ctx = PipelineContext(
            requested_path=path,
            mode=mode,
            reporter=reporter,
            tools=tools,
            timings=Timings(self_test_poll=60, short_test_grace=120, progress_poll=0),
            prompt=Prompter(answers),
            sleep=sleeps.append,
        )
        ctx.sleeps = sleeps
        if identified:
            ctx.device = DeviceHandle(path, path, tools.aliases.get(path, path))
        return ctx

    return _make


@pytest.fixture
def fake_badblocks(monkeypatch):
    """Replace the write-test supervisor with one that exits immediately."""

    class FakeSupervisor:
        returncode = 0
        runs = []

        def __init__(self, tools, reporter, poll_interval, clock):
            self.tools = tools

        def run(self, device, total_bytes):
            self.tools.calls.append(("badblocks", device, total_bytes))
            FakeSupervisor.runs.append((device, total_bytes))
            return FakeSupervisor.returncode

    FakeSupervisor.runs = []
    monkeypatch.setattr("newdisk_check.stages.DestructiveWriteSupervisor", FakeSupervisor)
    return FakeSupervisor
