"""Validation stages and the driver that runs them in order

Each stage takes the PipelineContext and either returns an Outcome or raises
a CheckError. run_pipeline stops at the first stage that does not return
Outcome.PROCEED, so nothing destructive runs after a failed check.
"""

from __future__ import annotations

import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from fnmatch import fnmatchcase

from .badblocks import BADBLOCKS_PASSES, GIB, DestructiveWriteSupervisor
from .errors import (
    AbortedByOperator,
    AlreadyInPool,
    CheckError,
    DestructiveTestFailed,
    DeviceNotFound,
    InvalidDeviceName,
    WipeFailed,
)
from .models import (
    ClassificationResult,
    DeviceHandle,
    MediaType,
    Outcome,
    PipelineResult,
    RunMode,
    SelfTestState,
    Timings,
)
from .output import Reporter
from .system import DiskTools, parse_pool_vdevs, vdev_matches

DEVICE_PATTERNS = ("/dev/sd*", "/dev/hd*", "/dev/vd*", "/dev/da*", "/dev/nvme*n*")

# Drive-managed SMR families that do not report zoning
KNOWN_SMR_MODELS = ("ST4000DM004", "ST8000DM004", "ST6000DM003", "ST6000DM004")

CONFIRM_TOKEN = "YES"


@dataclass
class PipelineContext:
    """State shared by the stages of one run"""

    requested_path: str
    mode: RunMode
    reporter: Reporter
    tools: DiskTools = field(default_factory=DiskTools)
    timings: Timings = field(default_factory=Timings)
    prompt: Callable[[str], str] = input
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic
    device: DeviceHandle | None = None
    classification: ClassificationResult | None = None
    self_test: SelfTestState = SelfTestState.NONE


def ask_yes_no(ctx: PipelineContext, question: str) -> bool:
    return ctx.prompt(f"{question} (y/N): ") in ("y", "Y")


# =============================================================================
# Device Identification
# =============================================================================


def is_allowed_device_name(path: str) -> bool:
    return any(fnmatchcase(path, pattern) for pattern in DEVICE_PATTERNS)


def identify_device(ctx: PipelineContext) -> Outcome:
    """Validate the device path and resolve its persistent identifier"""
    path = ctx.requested_path
    if not is_allowed_device_name(path):
        raise InvalidDeviceName(f"{path} does not look like a valid block device path.")

    if not ctx.tools.is_block_device(path):
        ctx.reporter.error(f"{path} does not exist or is not a block device.")
        ctx.reporter.info("Available block devices:")
        ctx.reporter.dump(ctx.tools.list_block_devices())
        raise DeviceNotFound(f"{path} does not exist or is not a block device.")

    ctx.reporter.good(f"Device exists: {path}")

    canonical = ctx.tools.resolve(path)
    alias = ctx.tools.find_persistent_alias(canonical)
    ctx.device = DeviceHandle(requested_path=path, canonical_path=canonical, stable_id=alias or canonical)

    ctx.reporter.info(f"Persistent identifier: {ctx.device.stable_id}")
    if not ctx.device.has_persistent_alias:
        ctx.reporter.warn(f"No /dev/disk/by-id alias found, using {canonical}")
    return Outcome.PROCEED


def check_pool_membership(ctx: PipelineContext) -> Outcome:
    """Refuse a device that already belongs to a ZFS pool

    Pools may name a member by any alias (by-id, wwn, by-partuuid), so each
    vdev is also resolved to its kernel name before comparing.
    """
    device = ctx.device
    identifiers = {device.stable_id, device.canonical_path}

    for vdev in parse_pool_vdevs(ctx.tools.pool_status()):
        candidates = {vdev, ctx.tools.resolve(vdev)}
        if any(vdev_matches(name, identifier) for name in candidates for identifier in identifiers):
            raise AlreadyInPool(f"Drive appears to be part of an existing ZFS pool ({vdev})!")

    ctx.reporter.good("Drive is not part of a zpool.")
    return Outcome.PROCEED


# =============================================================================
# Media Classification
# =============================================================================


def classify_media(ctx: PipelineContext) -> Outcome:
    """Report SMR/CMR characteristics; informational only"""
    device = ctx.device.canonical_path
    ctx.reporter.info("Detecting SMR / CMR characteristics...")

    model, rotation = ctx.tools.smart_identity(device)

    if ctx.tools.reports_zoned(device):
        media = MediaType.ZONED_LIKELY
    elif any(known in model for known in KNOWN_SMR_MODELS):
        media = MediaType.KNOWN_SMR_MODEL
    else:
        media = MediaType.CONVENTIONAL_ASSUMED

    ctx.classification = ClassificationResult(model=model, rotation=rotation, media=media)
    ctx.reporter.info(f"Model: {model}")
    ctx.reporter.info(f"Rotation Rate: {rotation}")
    ctx.reporter.warn(f"SMR Status: {media.value}")
    return Outcome.PROCEED


# =============================================================================
# SMART Self-Tests
# =============================================================================


class SelfTestSupervisor:
    """Wait out a running self-test, then run the short one"""

    def __init__(self, ctx: PipelineContext) -> None:
        self.ctx = ctx
        self.device = ctx.device.canonical_path
        self.polls = 0

    def wait_for_running_test(self) -> SelfTestState:
        ctx = self.ctx
        ctx.reporter.info("Checking for currently-running SMART tests...")
        progress = ctx.tools.running_self_test(self.device)
        if progress is None:
            ctx.reporter.good("No SMART tests currently running.")
            return SelfTestState.NONE

        ctx.self_test = SelfTestState.IN_PROGRESS
        ctx.reporter.warn("A SMART test is already running:")
        ctx.reporter.warn(progress)
        if not ask_yes_no(ctx, "Wait for it to finish?"):
            raise AbortedByOperator("Aborting because SMART test is already running.")

        ctx.reporter.info("Waiting for ongoing SMART test to complete...")
        while True:
            ctx.sleep(ctx.timings.self_test_poll)
            self.polls += 1
            progress = ctx.tools.running_self_test(self.device)
            if progress is None:
                ctx.reporter.good("SMART test finished.")
                return SelfTestState.COMPLETED
            ctx.reporter.info(f"Still running: {progress}")

    def start_test(self, kind: str) -> bool:
        """Start a self-test; failures are reported as warnings"""
        try:
            result = self.ctx.tools.start_self_test(self.device, kind)
        except (subprocess.SubprocessError, OSError) as e:
            self.ctx.reporter.warn(f"smartctl -t {kind} failed: {e}")
            return False
        if result.returncode != 0:
            self.ctx.reporter.warn(f"smartctl -t {kind} exited with status {result.returncode}")
            return False
        return True

    def run_short_test(self) -> SelfTestState:
        ctx = self.ctx
        ctx.reporter.info("Starting SMART SHORT test...")
        self.start_test("short")
        ctx.sleep(ctx.timings.short_test_grace)
        ctx.reporter.dump(ctx.tools.smart_report(self.device))
        return SelfTestState.COMPLETED

    def offer_long_test(self) -> None:
        """Start the long test and leave it running in the background"""
        ctx = self.ctx
        if not ask_yes_no(ctx, "Run SMART LONG test?"):
            return
        ctx.reporter.info("Starting SMART LONG test...")
        if not self.start_test("long"):
            return
        ctx.reporter.warn(f"Long test running in background. Check later with: smartctl -a {self.device}")


def run_self_tests(ctx: PipelineContext) -> Outcome:
    supervisor = SelfTestSupervisor(ctx)
    ctx.self_test = supervisor.wait_for_running_test()
    ctx.self_test = supervisor.run_short_test()
    supervisor.offer_long_test()
    return Outcome.PROCEED


# =============================================================================
# Destructive Stages
# =============================================================================


def confirm_destructive(ctx: PipelineContext) -> Outcome:
    """Stop in safe mode, otherwise require the operator to type YES"""
    if ctx.mode is RunMode.SAFE:
        ctx.reporter.warn("SAFE MODE enabled - destructive tests skipped.")
        return Outcome.FINISHED

    ctx.reporter.banner(
        [
            " DESTRUCTIVE TESTS IMMEDIATELY AHEAD",
            f" - badblocks -w will ERASE ALL DATA on {ctx.device.canonical_path}",
            " - wipefs -af will wipe ALL filesystem/ZFS signatures",
        ]
    )
    if ctx.prompt(f"Type {CONFIRM_TOKEN} to continue: ") != CONFIRM_TOKEN:
        ctx.reporter.warn("User aborted before destructive operations.")
        return Outcome.DECLINED
    return Outcome.PROCEED


def run_badblocks(ctx: PipelineContext) -> Outcome:
    """Run the four-pass write test and fail on a non-zero exit"""
    device = ctx.device.canonical_path
    try:
        size_bytes = ctx.tools.capacity_bytes(device)
    except (subprocess.SubprocessError, OSError, ValueError) as e:
        raise CheckError(f"Could not read the size of {device}: {e}") from e
    if size_bytes <= 0:
        raise CheckError(f"blockdev reports a size of {size_bytes} bytes for {device}")

    total_bytes = size_bytes * BADBLOCKS_PASSES
    ctx.reporter.info(f"Drive size: {size_bytes // GIB}GB")
    ctx.reporter.info(f"Estimated total write volume ({BADBLOCKS_PASSES} passes): {total_bytes // GIB}GB")

    ctx.reporter.info("Starting badblocks destructive write test...")
    supervisor = DestructiveWriteSupervisor(
        ctx.tools,
        ctx.reporter,
        poll_interval=ctx.timings.progress_poll,
        clock=ctx.clock,
    )
    try:
        returncode = supervisor.run(device, total_bytes)
    except OSError as e:
        raise CheckError(f"Could not start badblocks: {e}") from e
    if returncode != 0:
        raise DestructiveTestFailed(returncode)

    ctx.reporter.good("Badblocks test completed.")
    return Outcome.PROCEED


def wipe_signatures(ctx: PipelineContext) -> Outcome:
    device = ctx.device.canonical_path
    ctx.reporter.info("Clearing old filesystem/ZFS signatures...")
    try:
        result = ctx.tools.wipe_signatures(device)
    except (subprocess.SubprocessError, OSError) as e:
        raise WipeFailed(f"wipefs failed on {device}: {e}. Run 'wipefs -af {device}' manually.") from e
    if result.returncode != 0:
        detail = (result.stderr or "").strip() or f"exit status {result.returncode}"
        raise WipeFailed(f"wipefs failed on {device}: {detail}. Run 'wipefs -af {device}' manually.")
    ctx.reporter.good("wipefs completed.")
    return Outcome.PROCEED


# =============================================================================
# Pipeline
# =============================================================================

STAGES: tuple[Callable[[PipelineContext], Outcome], ...] = (
    identify_device,
    check_pool_membership,
    classify_media,
    run_self_tests,
    confirm_destructive,
    run_badblocks,
    wipe_signatures,
)


def run_pipeline(ctx: PipelineContext, stages=STAGES) -> PipelineResult:
    """Run stages in order and stop at the first one that does not proceed"""
    for stage in stages:
        try:
            outcome = stage(ctx)
        except CheckError as e:
            ctx.reporter.error(str(e))
            return PipelineResult(Outcome.FAILED, stage.__name__, e)
        if outcome is not Outcome.PROCEED:
            return PipelineResult(outcome, stage.__name__)

    ctx.reporter.good("Disk validation complete!")
    return PipelineResult(Outcome.COMPLETED)
