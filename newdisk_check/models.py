"""Data types shared by the validation stages"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RunMode(Enum):
    """How far the pipeline is allowed to go"""

    INTERACTIVE = "interactive"
    SAFE = "safe"


@dataclass(frozen=True)
class DeviceHandle:
    """Identity of the device under test

    stable_id is a /dev/disk/by-id alias when one resolves to the device,
    otherwise it falls back to canonical_path.
    """

    requested_path: str
    canonical_path: str
    stable_id: str

    @property
    def has_persistent_alias(self) -> bool:
        return self.stable_id != self.canonical_path


class MediaType(Enum):
    """Write-mapping characteristic of the drive"""

    ZONED_LIKELY = "Likely SMR (zoned device)"
    KNOWN_SMR_MODEL = "Known SMR model"
    CONVENTIONAL_ASSUMED = "Likely CMR"


@dataclass(frozen=True)
class ClassificationResult:
    model: str
    rotation: str
    media: MediaType


class SelfTestState(Enum):
    NONE = "none"
    IN_PROGRESS = "in progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class DestructiveRunProgress:
    """One sample of the destructive write test

    eta_seconds is a linear extrapolation from the start of the run, so the
    first samples can be far off. A moving-window estimator would settle
    faster but is not what is reported.
    """

    total_bytes: int
    written_bytes: int
    elapsed_seconds: int
    eta_seconds: int

    @property
    def percent(self) -> int:
        return self.written_bytes * 100 // self.total_bytes


class Outcome(Enum):
    """Result of a stage or of the whole pipeline"""

    PROCEED = "proceed"
    FINISHED = "finished"
    DECLINED = "declined"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineResult:
    outcome: Outcome
    stage: str | None = None
    error: Exception | None = None

    @property
    def exit_code(self) -> int:
        return 1 if self.outcome is Outcome.FAILED else 0


@dataclass(frozen=True)
class Timings:
    """Polling intervals and waits, in seconds"""

    self_test_poll: float = 60
    short_test_grace: float = 120
    progress_poll: float = 30
