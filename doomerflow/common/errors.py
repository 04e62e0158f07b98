from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence


class DoomerFlowError(RuntimeError):
    pass


class SetupFailure(DoomerFlowError):
    """
    Fatal to the whole run: missing tool, cancelled prompt, unwritable
    output directory or an input file that cannot be decoded.
    """


# =============================================================================
# JOB-LOCAL FAILURES
# =============================================================================

class JobFailure(DoomerFlowError):
    """Fatal to one mix only. Caught at the MixJob boundary."""

    def __init__(self, stage: str, reason: str):
        super().__init__(f"[{stage}] {reason}")
        self.stage = stage
        self.reason = reason


class DurationFailure(JobFailure):
    def __init__(self, stage: str = "probeDuration", detail: Optional[str] = None):
        super().__init__(stage, "invalid-duration")
        self.detail = detail


class ToolFailure(JobFailure):
    def __init__(self, stage: str, exit_status: int, captured_output: str = ""):
        super().__init__(stage, f"tool exited with status {exit_status}")
        self.exit_status = exit_status
        self.captured_output = captured_output


class ValidationFailure(JobFailure):
    def __init__(self, stage: str, path: Path, reason: str):
        super().__init__(stage, f"{reason}: {path}")
        self.path = path
        self.kind = reason


class FallbackExhausted(JobFailure):
    """Every strategy for a stage failed; `failures` keeps them in order."""

    def __init__(self, stage: str, failures: Sequence[JobFailure]):
        detail = "; ".join(f.reason for f in failures)
        super().__init__(stage, f"all {len(failures)} strategies failed ({detail})")
        self.failures = list(failures)
