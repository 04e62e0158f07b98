from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ParameterTuple(BaseModel):
    """
    One mix = one (speed, reverb, lowpass) triple.

    Strict: "0.9" as a string is rejected here rather than deep inside a
    pipeline stage.
    """

    model_config = ConfigDict(frozen=True, strict=True)

    speed: float = Field(gt=0, le=4.0)
    reverb_amount: int = Field(ge=0, le=100)
    lowpass_hz: int = Field(gt=0)

    @property
    def mix_id(self) -> str:
        return f"{self.speed}_{self.reverb_amount}_{self.lowpass_hz}"

    def output_name(self, base_name: str, ext: str = "mp3") -> str:
        return f"{base_name}_speed{self.speed}_reverb{self.reverb_amount}_lowpass{self.lowpass_hz}.{ext}"


# =============================================================================
# OUTCOMES
# =============================================================================

@dataclass
class JobResult:
    ordinal: int
    params: ParameterTuple
    output: Path
    ok: bool
    stage: Optional[str] = None  # stage that failed
    reason: Optional[str] = None

    @property
    def mix_id(self) -> str:
        return self.params.mix_id


class RunOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    TOTAL_FAILURE = "total_failure"
    SINGLE_FAILURE = "single_failure"


@dataclass
class RunReport:
    output_dir: Path
    log_file: Optional[Path] = None
    successful: int = 0
    failed: int = 0
    results: list[JobResult] = field(default_factory=list)

    def add(self, result: JobResult) -> None:
        self.results.append(result)
        if result.ok:
            self.successful += 1
        else:
            self.failed += 1

    def finalize(self) -> "RunReport":
        self.results.sort(key=lambda r: r.ordinal)
        return self

    @property
    def total(self) -> int:
        return self.successful + self.failed

    @property
    def outcome(self) -> RunOutcome:
        if self.failed == 0:
            return RunOutcome.SUCCESS
        if self.successful > 0:
            return RunOutcome.PARTIAL
        if self.total == 1:
            return RunOutcome.SINGLE_FAILURE
        return RunOutcome.TOTAL_FAILURE

    def summary(self) -> str:
        log = str(self.log_file) if self.log_file else "console output"
        outcome = self.outcome
        if outcome is RunOutcome.SUCCESS:
            return f"{self.successful} succeeded. Mixes are in {self.output_dir}. Log: {log}"
        if outcome is RunOutcome.PARTIAL:
            return f"{self.successful} succeeded, {self.failed} failed, see log: {log}"
        if outcome is RunOutcome.SINGLE_FAILURE:
            return f"The mix failed, see log: {log}"
        return f"All {self.failed} mixes failed, see log: {log}"

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "successful": self.successful,
            "failed": self.failed,
            "output_dir": str(self.output_dir),
            "log_file": str(self.log_file) if self.log_file else None,
            "results": [
                {
                    "ordinal": r.ordinal,
                    "mix_id": r.mix_id,
                    "output": str(r.output),
                    "ok": r.ok,
                    "stage": r.stage,
                    "reason": r.reason,
                }
                for r in self.results
            ],
        }
