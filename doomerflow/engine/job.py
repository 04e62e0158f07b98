from __future__ import annotations

import logging
import math
import shutil
from enum import Enum
from pathlib import Path
from typing import Optional

from doomerflow.common.audio_utils import AudioError
from doomerflow.common.errors import DurationFailure, JobFailure
from doomerflow.engine.progress import ProgressTracker
from doomerflow.engine.stages import StageRunner
from doomerflow.models.mix import JobResult, ParameterTuple

logger = logging.getLogger("DoomerFlow.job")


class JobState(str, Enum):
    PENDING = "pending"
    DERIVING_DURATION = "derivingDuration"
    SYNTHESIZING_NOISE = "synthesizingNoise"
    SHIFTING_SPEED = "shiftingSpeed"
    FILTERING = "filtering"
    REVERBERATING = "reverberating"
    MIXING = "mixing"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL = (JobState.SUCCEEDED, JobState.FAILED)


def parse_duration(raw: Optional[str]) -> float:
    """ffprobe duration string -> seconds. Anything unusable is a DurationFailure."""
    if raw is None:
        raise DurationFailure(detail="duration missing")
    try:
        value = float(str(raw).strip())
    except ValueError:
        raise DurationFailure(detail=f"non-numeric duration {raw!r}")
    if not math.isfinite(value) or value <= 0:
        raise DurationFailure(detail=f"unusable duration {raw!r}")
    return value


class MixJob:
    """
    One parameter tuple -> one output file.

    pending -> derivingDuration -> synthesizingNoise -> shiftingSpeed ->
    filtering -> reverberating -> mixing -> verifying -> succeeded|failed

    Any failure jumps straight to `failed`. The job owns `scratch_dir` and
    every artifact written there; both are removed on the terminal state
    unless `keep_temp` is set.
    """

    def __init__(
        self,
        params: ParameterTuple,
        ordinal: int,
        total: int,
        input_file: Path,
        output_dir: Path,
        base_name: str,
        scratch_dir: Path,
        runner: StageRunner,
        tracker: Optional[ProgressTracker] = None,
        keep_temp: bool = False,
    ):
        self.params = params
        self.ordinal = ordinal
        self.total = total
        self.input_file = input_file
        self.output_dir = output_dir
        self.base_name = base_name
        self.scratch_dir = scratch_dir
        self.runner = runner
        self.tracker = tracker
        self.keep_temp = keep_temp
        self.settings = runner.settings

        self.state = JobState.PENDING
        self.history: list[JobState] = [JobState.PENDING]
        self.artifacts: list[Path] = []
        self.output = output_dir / params.output_name(base_name, self.settings.output_ext)

    @property
    def mix_id(self) -> str:
        return self.params.mix_id

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self) -> JobResult:
        p = self.params
        logger.info(f"🎛️  [{self.ordinal}/{self.total}] {self.mix_id} -> {self.output.name}")
        try:
            self.scratch_dir.mkdir(parents=True, exist_ok=True)

            self._enter(JobState.DERIVING_DURATION)
            duration, source_rate = self._derive_duration()

            self._enter(JobState.SYNTHESIZING_NOISE)
            # Noise has to match the slowed track, not the source.
            noise = self.runner.synthesize_noise(self._artifact("vinyl_noise.wav"), duration / p.speed)

            self._enter(JobState.SHIFTING_SPEED)
            slowed = self.runner.speed_shift(self.input_file, self._artifact("slowed.wav"), p.speed, source_rate)

            self._enter(JobState.FILTERING)
            filtered = self.runner.lowpass(slowed, self._artifact("lowpass.wav"), p.lowpass_hz)

            self._enter(JobState.REVERBERATING)
            wet = self.runner.reverb(filtered, self._artifact("reverb.wav"), p.reverb_amount)

            self._enter(JobState.MIXING)
            self.runner.final_mix(wet, noise, self.output, self.settings.bitrate_kbps)

            self._enter(JobState.VERIFYING)
            self.runner.validate("verify", self.output)

            self._enter(JobState.SUCCEEDED)
            self._cleanup()
            logger.info(f"✅ [{self.ordinal}/{self.total}] {self.output.name}")
            return JobResult(self.ordinal, p, self.output, ok=True)

        except JobFailure as e:
            return self._fail(e.stage, e.reason, detail=getattr(e, "detail", None))
        except (AudioError, OSError) as e:
            return self._fail(self.state.value, str(e).splitlines()[0] if str(e) else type(e).__name__)
        except Exception as e:
            logger.exception(f"💥 [{self.ordinal}/{self.total}] {self.mix_id}: unexpected error in {self.state.value}")
            return self._fail(self.state.value, f"{type(e).__name__}: {e}")
        finally:
            if self.state not in TERMINAL:
                # Interrupts and other non-job errors still clean up.
                self._cleanup()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _derive_duration(self) -> tuple[float, int]:
        try:
            raw = self.runner.toolkit.probe_duration(self.input_file)
        except AudioError as e:
            raise DurationFailure(detail=e.stderr or str(e))
        duration = parse_duration(raw)

        try:
            rate = self.runner.toolkit.probe_sample_rate(self.input_file)
        except AudioError:
            rate = None
        return duration, rate or self.settings.standard_rate

    def _artifact(self, name: str) -> Path:
        path = self.scratch_dir / name
        self.artifacts.append(path)
        return path

    def _enter(self, state: JobState, stage: Optional[str] = None) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(f"[{self.ordinal}/{self.total}] {self.mix_id}: {state.value}")
        if self.tracker is None:
            return
        if state in TERMINAL:
            self.tracker.job_finished(self.total, self.mix_id, ok=state is JobState.SUCCEEDED, stage=stage or state.value)
        else:
            self.tracker.job_in_flight(self.total, self.mix_id, state.value)

    def _fail(self, stage: str, reason: str, detail: Optional[str] = None) -> JobResult:
        # An output that failed verification is not a mix.
        if self.state is JobState.VERIFYING:
            try:
                self.output.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"⚠️  Could not remove invalid output {self.output}: {e}")
        self._enter(JobState.FAILED, stage=stage)
        self._cleanup()
        msg = f"❌ [{self.ordinal}/{self.total}] {self.mix_id} failed at {stage}: {reason}"
        if detail:
            msg += f" ({detail.strip().splitlines()[-1] if detail.strip() else detail})"
        logger.error(msg)
        return JobResult(self.ordinal, self.params, self.output, ok=False, stage=stage, reason=reason)

    def _cleanup(self) -> None:
        if self.keep_temp:
            logger.debug(f"Keeping scratch for {self.mix_id}: {self.scratch_dir}")
            return
        for path in self.artifacts:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"⚠️  Could not remove scratch artifact {path}: {e}")
        shutil.rmtree(self.scratch_dir, ignore_errors=True)
