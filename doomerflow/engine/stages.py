from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Sequence

from doomerflow.common.audio_utils import AudioError
from doomerflow.common.errors import FallbackExhausted, JobFailure, ToolFailure, ValidationFailure
from doomerflow.core.config import Settings

logger = logging.getLogger("DoomerFlow.stage")


class Stage(str, Enum):
    SYNTHESIZE_NOISE = "synthesizeNoise"
    SPEED_SHIFT = "speedShift"
    LOWPASS = "lowpass"
    REVERB = "reverb"
    FINAL_MIX = "finalMix"


Strategy = Callable[[Sequence[Path], Path, dict], None]


class StageRunner:
    """
    Runs one pipeline stage against the toolkit.

    A stage is an ordered list of strategies. Each strategy must leave a
    readable, non-empty artifact at `output`; exit status alone is not
    trusted. The first strategy that passes wins, otherwise the failure
    (or all of them, for multi-strategy stages) is raised.
    """

    def __init__(self, toolkit: Any, settings: Settings):
        self.toolkit = toolkit
        self.settings = settings
        self._strategies: dict[Stage, list[tuple[str, Strategy]]] = {
            Stage.SYNTHESIZE_NOISE: [("anoisesrc", self._noise)],
            Stage.SPEED_SHIFT: [("asetrate", self._speed_shift)],
            Stage.LOWPASS: [("lowpass", self._lowpass)],
            Stage.REVERB: [("reverb", self._reverb)],
            Stage.FINAL_MIX: [
                ("blend+encode", self._blend_and_encode),
                ("blend", self._blend),
            ],
        }

    # -------------------------------------------------------------------------
    # Core
    # -------------------------------------------------------------------------

    def run(self, stage: Stage, output: Path, inputs: Sequence[Path] = (), **params: Any) -> Path:
        if any(Path(p) == Path(output) for p in inputs):
            raise ValueError(f"{stage.value}: output would overwrite an input ({output})")

        failures: list[JobFailure] = []
        for name, strategy in self._strategies[stage]:
            logger.debug(f"▶️  {stage.value}/{name} -> {output.name}")
            try:
                strategy(list(inputs), output, params)
                self.validate(stage, output)
            except AudioError as e:
                failure: JobFailure = ToolFailure(stage.value, e.returncode, e.stderr)
                logger.debug(f"{stage.value}/{name} stderr:\n{e.stderr}")
            except OSError as e:
                failure = ToolFailure(stage.value, -1, str(e))
            except ValidationFailure as e:
                failure = e
            else:
                return output

            logger.warning(f"⚠️  {stage.value}/{name} failed: {failure.reason}")
            failures.append(failure)
            try:
                output.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"⚠️  Could not remove failed artifact {output}: {e}")

        if len(failures) == 1:
            raise failures[0]
        raise FallbackExhausted(stage.value, failures)

    def validate(self, stage: Stage | str, path: Path) -> Path:
        name = stage.value if isinstance(stage, Stage) else stage
        if not path.exists():
            raise ValidationFailure(name, path, "missing")
        try:
            size = path.stat().st_size
            with path.open("rb") as fh:
                fh.read(1)
        except OSError:
            raise ValidationFailure(name, path, "unreadable")
        if size == 0:
            raise ValidationFailure(name, path, "empty")
        return path

    # -------------------------------------------------------------------------
    # Stage helpers
    # -------------------------------------------------------------------------

    def synthesize_noise(self, output: Path, duration: float) -> Path:
        return self.run(Stage.SYNTHESIZE_NOISE, output, duration=duration)

    def speed_shift(self, source: Path, output: Path, speed: float, source_rate: int) -> Path:
        return self.run(Stage.SPEED_SHIFT, output, [source], speed=speed, source_rate=source_rate)

    def lowpass(self, source: Path, output: Path, cutoff_hz: int) -> Path:
        return self.run(Stage.LOWPASS, output, [source], cutoff_hz=cutoff_hz)

    def reverb(self, source: Path, output: Path, wet_percent: int) -> Path:
        return self.run(Stage.REVERB, output, [source], wet_percent=wet_percent)

    def final_mix(self, track: Path, noise: Path, output: Path, bitrate_kbps: int) -> Path:
        return self.run(Stage.FINAL_MIX, output, [track, noise], bitrate_kbps=bitrate_kbps)

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    def _noise(self, inputs: Sequence[Path], out: Path, p: dict) -> None:
        s = self.settings
        self.toolkit.synthesize_noise(
            out,
            p["duration"],
            color=s.noise_color,
            amplitude=s.noise_amplitude,
            volume=s.noise_volume,
            sample_rate=s.standard_rate,
        )

    def _speed_shift(self, inputs: Sequence[Path], out: Path, p: dict) -> None:
        rate = int(round(p["source_rate"] * p["speed"]))
        self.toolkit.resample(inputs[0], out, rate, self.settings.standard_rate)

    def _lowpass(self, inputs: Sequence[Path], out: Path, p: dict) -> None:
        self.toolkit.lowpass(inputs[0], out, p["cutoff_hz"])

    def _reverb(self, inputs: Sequence[Path], out: Path, p: dict) -> None:
        self.toolkit.reverb(inputs[0], out, p["wet_percent"], **self.settings.reverb_room)

    def _blend_and_encode(self, inputs: Sequence[Path], out: Path, p: dict) -> None:
        self.toolkit.blend_and_encode(inputs[0], inputs[1], out, p["bitrate_kbps"], self.settings.standard_rate)

    def _blend(self, inputs: Sequence[Path], out: Path, p: dict) -> None:
        self.toolkit.blend(inputs[0], inputs[1], out)
