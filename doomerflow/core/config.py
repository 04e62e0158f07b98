from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGED_PRESETS = Path(__file__).resolve().parents[1] / "presets" / "doomer.yaml"

PRESET_KEYS = ("speeds", "reverbs", "lowpasses", "max_mixes", "default_mixes")


class Settings(BaseSettings):
    """
    Run settings with local defaults.

    Every field can be overridden from the environment with a DOOMERFLOW_
    prefix (lists as JSON, e.g. DOOMERFLOW_SPEEDS='[0.7, 0.8]').
    """

    model_config = SettingsConfigDict(
        env_prefix="DOOMERFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Parameter grid (speed outer, reverb middle, lowpass inner)
    speeds: list[float] = Field(default_factory=lambda: [0.8, 0.9, 1.0])
    reverbs: list[int] = Field(default_factory=lambda: [50, 60, 70])
    lowpasses: list[int] = Field(default_factory=lambda: [800, 900, 990])

    max_mixes: int = Field(default=27, ge=1)
    default_mixes: int = Field(default=9, ge=1)

    # Encoding
    bitrate_kbps: int = Field(default=192, ge=32, le=320)
    standard_rate: int = Field(default=44100, ge=8000)
    output_ext: str = "mp3"

    # Vinyl noise bed
    noise_color: str = "pink"
    noise_amplitude: float = Field(default=1.0, gt=0, le=1.0)
    noise_volume: float = Field(default=0.03, gt=0, le=1.0)

    # Fixed reverb room (only the wet amount varies per mix)
    reverb_hf_damping: float = 0.5
    reverb_room_scale: int = 100
    reverb_stereo_depth: int = 100
    reverb_pre_delay: int = 0
    reverb_wet_gain: int = 0

    # Execution
    workers: int = Field(default=0, ge=0)  # 0 = cpu count, 1 = sequential
    keep_temp: bool = False
    scratch_root: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    log_dir: Path = Path(".doomerflow_logs")
    progress_interval: float = Field(default=0.5, gt=0)

    @field_validator("speeds")
    @classmethod
    def _speeds_positive(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("speeds must not be empty")
        bad = [s for s in v if not 0 < s <= 4.0]
        if bad:
            raise ValueError(f"speeds out of range (0, 4]: {bad}")
        return v

    @field_validator("reverbs")
    @classmethod
    def _reverbs_percent(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("reverbs must not be empty")
        bad = [r for r in v if not 0 <= r <= 100]
        if bad:
            raise ValueError(f"reverb amounts out of range [0, 100]: {bad}")
        return v

    @field_validator("lowpasses")
    @classmethod
    def _lowpasses_positive(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("lowpasses must not be empty")
        bad = [f for f in v if f <= 0]
        if bad:
            raise ValueError(f"lowpass cutoffs must be positive: {bad}")
        return v

    @model_validator(mode="after")
    def _default_within_max(self) -> "Settings":
        if self.default_mixes > self.max_mixes:
            self.default_mixes = self.max_mixes
        return self

    @property
    def reverb_room(self) -> dict[str, Any]:
        return {
            "hf_damping": self.reverb_hf_damping,
            "room_scale": self.reverb_room_scale,
            "stereo_depth": self.reverb_stereo_depth,
            "pre_delay": self.reverb_pre_delay,
            "wet_gain": self.reverb_wet_gain,
        }


def load_presets(path: Path) -> dict:
    """
    Read a preset YAML. Only the grid keys are honoured, the rest is ignored.
    """
    if not path.exists():
        raise FileNotFoundError(f"Preset file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Preset file must be a mapping: {path}")
    return {k: data[k] for k in PRESET_KEYS if k in data}


def load_settings(presets: Optional[Path] = None, **overrides: Any) -> Settings:
    """
    defaults < environment < preset file < explicit overrides (CLI flags).
    Overrides that are None are treated as "not given".
    """
    base = Settings()
    merged = base.model_dump()
    if presets is not None:
        merged.update(load_presets(presets))
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**merged)
