from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProgressStatus(str, Enum):
    STARTING = "starting"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressSnapshot(BaseModel):
    """Whole-record progress state; replaced, never patched."""

    model_config = ConfigDict(frozen=True)

    status: ProgressStatus = ProgressStatus.STARTING
    current_mix: int = Field(default=0, ge=0)
    total_mixes: int = Field(default=0, ge=0)
    current_mix_id: Optional[str] = None
    stage: Optional[str] = None
    completed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    updated_at: float = 0.0
