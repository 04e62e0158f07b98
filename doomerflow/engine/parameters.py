from __future__ import annotations

import itertools
import logging
from typing import Callable, Optional, Sequence

from doomerflow.models.mix import ParameterTuple

logger = logging.getLogger("DoomerFlow.params")

HARD_MAX_MIXES = 27


def clamp_limit(limit: int, maximum: int = HARD_MAX_MIXES, warn: Optional[Callable[[str], None]] = None) -> int:
    """
    Cap `limit` to `maximum`. Never rejects; an over-ask is reported
    through `warn` (and the log) and silently capped.
    """
    if limit <= maximum:
        return max(0, limit)
    msg = f"Requested {limit} mixes, capped to the maximum of {maximum}."
    logger.warning(f"⚠️  {msg}")
    if warn is not None:
        warn(msg)
    return maximum


def enumerate_params(
    speeds: Sequence[float],
    reverbs: Sequence[int],
    lowpasses: Sequence[int],
    limit: int,
    maximum: int = HARD_MAX_MIXES,
    warn: Optional[Callable[[str], None]] = None,
) -> list[ParameterTuple]:
    """
    Cartesian product in nested order: speed outer, reverb middle,
    lowpass inner, truncated to the first `limit` tuples.

    Duplicate values in a list are dropped (first occurrence kept) so that
    no two tuples share an output filename.
    """
    limit = clamp_limit(limit, maximum, warn)
    grid = itertools.product(_unique(speeds), _unique(reverbs), _unique(lowpasses))
    return [
        ParameterTuple(speed=s, reverb_amount=r, lowpass_hz=f)
        for s, r, f in itertools.islice(grid, limit)
    ]


def _unique(values: Sequence) -> list:
    seen = []
    for v in values:
        if v not in seen:
            seen.append(v)
    return seen


class ParameterSpace:
    """The configured value lists plus the hard cap on mixes per run."""

    def __init__(
        self,
        speeds: Sequence[float],
        reverbs: Sequence[int],
        lowpasses: Sequence[int],
        maximum: int = HARD_MAX_MIXES,
    ):
        self.speeds = list(speeds)
        self.reverbs = list(reverbs)
        self.lowpasses = list(lowpasses)
        self.maximum = maximum

    @classmethod
    def from_settings(cls, settings) -> "ParameterSpace":
        return cls(settings.speeds, settings.reverbs, settings.lowpasses, settings.max_mixes)

    @property
    def size(self) -> int:
        return len(_unique(self.speeds)) * len(_unique(self.reverbs)) * len(_unique(self.lowpasses))

    def enumerate(self, limit: int, warn: Optional[Callable[[str], None]] = None) -> list[ParameterTuple]:
        return enumerate_params(self.speeds, self.reverbs, self.lowpasses, limit, self.maximum, warn)
