from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import orjson
from tqdm import tqdm

from doomerflow.models.progress import ProgressSnapshot, ProgressStatus

logger = logging.getLogger("DoomerFlow.progress")


# =============================================================================
# SHARED STATE
# =============================================================================

class ProgressTracker:
    """
    Single owner of the run's progress state.

    Writers go through one lock; each update builds a complete snapshot and
    swaps it in, then rewrites the progress file wholesale (temp file +
    rename). `poll()` hands out the current immutable snapshot, so readers
    never see a half-updated record.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._lock = threading.Lock()
        self._snapshot = ProgressSnapshot(updated_at=time.time())
        if path is not None:
            self._write(self._snapshot)

    def publish(
        self,
        ordinal: int,
        total: int,
        status: ProgressStatus,
        mix_id: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> ProgressSnapshot:
        with self._lock:
            prev = self._snapshot
            snap = ProgressSnapshot(
                status=status,
                current_mix=ordinal,
                total_mixes=total,
                current_mix_id=mix_id,
                stage=stage,
                completed=prev.completed,
                failed=prev.failed,
                updated_at=time.time(),
            )
            return self._swap(snap)

    def job_in_flight(self, total: int, mix_id: str, stage: str) -> ProgressSnapshot:
        """A job moved to `stage`; shown as the next mix to finish."""
        with self._lock:
            prev = self._snapshot
            snap = ProgressSnapshot(
                status=ProgressStatus.PROCESSING,
                current_mix=min(prev.completed + 1, total),
                total_mixes=total,
                current_mix_id=mix_id,
                stage=stage,
                completed=prev.completed,
                failed=prev.failed,
                updated_at=time.time(),
            )
            return self._swap(snap)

    def job_finished(self, total: int, mix_id: str, ok: bool, stage: str) -> ProgressSnapshot:
        with self._lock:
            prev = self._snapshot
            completed = prev.completed + 1
            snap = ProgressSnapshot(
                status=ProgressStatus.COMPLETE,
                current_mix=min(completed, total),
                total_mixes=total,
                current_mix_id=mix_id,
                stage=stage,
                completed=completed,
                failed=prev.failed + (0 if ok else 1),
                updated_at=time.time(),
            )
            return self._swap(snap)

    def fail_run(self) -> ProgressSnapshot:
        with self._lock:
            snap = self._snapshot.model_copy(update={"status": ProgressStatus.ERROR, "updated_at": time.time()})
            return self._swap(snap)

    def poll(self) -> ProgressSnapshot:
        return self._snapshot

    def _swap(self, snap: ProgressSnapshot) -> ProgressSnapshot:
        self._snapshot = snap
        if self.path is not None:
            self._write(snap)
        return snap

    def _write(self, snap: ProgressSnapshot) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with tmp.open("wb") as fh:
                fh.write(orjson.dumps(snap.model_dump(mode="json"), option=orjson.OPT_INDENT_2))
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            # In-memory state stays authoritative; the file is for outside pollers.
            logger.warning(f"⚠️  Could not write progress file {self.path}: {e}")


def read_progress(path: Path) -> Optional[ProgressSnapshot]:
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return None
    return ProgressSnapshot.model_validate(orjson.loads(raw))


# =============================================================================
# PERCENTAGE MAPPING
# =============================================================================

FIRST_IN_FLIGHT = 5.0
FIRST_DONE = 15.0
LAST_BEFORE_DONE = 95.0


def progress_percent(snap: Optional[ProgressSnapshot]) -> float:
    """
    0 before anything runs, 5 while mix 1 is in flight, 15 once it is done,
    then linear up to 95 for the last mix, 100 only when the last mix is
    complete. A one-mix run jumps straight from 0 to 100.
    """
    if snap is None or snap.current_mix <= 0 or snap.total_mixes <= 0:
        return 0.0

    total = snap.total_mixes
    ordinal = min(snap.current_mix, total)
    done = snap.status == ProgressStatus.COMPLETE

    if total == 1:
        return 100.0 if done else 0.0
    if done and ordinal == total:
        return 100.0
    if ordinal == 1:
        return FIRST_DONE if done else FIRST_IN_FLIGHT
    return FIRST_DONE + (ordinal - 1) * (LAST_BEFORE_DONE - FIRST_DONE) / (total - 1)


# =============================================================================
# REPORTER
# =============================================================================

class ProgressReporter(threading.Thread):
    """
    Background poller that drives a tqdm bar from published snapshots.
    Stops at 100%, on an error status, or when `stop()` is called.
    """

    def __init__(
        self,
        source: Callable[[], Optional[ProgressSnapshot]],
        interval: float = 0.5,
        desc: str = "Doomer mixes",
        disable: bool = False,
    ):
        super().__init__(name="doomerflow-progress", daemon=True)
        self.source = source
        self.interval = interval
        self.desc = desc
        self.disable = disable
        self.last_percent = 0.0
        self.history: list[float] = []
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        with tqdm(total=100, desc=self.desc, unit="%", disable=self.disable,
                  bar_format="{l_bar}{bar}| {n:.0f}/{total} [{elapsed}] {postfix}") as bar:
            while True:
                finished = self._tick(bar)
                if finished or self._stop_event.wait(self.interval):
                    self._tick(bar)
                    break

    def _tick(self, bar: tqdm) -> bool:
        snap = self.source()
        pct = progress_percent(snap)
        if pct > self.last_percent:
            bar.update(pct - self.last_percent)
            self.last_percent = pct
            self.history.append(pct)
        if snap is not None and snap.current_mix_id:
            bar.set_postfix_str(f"{snap.current_mix}/{snap.total_mixes} {snap.current_mix_id} {snap.stage or ''}".strip())
        return self.last_percent >= 100.0 or (snap is not None and snap.status == ProgressStatus.ERROR)
