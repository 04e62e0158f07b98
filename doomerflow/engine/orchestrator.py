from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional

from doomerflow.common.audio_utils import AudioError, AudioToolkit, reset_abort
from doomerflow.common.errors import DurationFailure, SetupFailure
from doomerflow.core.config import Settings
from doomerflow.engine.job import parse_duration
from doomerflow.engine.parameters import ParameterSpace
from doomerflow.engine.progress import ProgressReporter, ProgressTracker, progress_percent
from doomerflow.engine.scheduler import JobScheduler
from doomerflow.engine.stages import StageRunner
from doomerflow.models.mix import RunOutcome, RunReport
from doomerflow.models.progress import ProgressStatus
from doomerflow.prompter import MP3_FILTER, Prompter

logger = logging.getLogger("DoomerFlow.orchestrator")

PROGRESS_FILE = "progress.json"

NOTIFY_KIND = {
    RunOutcome.SUCCESS: "info",
    RunOutcome.PARTIAL: "warning",
    RunOutcome.TOTAL_FAILURE: "error",
    RunOutcome.SINGLE_FAILURE: "error",
}

NOTIFY_TITLE = {
    RunOutcome.SUCCESS: "Doomer Mixes Ready",
    RunOutcome.PARTIAL: "Doomer Mixes Partially Ready",
    RunOutcome.TOTAL_FAILURE: "Doomer Mixes Failed",
    RunOutcome.SINGLE_FAILURE: "Doomer Mix Failed",
}


class Orchestrator:
    """
    Prompter -> ParameterSpace -> JobScheduler -> report.

    Owns the run's scratch directory: created before the first job, removed
    on normal exit, setup failure or interrupt unless keep_temp is set.
    """

    def __init__(
        self,
        settings: Settings,
        prompter: Prompter,
        toolkit: Any = None,
        log_file: Optional[Path] = None,
        show_progress: bool = True,
    ):
        self.settings = settings
        self.prompter = prompter
        self.toolkit = toolkit or AudioToolkit()
        self.log_file = log_file
        self.show_progress = show_progress

        self.scratch_dir: Optional[Path] = None
        self.tracker: Optional[ProgressTracker] = None
        self.report: Optional[RunReport] = None

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def validate_input(self, path: Path) -> float:
        if not path.is_file():
            raise SetupFailure(f"Input file not found: {path}")
        if path.stat().st_size == 0:
            raise SetupFailure(f"Input file is empty: {path}")
        try:
            duration = parse_duration(self.toolkit.probe_duration(path))
        except AudioError as e:
            raise SetupFailure(f"Input is not a decodable media file: {path}") from e
        except DurationFailure as e:
            raise SetupFailure(f"Input has no usable duration ({e.detail}): {path}") from e
        logger.info(f"🎵 Input: {path.name} ({duration:.1f}s)")
        return duration

    def prepare_output_dir(self, path: Path) -> Path:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SetupFailure(f"Cannot create output folder {path}: {e}") from e
        if not os.access(path, os.W_OK):
            raise SetupFailure(f"Output folder is not writable: {path}")
        return path

    def _warn(self, message: str) -> None:
        self.prompter.notify("warning", "Mix count capped", message)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self) -> RunReport:
        s = self.settings

        input_file = self.prompter.choose_input_file(MP3_FILTER)
        if input_file is None:
            raise SetupFailure("No input file selected.")
        output_dir = self.prompter.choose_output_dir()
        if output_dir is None:
            raise SetupFailure("No output folder selected.")

        self.validate_input(input_file)
        self.prepare_output_dir(output_dir)

        requested = self.prompter.choose_mix_count(s.max_mixes, s.default_mixes)
        if requested is None:
            raise SetupFailure("Number of mixes not provided.")

        base_name = input_file.stem
        space = ParameterSpace.from_settings(s)
        tuples = space.enumerate(requested, warn=self._warn)
        if len(tuples) < min(requested, s.max_mixes):
            logger.info(f"ℹ️  Parameter grid only has {space.size} combinations")

        reset_abort()
        try:
            s.scratch_root.mkdir(parents=True, exist_ok=True)
            self.scratch_dir = Path(tempfile.mkdtemp(prefix="doomerflow-", dir=str(s.scratch_root)))
        except OSError as e:
            raise SetupFailure(f"Cannot create scratch directory under {s.scratch_root}: {e}") from e
        self.tracker = ProgressTracker(self.scratch_dir / PROGRESS_FILE)
        self.tracker.publish(0, len(tuples), ProgressStatus.STARTING)
        logger.info(f"📂 Scratch: {self.scratch_dir}")

        scheduler = JobScheduler(
            runner=StageRunner(self.toolkit, s),
            tracker=self.tracker,
            scratch_root=self.scratch_dir,
            workers=s.workers,
            keep_temp=s.keep_temp,
            log_file=self.log_file,
        )

        reporter = None
        if len(tuples) > 1 and self.show_progress:
            reporter = ProgressReporter(self.tracker.poll, interval=s.progress_interval)
            reporter.start()

        try:
            report = scheduler.run_all(tuples, input_file, output_dir, base_name)
        except BaseException:
            if self.tracker.poll().status != ProgressStatus.ERROR:
                self.tracker.fail_run()
            raise
        finally:
            if reporter is not None:
                reporter.stop()
                reporter.join()
            self._cleanup()

        if len(tuples) == 1:
            # One mix: no polling loop, straight 0 -> 100.
            logger.info(f"Progress: {progress_percent(self.tracker.poll()):.0f}%")

        self.report = report
        self._notify(report)
        return report

    def _notify(self, report: RunReport) -> None:
        outcome = report.outcome
        self.prompter.notify(NOTIFY_KIND[outcome], NOTIFY_TITLE[outcome], report.summary())

    def _cleanup(self) -> None:
        if self.scratch_dir is None:
            return
        if self.settings.keep_temp:
            logger.info(f"🧪 Keeping scratch directory: {self.scratch_dir}")
            return
        shutil.rmtree(self.scratch_dir, ignore_errors=True)
        logger.debug(f"🧹 Removed scratch directory: {self.scratch_dir}")
