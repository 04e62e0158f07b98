from __future__ import annotations

import logging
import os
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Optional, Sequence

from doomerflow.common.audio_utils import abort_running
from doomerflow.engine.job import MixJob
from doomerflow.engine.progress import ProgressTracker
from doomerflow.engine.stages import StageRunner
from doomerflow.models.mix import ParameterTuple, RunReport

logger = logging.getLogger("DoomerFlow.scheduler")


def resolve_workers(requested: int, jobs: int) -> int:
    """0 -> cpu count; never more workers than jobs, never fewer than one."""
    if requested <= 0:
        requested = os.cpu_count() or 1
    return max(1, min(requested, jobs))


class JobScheduler:
    """
    Turns parameter tuples into MixJobs and runs every one of them.

    A failed job never stops the others; the report is only produced after
    all tuples were attempted.
    """

    def __init__(
        self,
        runner: StageRunner,
        tracker: Optional[ProgressTracker],
        scratch_root: Path,
        workers: int = 1,
        keep_temp: bool = False,
        log_file: Optional[Path] = None,
    ):
        self.runner = runner
        self.tracker = tracker
        self.scratch_root = scratch_root
        self.workers = workers
        self.keep_temp = keep_temp
        self.log_file = log_file

    def build_jobs(
        self,
        tuples: Sequence[ParameterTuple],
        input_file: Path,
        output_dir: Path,
        base_name: str,
    ) -> list[MixJob]:
        total = len(tuples)
        return [
            MixJob(
                params=p,
                ordinal=i,
                total=total,
                input_file=input_file,
                output_dir=output_dir,
                base_name=base_name,
                scratch_dir=self.scratch_root / f"mix_{i:02d}_{p.mix_id}",
                runner=self.runner,
                tracker=self.tracker,
                keep_temp=self.keep_temp,
            )
            for i, p in enumerate(tuples, 1)
        ]

    def run_all(
        self,
        tuples: Sequence[ParameterTuple],
        input_file: Path,
        output_dir: Path,
        base_name: str,
    ) -> RunReport:
        jobs = self.build_jobs(tuples, input_file, output_dir, base_name)
        report = RunReport(output_dir=output_dir, log_file=self.log_file)
        if not jobs:
            return report

        workers = resolve_workers(self.workers, len(jobs))
        logger.info(f"🚀 {len(jobs)} mixes, {'sequential' if workers == 1 else f'{workers} workers'}")

        try:
            if workers == 1:
                for job in jobs:
                    report.add(job.run())
            else:
                self._run_pool(jobs, workers, report)
        except KeyboardInterrupt:
            logger.warning("🛑 Interrupted, aborting running tools...")
            abort_running()
            if self.tracker is not None:
                self.tracker.fail_run()
            raise

        report.finalize()
        logger.info(f"📊 {report.successful} succeeded, {report.failed} failed")
        return report

    def _run_pool(self, jobs: list[MixJob], workers: int, report: RunReport) -> None:
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mixjob")
        pending: set[Future] = {pool.submit(job.run) for job in jobs}
        try:
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for fut in done:
                    report.add(fut.result())
        except KeyboardInterrupt:
            for fut in pending:
                fut.cancel()
            abort_running()
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        pool.shutdown(wait=True)
