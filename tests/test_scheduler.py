import shutil
import threading

import pytest

from doomerflow.common import audio_utils
from doomerflow.engine.parameters import enumerate_params
from doomerflow.engine.progress import ProgressTracker
from doomerflow.engine.scheduler import JobScheduler, resolve_workers
from doomerflow.engine.stages import StageRunner
from doomerflow.models.mix import RunOutcome

TUPLES = enumerate_params([0.8, 0.9, 1.0], [50, 60, 70], [800, 900, 990], 5)


def make_scheduler(toolkit, settings, tmp_path, workers=1, tracker=None):
    return JobScheduler(
        runner=StageRunner(toolkit, settings),
        tracker=tracker or ProgressTracker(),
        scratch_root=tmp_path / "run",
        workers=workers,
    )


@pytest.mark.parametrize("workers", [1, 3])
def test_all_jobs_succeed(workers, toolkit, settings, tmp_path, input_file, output_dir):
    output_dir.mkdir()
    report = make_scheduler(toolkit, settings, tmp_path, workers).run_all(TUPLES, input_file, output_dir, "track")

    assert (report.successful, report.failed) == (5, 0)
    assert report.outcome is RunOutcome.SUCCESS
    assert [r.ordinal for r in report.results] == [1, 2, 3, 4, 5]
    assert len(list(output_dir.iterdir())) == 5


@pytest.mark.parametrize("workers", [1, 4])
@pytest.mark.parametrize("k", [0, 2, 4])
def test_failure_in_one_job_never_aborts_others(workers, k, toolkit, settings, tmp_path, input_file, output_dir):
    output_dir.mkdir()
    bad = TUPLES[k]
    toolkit.fail_on("reverb", f"_{bad.mix_id}")

    report = make_scheduler(toolkit, settings, tmp_path, workers).run_all(TUPLES, input_file, output_dir, "track")

    assert (report.successful, report.failed) == (4, 1)
    assert report.outcome is RunOutcome.PARTIAL
    failed = [r for r in report.results if not r.ok]
    assert failed[0].ordinal == k + 1
    assert failed[0].stage == "reverb"
    assert toolkit.ops().count("blend_and_encode") == 4
    assert sorted(p.name for p in output_dir.iterdir()) == sorted(
        t.output_name("track") for i, t in enumerate(TUPLES) if i != k
    )


def test_total_failure(toolkit, settings, tmp_path, input_file, output_dir):
    output_dir.mkdir()
    toolkit.fail_on("resample")
    report = make_scheduler(toolkit, settings, tmp_path).run_all(TUPLES, input_file, output_dir, "track")
    assert (report.successful, report.failed) == (0, 5)
    assert report.outcome is RunOutcome.TOTAL_FAILURE


def test_single_job_failure_is_reported_distinctly(toolkit, settings, tmp_path, input_file, output_dir):
    output_dir.mkdir()
    toolkit.fail_on("resample")
    report = make_scheduler(toolkit, settings, tmp_path).run_all(TUPLES[:1], input_file, output_dir, "track")
    assert report.outcome is RunOutcome.SINGLE_FAILURE
    assert "The mix failed" in report.summary()


def test_scratch_dirs_are_disjoint_and_cleaned(toolkit, settings, tmp_path, input_file, output_dir):
    output_dir.mkdir()
    scheduler = make_scheduler(toolkit, settings, tmp_path, workers=3)
    jobs = scheduler.build_jobs(TUPLES, input_file, output_dir, "track")
    assert len({j.scratch_dir for j in jobs}) == len(jobs)
    assert len({j.output for j in jobs}) == len(jobs)

    scheduler.run_all(TUPLES, input_file, output_dir, "track")
    assert not any(j.scratch_dir.exists() for j in jobs)


def test_parallel_mode_actually_overlaps(settings, tmp_path, input_file, output_dir):
    from conftest import FakeToolkit

    output_dir.mkdir()
    barrier = threading.Barrier(2, timeout=5)

    class SlowToolkit(FakeToolkit):
        def synthesize_noise(self, out, duration_sec, **kw):
            barrier.wait()
            super().synthesize_noise(out, duration_sec, **kw)

    toolkit = SlowToolkit()
    report = make_scheduler(toolkit, settings, tmp_path, workers=2).run_all(TUPLES[:2], input_file, output_dir, "track")
    assert report.successful == 2


def test_progress_reaches_complete_in_parallel(toolkit, settings, tmp_path, input_file, output_dir):
    output_dir.mkdir()
    tracker = ProgressTracker()
    make_scheduler(toolkit, settings, tmp_path, workers=3, tracker=tracker).run_all(TUPLES, input_file, output_dir, "track")
    final = tracker.poll()
    assert (final.current_mix, final.total_mixes, final.completed) == (5, 5, 5)


def test_empty_tuple_list(toolkit, settings, tmp_path, input_file, output_dir):
    report = make_scheduler(toolkit, settings, tmp_path).run_all([], input_file, output_dir, "track")
    assert report.total == 0
    assert toolkit.calls == []


def test_resolve_workers():
    assert resolve_workers(1, 10) == 1
    assert resolve_workers(8, 3) == 3
    assert resolve_workers(0, 1) == 1
    assert resolve_workers(0, 100) >= 1


def test_interrupt_aborts_and_marks_error(toolkit, settings, tmp_path, input_file, output_dir):
    output_dir.mkdir()

    def interrupt(*args, **kwargs):
        raise KeyboardInterrupt

    toolkit.lowpass = interrupt
    tracker = ProgressTracker()
    with pytest.raises(KeyboardInterrupt):
        make_scheduler(toolkit, settings, tmp_path, tracker=tracker).run_all(TUPLES, input_file, output_dir, "track")

    assert tracker.poll().status.value == "error"
    assert not (tmp_path / "run" / "mix_01_0.8_50_800").exists()


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs sh")
def test_undecodable_tool_output_fails_only_that_job(toolkit, settings, tmp_path, input_file, output_dir):
    output_dir.mkdir()
    marker = f"_{TUPLES[1].mix_id}"
    real_reverb = toolkit.reverb

    def reverb(inp, out, wet_percent, **room):
        if marker in str(out):
            audio_utils._run(["sh", "-c", "printf 'bad \\377\\376 name' >&2; exit 2"])
        real_reverb(inp, out, wet_percent, **room)

    toolkit.reverb = reverb
    report = make_scheduler(toolkit, settings, tmp_path).run_all(TUPLES[:3], input_file, output_dir, "track")

    assert (report.successful, report.failed) == (2, 1)
    assert report.results[1].stage == "reverb"
    assert len(list(output_dir.iterdir())) == 2


def test_unexpected_toolkit_error_fails_only_that_job(toolkit, settings, tmp_path, input_file, output_dir):
    output_dir.mkdir()
    marker = f"_{TUPLES[1].mix_id}"
    real_lowpass = toolkit.lowpass

    def lowpass(inp, out, cutoff_hz):
        if marker in str(out):
            raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")
        real_lowpass(inp, out, cutoff_hz)

    toolkit.lowpass = lowpass
    report = make_scheduler(toolkit, settings, tmp_path, workers=2).run_all(TUPLES[:3], input_file, output_dir, "track")

    assert (report.successful, report.failed) == (2, 1)
    failed = report.results[1]
    assert failed.stage == "filtering"
    assert failed.reason.startswith("UnicodeDecodeError")


def test_stuck_scratch_artifact_does_not_abort_run(toolkit, settings, tmp_path, input_file, output_dir):
    output_dir.mkdir()
    marker = f"_{TUPLES[1].mix_id}"
    real_lowpass = toolkit.lowpass

    def lowpass(inp, out, cutoff_hz):
        if marker in str(out):
            # a directory where the artifact should be: unreadable and not unlinkable
            out.mkdir(parents=True)
            return
        real_lowpass(inp, out, cutoff_hz)

    toolkit.lowpass = lowpass
    scheduler = make_scheduler(toolkit, settings, tmp_path)
    jobs = scheduler.build_jobs(TUPLES[:3], input_file, output_dir, "track")
    report = scheduler.run_all(TUPLES[:3], input_file, output_dir, "track")

    assert (report.successful, report.failed) == (2, 1)
    assert report.results[1].stage == "lowpass"
    assert not jobs[1].scratch_dir.exists()
