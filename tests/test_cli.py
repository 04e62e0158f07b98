import logging

import pytest

from doomerflow import cli
from doomerflow.common.errors import SetupFailure
from doomerflow.prompter import ConsolePrompter, StaticPrompter


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "require_tools", lambda: None)
    yield
    # setup_logging detaches the package logger from root; undo for other tests
    root = logging.getLogger("DoomerFlow")
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.propagate = True


def flags(input_file, output_dir, tmp_path, *extra):
    return [
        "--input", str(input_file),
        "--output-dir", str(output_dir),
        "--mixes", "3",
        "--log-file", str(tmp_path / "run.log"),
        *extra,
    ]


def use_toolkit(monkeypatch, toolkit):
    real = cli.Orchestrator

    def build(settings, prompter, **kw):
        kw["toolkit"] = toolkit
        kw["show_progress"] = False
        return real(settings, prompter, **kw)

    monkeypatch.setattr(cli, "Orchestrator", build)


def test_completed_run_exits_zero(monkeypatch, capsys, toolkit, input_file, output_dir, tmp_path):
    use_toolkit(monkeypatch, toolkit)
    with pytest.raises(SystemExit) as exc:
        cli.main(flags(input_file, output_dir, tmp_path))
    assert exc.value.code == cli.EXIT_OK
    assert "3 succeeded" in capsys.readouterr().out
    assert len(list(output_dir.iterdir())) == 3
    assert (tmp_path / "run.log").exists()


def test_failed_mixes_still_exit_zero(monkeypatch, capsys, toolkit, input_file, output_dir, tmp_path):
    toolkit.fail_on("resample")
    use_toolkit(monkeypatch, toolkit)
    with pytest.raises(SystemExit) as exc:
        cli.main(flags(input_file, output_dir, tmp_path, "--sequential"))
    assert exc.value.code == cli.EXIT_OK
    assert "All 3 mixes failed" in capsys.readouterr().out


def test_setup_failure_exits_one(monkeypatch, toolkit, output_dir, tmp_path):
    use_toolkit(monkeypatch, toolkit)
    with pytest.raises(SystemExit) as exc:
        cli.main(flags(tmp_path / "missing.mp3", output_dir, tmp_path))
    assert exc.value.code == cli.EXIT_SETUP


def test_missing_tool_exits_one(monkeypatch, input_file, output_dir, tmp_path):
    def missing():
        raise SetupFailure("Required tools not found on PATH: sox")

    monkeypatch.setattr(cli, "require_tools", missing)
    with pytest.raises(SystemExit) as exc:
        cli.main(flags(input_file, output_dir, tmp_path))
    assert exc.value.code == cli.EXIT_SETUP


def test_interrupt_exits_130(monkeypatch, toolkit, input_file, output_dir, tmp_path):
    def interrupt(*args, **kwargs):
        raise KeyboardInterrupt

    toolkit.lowpass = interrupt
    use_toolkit(monkeypatch, toolkit)
    with pytest.raises(SystemExit) as exc:
        cli.main(flags(input_file, output_dir, tmp_path))
    assert exc.value.code == cli.EXIT_INTERRUPT


def test_bad_quality_is_config_error(input_file, output_dir, tmp_path):
    with pytest.raises(SystemExit) as exc:
        cli.main(flags(input_file, output_dir, tmp_path, "--quality", "999"))
    assert exc.value.code == cli.EXIT_SETUP


def test_pick_prompter(tmp_path):
    parser = cli.build_parser()

    args = parser.parse_args(["--input", "a.mp3", "--output-dir", "out", "--mixes", "2"])
    assert isinstance(cli.pick_prompter(args), StaticPrompter)

    args = parser.parse_args(["--input", "a.mp3", "--no-gui"])
    p = cli.pick_prompter(args)
    assert isinstance(p.fallback, ConsolePrompter)
    assert str(p.choose_input_file()) == "a.mp3"
