#!/usr/bin/env python3
"""
DoomerFlow CLI

Generates up to 27 slowed + reverb ("doomer") mixes of one track, each with
its own speed / reverb / low-pass combination and a vinyl noise bed.

Exit codes: 0 when the run completed (even if some mixes failed),
1 on setup failure, 130 on interrupt.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from doomerflow import __version__
from doomerflow.common.audio_utils import require_tools
from doomerflow.common.errors import SetupFailure
from doomerflow.core.config import load_settings
from doomerflow.core.log import default_log_file, setup_logging
from doomerflow.engine.orchestrator import Orchestrator
from doomerflow.prompter import MP3_FILTER, ConsolePrompter, Prompter, StaticPrompter, ZenityPrompter

logger = logging.getLogger("DoomerFlow")

EXIT_OK = 0
EXIT_SETUP = 1
EXIT_INTERRUPT = 130


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="doomerflow",
        description="Generate slowed + reverb doomer mixes of a track (ffmpeg + sox).",
    )
    ap.add_argument("--input", type=Path, help="Input audio file (prompted if omitted)")
    ap.add_argument("--output-dir", type=Path, help="Output folder (prompted if omitted)")
    ap.add_argument("--mixes", type=str, help="Number of mixes to generate (max 27)")
    ap.add_argument("--workers", type=int, help="Parallel jobs (0 = CPU count)")
    ap.add_argument("--sequential", action="store_true", help="Render one mix at a time")
    ap.add_argument("--presets", type=Path, help="YAML file with speeds/reverbs/lowpasses lists")
    ap.add_argument("--quality", type=int, metavar="KBPS", help="MP3 bitrate in kbps (32-320)")
    ap.add_argument("--keep-temp", action="store_true", help="Keep scratch files for inspection")
    ap.add_argument("--debug", action="store_true", help="Debug output on the console")
    ap.add_argument("--verbose", action="store_true", help="Info output on the console")
    ap.add_argument("--log-file", type=Path, help="Log file path (default: .doomerflow_logs/)")
    ap.add_argument("--no-gui", action="store_true", help="Never use zenity dialogs")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def pick_prompter(args: argparse.Namespace) -> Prompter:
    if args.input is not None and args.output_dir is not None and args.mixes is not None:
        return StaticPrompter(args.input, args.output_dir, args.mixes)
    if not args.no_gui and ZenityPrompter.available():
        return _PartialPrompter(args, ZenityPrompter())
    return _PartialPrompter(args, ConsolePrompter())


class _PartialPrompter(Prompter):
    """Flags where given, the interactive prompter for the rest."""

    def __init__(self, args: argparse.Namespace, fallback: Prompter):
        self.args = args
        self.fallback = fallback
        self.static = StaticPrompter(args.input, args.output_dir, args.mixes)

    def choose_input_file(self, file_filter: str = MP3_FILTER):
        return self.args.input or self.fallback.choose_input_file(file_filter)

    def choose_output_dir(self):
        return self.args.output_dir or self.fallback.choose_output_dir()

    def choose_mix_count(self, maximum: int, default: int):
        if self.args.mixes is not None:
            return self.static.choose_mix_count(maximum, default)
        return self.fallback.choose_mix_count(maximum, default)

    def notify(self, kind, title, message) -> None:
        self.fallback.notify(kind, title, message)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(
            presets=args.presets,
            bitrate_kbps=args.quality,
            workers=1 if args.sequential else args.workers,
            keep_temp=True if args.keep_temp else None,
        )
    except (ValidationError, ValueError, FileNotFoundError) as e:
        print(f"❌ Invalid configuration: {e}", file=sys.stderr)
        sys.exit(EXIT_SETUP)

    log_file = setup_logging(
        debug=args.debug,
        verbose=args.verbose,
        log_file=args.log_file or default_log_file(settings.log_dir),
    )

    logger.info("=" * 70)
    logger.info(f"🎵 DoomerFlow v{__version__}")
    logger.info("=" * 70)

    prompter = pick_prompter(args)
    try:
        require_tools()
        orchestrator = Orchestrator(settings, prompter, log_file=log_file, show_progress=True)
        report = orchestrator.run()
    except SetupFailure as e:
        logger.error(f"❌ {e}")
        prompter.notify("error", "DoomerFlow", f"{e}\nLog: {log_file}")
        sys.exit(EXIT_SETUP)
    except KeyboardInterrupt:
        logger.warning(f"🛑 Interrupted. Log: {log_file}")
        sys.exit(EXIT_INTERRUPT)

    print(report.summary())
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
