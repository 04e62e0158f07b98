from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"
ROOT_LOGGER = "DoomerFlow"


def default_log_file(log_dir: Path) -> Path:
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return log_dir / f"doomerflow-{stamp}.log"


def setup_logging(debug: bool = False, verbose: bool = False, log_file: Optional[Path] = None) -> Optional[Path]:
    """
    Console gets WARNING (INFO with --verbose, DEBUG with --debug); the log
    file always gets DEBUG so failed mixes can be diagnosed after the run.

    Returns the log file path, or None when file logging is off.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    if debug:
        console.setLevel(logging.DEBUG)
    elif verbose:
        console.setLevel(logging.INFO)
    else:
        console.setLevel(logging.WARNING)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file is None:
        return None

    attach_log_file(log_file)
    return log_file


def attach_log_file(log_file: Path) -> logging.Handler:
    """Add a DEBUG file handler to the package logger. Caller removes it."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logging.getLogger(ROOT_LOGGER).addHandler(fh)
    return fh


def detach_log_file(handler: logging.Handler) -> None:
    logging.getLogger(ROOT_LOGGER).removeHandler(handler)
    handler.close()
