from __future__ import annotations

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Literal, Optional

from doomerflow.common.errors import SetupFailure

logger = logging.getLogger("DoomerFlow.prompter")

NotifyKind = Literal["info", "warning", "error"]

MP3_FILTER = "MP3 files (mp3) | *.mp3"


def parse_mix_count(raw: Optional[str]) -> Optional[int]:
    """
    Blank/None means cancelled. Non-integers and values below 1 are setup
    failures; values above the maximum pass through and get capped later.
    """
    if raw is None or not raw.strip():
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        raise SetupFailure(f"Number of mixes must be a whole number, got {raw.strip()!r}")
    if value < 1:
        raise SetupFailure(f"Number of mixes must be at least 1, got {value}")
    return value


class Prompter(ABC):
    @abstractmethod
    def choose_input_file(self, file_filter: str = MP3_FILTER) -> Optional[Path]:
        ...

    @abstractmethod
    def choose_output_dir(self) -> Optional[Path]:
        ...

    @abstractmethod
    def choose_mix_count(self, maximum: int, default: int) -> Optional[int]:
        ...

    @abstractmethod
    def notify(self, kind: NotifyKind, title: str, message: str) -> None:
        ...


# =============================================================================
# ZENITY (desktop dialogs)
# =============================================================================

class ZenityPrompter(Prompter):
    def __init__(self, binary: str = "zenity"):
        self.binary = binary

    @staticmethod
    def available() -> bool:
        has_display = bool(os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"))
        return has_display and shutil.which("zenity") is not None

    def _ask(self, *args: str) -> Optional[str]:
        p = subprocess.run([self.binary, *args], capture_output=True, text=True)
        # zenity exits 1 on Cancel / window closed
        if p.returncode != 0:
            return None
        out = p.stdout.strip()
        return out or None

    def choose_input_file(self, file_filter: str = MP3_FILTER) -> Optional[Path]:
        out = self._ask("--file-selection", f"--file-filter={file_filter}", "--title=Select an MP3 file")
        return Path(out) if out else None

    def choose_output_dir(self) -> Optional[Path]:
        out = self._ask("--file-selection", "--directory", "--title=Select the output folder")
        return Path(out) if out else None

    def choose_mix_count(self, maximum: int, default: int) -> Optional[int]:
        out = self._ask(
            "--entry",
            "--title=Number of mixes",
            f"--text=Enter the number of doomer mixes to generate (max {maximum}):",
            f"--entry-text={default}",
        )
        return parse_mix_count(out)

    def notify(self, kind: NotifyKind, title: str, message: str) -> None:
        subprocess.run(
            [self.binary, f"--{kind}", f"--title={title}", f"--text={message}"],
            capture_output=True,
            text=True,
        )


# =============================================================================
# CONSOLE
# =============================================================================

class ConsolePrompter(Prompter):
    def __init__(self, ask: Callable[[str], str] = input, say: Callable[[str], None] = print):
        self.ask = ask
        self.say = say

    def _read(self, prompt: str) -> Optional[str]:
        try:
            out = self.ask(prompt).strip()
        except EOFError:
            return None
        return out or None

    def choose_input_file(self, file_filter: str = MP3_FILTER) -> Optional[Path]:
        out = self._read(f"🎵 Input file [{file_filter}]: ")
        return Path(out).expanduser() if out else None

    def choose_output_dir(self) -> Optional[Path]:
        out = self._read("📁 Output folder: ")
        return Path(out).expanduser() if out else None

    def choose_mix_count(self, maximum: int, default: int) -> Optional[int]:
        try:
            raw = self.ask(f"🔢 Number of doomer mixes (max {maximum}) [{default}]: ")
        except EOFError:
            return None
        if not raw.strip():
            return default
        return parse_mix_count(raw)

    def notify(self, kind: NotifyKind, title: str, message: str) -> None:
        icon = {"info": "ℹ️ ", "warning": "⚠️ ", "error": "❌"}[kind]
        self.say(f"{icon} {title}: {message}")


# =============================================================================
# STATIC (flags / API)
# =============================================================================

class StaticPrompter(Prompter):
    """Answers fixed up front. Notifications are logged and kept."""

    def __init__(self, input_file: Optional[Path], output_dir: Optional[Path], mixes: Optional[int | str]):
        self.input_file = input_file
        self.output_dir = output_dir
        self.mixes = mixes
        self.messages: list[tuple[str, str, str]] = []

    def choose_input_file(self, file_filter: str = MP3_FILTER) -> Optional[Path]:
        return self.input_file

    def choose_output_dir(self) -> Optional[Path]:
        return self.output_dir

    def choose_mix_count(self, maximum: int, default: int) -> Optional[int]:
        if self.mixes is None:
            return None
        return parse_mix_count(str(self.mixes))

    def notify(self, kind: NotifyKind, title: str, message: str) -> None:
        self.messages.append((kind, title, message))
        level = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}[kind]
        logger.log(level, f"{title}: {message}")
