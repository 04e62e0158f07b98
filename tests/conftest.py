import sys
import threading
from pathlib import Path
from typing import Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from doomerflow.common.audio_utils import AudioError, reset_abort  # noqa: E402
from doomerflow.core.config import Settings  # noqa: E402


class FakeToolkit:
    """
    Stand-in for the ffmpeg/sox toolkit. Every operation writes a few bytes
    to its output; `fail_on` / `empty_on` inject a non-zero exit or a
    zero-byte artifact for outputs whose path contains a marker.
    """

    def __init__(self, duration: Optional[str] = "120.0", sample_rate: Optional[int] = 44100):
        self.duration = duration
        self.sample_rate = sample_rate
        self.calls: list[tuple] = []
        self._fail: list[tuple[str, str]] = []
        self._empty: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def fail_on(self, op: str, marker: str = "") -> "FakeToolkit":
        self._fail.append((op, marker))
        return self

    def empty_on(self, op: str, marker: str = "") -> "FakeToolkit":
        self._empty.append((op, marker))
        return self

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]

    def _hit(self, table, op, out) -> bool:
        return any(o == op and m in str(out) for o, m in table)

    def _produce(self, op: str, out: Path, *args) -> None:
        with self._lock:
            self.calls.append((op, Path(out), *args))
        if self._hit(self._fail, op, out):
            raise AudioError(f"{op} failed", cmd=[op], returncode=1, stderr=f"{op}: simulated failure")
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(b"" if self._hit(self._empty, op, out) else f"{op}-audio".encode())

    # toolkit surface
    def resample(self, inp, out, rate, target_rate):
        self._produce("resample", out, rate, target_rate)

    def lowpass(self, inp, out, cutoff_hz):
        self._produce("lowpass", out, cutoff_hz)

    def reverb(self, inp, out, wet_percent, **room):
        self._produce("reverb", out, wet_percent)

    def synthesize_noise(self, out, duration_sec, color="pink", amplitude=1.0, volume=0.03, sample_rate=44100):
        self._produce("noise", out, duration_sec)

    def blend_and_encode(self, a, b, out, bitrate_kbps, sample_rate=44100):
        self._produce("blend_and_encode", out, bitrate_kbps)

    def blend(self, a, b, out):
        self._produce("blend", out)

    def probe_duration(self, inp):
        with self._lock:
            self.calls.append(("probe_duration", Path(inp)))
        return self.duration

    def probe_sample_rate(self, inp):
        return self.sample_rate


@pytest.fixture(autouse=True)
def _clear_abort():
    reset_abort()
    yield
    reset_abort()


@pytest.fixture()
def toolkit() -> FakeToolkit:
    return FakeToolkit()


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        scratch_root=tmp_path / "scratch",
        log_dir=tmp_path / "logs",
        workers=1,
        progress_interval=0.01,
    )


@pytest.fixture()
def input_file(tmp_path) -> Path:
    p = tmp_path / "music" / "track.mp3"
    p.parent.mkdir(parents=True)
    p.write_bytes(b"ID3" + b"\x00" * 64)
    return p


@pytest.fixture()
def output_dir(tmp_path) -> Path:
    return tmp_path / "out"
