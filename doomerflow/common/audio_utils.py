from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Optional, Sequence

import ffmpeg

from doomerflow.common.errors import SetupFailure

logger = logging.getLogger("DoomerFlow.audio")

REQUIRED_TOOLS = ("ffmpeg", "ffprobe", "sox")


class AudioError(RuntimeError):
    def __init__(self, message: str, cmd: Sequence[str] = (), returncode: int = -1, stderr: str = ""):
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr


def require_tools(tools: Sequence[str] = REQUIRED_TOOLS) -> None:
    missing = [t for t in tools if shutil.which(t) is None]
    if missing:
        raise SetupFailure(
            f"Missing required tools: {', '.join(missing)}\n"
            "  Ubuntu/Debian: apt-get install ffmpeg sox\n"
            "  macOS: brew install ffmpeg sox"
        )


# =============================================================================
# PROCESS RUNNER
# =============================================================================

_live: set[subprocess.Popen] = set()
_live_lock = threading.Lock()
_aborted = threading.Event()


def abort_running() -> None:
    """
    Kill every tool process still running and refuse to start new ones.
    Called from the interrupt path; jobs blocked in `_run` then fail fast.
    """
    _aborted.set()
    with _live_lock:
        procs = list(_live)
    for p in procs:
        if p.poll() is None:
            logger.warning(f"🛑 Killing pid {p.pid}: {p.args[0] if p.args else '?'}")
            p.kill()


def reset_abort() -> None:
    _aborted.clear()


def _run(cmd: list[str]) -> None:
    if _aborted.is_set():
        raise AudioError("Aborted before start: " + " ".join(cmd), cmd=cmd)

    logger.debug("$ " + " ".join(cmd))
    p = subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        # tools echo input paths, which need not be valid UTF-8
        errors="replace",
    )
    with _live_lock:
        _live.add(p)
        if _aborted.is_set():
            p.kill()
    try:
        _, stderr = p.communicate()
    finally:
        with _live_lock:
            _live.discard(p)

    if p.returncode != 0:
        raise AudioError(
            f"Command failed: {' '.join(cmd)}\nSTDERR:\n{stderr}",
            cmd=cmd,
            returncode=p.returncode,
            stderr=stderr or "",
        )


def _ffmpeg(stream) -> None:
    _run(stream.global_args("-hide_banner", "-nostdin").overwrite_output().compile())


# =============================================================================
# STAGE OPERATIONS
# =============================================================================

def ffmpeg_speed_shift(inp: Path, out: Path, rate: int, target_rate: int) -> None:
    """
    Reinterpret the samples at `rate` and resample back to `target_rate`.
    Pitch and tempo move together (tape-style slowdown).
    """
    out.parent.mkdir(parents=True, exist_ok=True)
    stream = (
        ffmpeg
        .input(str(inp))
        .audio
        .filter("asetrate", int(rate))
        .filter("aresample", int(target_rate))
        .output(str(out), acodec="pcm_s16le")
    )
    _ffmpeg(stream)


def ffmpeg_lowpass(inp: Path, out: Path, cutoff_hz: int) -> None:
    out.parent.mkdir(parents=True, exist_ok=True)
    stream = (
        ffmpeg
        .input(str(inp))
        .audio
        .filter("lowpass", f=int(cutoff_hz))
        .output(str(out), acodec="pcm_s16le")
    )
    _ffmpeg(stream)


def sox_reverb(
    inp: Path,
    out: Path,
    wet_percent: int,
    hf_damping: float = 0.5,
    room_scale: int = 100,
    stereo_depth: int = 100,
    pre_delay: int = 0,
    wet_gain: int = 0,
) -> None:
    """
    sox freeverb. Only the reverberance (wet amount) is a mix parameter,
    the room itself stays fixed across mixes.
    """
    out.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        "sox",
        str(inp),
        str(out),
        "reverb",
        str(wet_percent),
        str(hf_damping),
        str(room_scale),
        str(stereo_depth),
        str(pre_delay),
        str(wet_gain),
    ]
    _run(cmd)


def ffmpeg_noise(
    out: Path,
    duration_sec: float,
    color: str = "pink",
    amplitude: float = 1.0,
    volume: float = 0.03,
    sample_rate: int = 44100,
) -> None:
    """
    Vinyl crackle bed: coloured noise from lavfi, attenuated to a low gain.
    """
    out.parent.mkdir(parents=True, exist_ok=True)
    src = (
        f"anoisesrc=color={color}:duration={duration_sec:.3f}"
        f":amplitude={amplitude}:sample_rate={int(sample_rate)}"
    )
    stream = (
        ffmpeg
        .input(src, f="lavfi")
        .filter("volume", volume)
        .output(str(out), acodec="pcm_s16le", ac=2)
    )
    _ffmpeg(stream)


def ffmpeg_mix_encode(a: Path, b: Path, out: Path, bitrate_kbps: int, sample_rate: int = 44100) -> None:
    """Blend two tracks (longest wins) and encode to MP3 at a fixed bitrate."""
    out.parent.mkdir(parents=True, exist_ok=True)
    mixed = ffmpeg.filter(
        [ffmpeg.input(str(a)).audio, ffmpeg.input(str(b)).audio],
        "amix",
        inputs=2,
        duration="longest",
        dropout_transition=2,
    )
    stream = mixed.output(
        str(out),
        acodec="libmp3lame",
        audio_bitrate=f"{int(bitrate_kbps)}k",
        ar=int(sample_rate),
        ac=2,
    )
    _ffmpeg(stream)


def ffmpeg_mix(a: Path, b: Path, out: Path) -> None:
    """
    Simple mixdown with `amix`, container defaults for the codec.
    """
    out.parent.mkdir(parents=True, exist_ok=True)
    mixed = ffmpeg.filter(
        [ffmpeg.input(str(a)).audio, ffmpeg.input(str(b)).audio],
        "amix",
        inputs=2,
        duration="longest",
    )
    _ffmpeg(mixed.output(str(out)))


# =============================================================================
# PROBING
# =============================================================================

def _probe(inp: Path) -> dict:
    try:
        return ffmpeg.probe(str(inp))
    except ffmpeg.Error as e:
        stderr = e.stderr.decode(errors="replace") if e.stderr else str(e)
        raise AudioError(f"ffprobe failed for {inp}\nSTDERR:\n{stderr}", cmd=["ffprobe", str(inp)], returncode=1, stderr=stderr) from e


def ffprobe_duration(inp: Path) -> Optional[str]:
    """Raw `format.duration` as ffprobe reports it (may be 'N/A' or missing)."""
    info = _probe(inp)
    value = (info.get("format") or {}).get("duration")
    return None if value is None else str(value)


def ffprobe_sample_rate(inp: Path) -> Optional[int]:
    info = _probe(inp)
    for s in info.get("streams", []):
        if s.get("codec_type") == "audio" and s.get("sample_rate"):
            try:
                return int(s["sample_rate"])
            except (TypeError, ValueError):
                return None
    return None


class AudioToolkit:
    """
    Default toolkit backed by ffmpeg/ffprobe/sox. Anything with the same
    methods can stand in for it (tests use an in-memory fake).
    """

    resample = staticmethod(ffmpeg_speed_shift)
    lowpass = staticmethod(ffmpeg_lowpass)
    reverb = staticmethod(sox_reverb)
    synthesize_noise = staticmethod(ffmpeg_noise)
    blend_and_encode = staticmethod(ffmpeg_mix_encode)
    blend = staticmethod(ffmpeg_mix)
    probe_duration = staticmethod(ffprobe_duration)
    probe_sample_rate = staticmethod(ffprobe_sample_rate)
