# doomerflow/server.py
"""
DoomerFlow - HTTP API

Responsibilities:
- Start one mix run in the background from a JSON request
- Expose the live progress snapshot (the same record the CLI bar polls)
- Return the final run report once the run is over
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from doomerflow import __version__
from doomerflow.common.audio_utils import require_tools
from doomerflow.common.errors import SetupFailure
from doomerflow.core.config import Settings, load_settings
from doomerflow.core.log import attach_log_file, default_log_file, detach_log_file, setup_logging
from doomerflow.engine.orchestrator import Orchestrator
from doomerflow.engine.progress import progress_percent
from doomerflow.models.progress import ProgressSnapshot
from doomerflow.prompter import StaticPrompter

logger = logging.getLogger("DoomerFlow.server")

# =============================================================================
# DATA MODELS
# =============================================================================

class RunRequest(BaseModel):
    input_path: str
    output_dir: str
    mixes: int = Field(9, ge=1)
    workers: Optional[int] = Field(None, ge=0)
    quality: Optional[int] = Field(None, ge=32, le=320)


class RunStatus(BaseModel):
    running: bool
    percent: float
    progress: Optional[ProgressSnapshot] = None
    report: Optional[dict] = None
    error: Optional[str] = None
    log_file: Optional[str] = None
    notifications: list[dict] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    engine: str
    version: str
    busy: bool
    timestamp: str


# =============================================================================
# RUN MANAGER
# =============================================================================

class RunManager:
    """One run at a time; the latest run stays queryable after it ends."""

    def __init__(self, settings: Optional[Settings] = None, toolkit: Any = None):
        self.settings = settings or load_settings()
        self.toolkit = toolkit
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._orchestrator: Optional[Orchestrator] = None
        self._prompter: Optional[StaticPrompter] = None
        self._error: Optional[str] = None
        self.log_file: Optional[Path] = None

    @property
    def busy(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, req: RunRequest) -> None:
        with self._lock:
            if self.busy:
                raise RuntimeError("A run is already in progress")

            overrides = {}
            if req.workers is not None:
                overrides["workers"] = req.workers
            if req.quality is not None:
                overrides["bitrate_kbps"] = req.quality
            settings = self.settings.model_copy(update=overrides)

            self.log_file = default_log_file(settings.log_dir)
            self._prompter = StaticPrompter(Path(req.input_path), Path(req.output_dir), req.mixes)
            self._orchestrator = Orchestrator(
                settings, self._prompter, toolkit=self.toolkit, log_file=self.log_file, show_progress=False
            )
            self._error = None
            self._thread = threading.Thread(target=self._run, name="doomerflow-run", daemon=True)
            self._thread.start()

    def _run(self) -> None:
        try:
            handler = attach_log_file(self.log_file)
        except OSError as e:
            logger.error(f"❌ Cannot open run log {self.log_file}: {e}")
            self._error = f"Cannot open run log {self.log_file}: {e}"
            return
        try:
            if self.toolkit is None:
                require_tools()
            self._orchestrator.run()
        except SetupFailure as e:
            logger.error(f"❌ Setup failed: {e}")
            self._error = str(e)
        except Exception as e:
            logger.exception("Run crashed")
            self._error = f"{type(e).__name__}: {e}"
        finally:
            detach_log_file(handler)

    def wait(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def status(self) -> RunStatus:
        orch = self._orchestrator
        snap = orch.tracker.poll() if orch is not None and orch.tracker is not None else None
        report = orch.report.to_dict() if orch is not None and orch.report is not None else None
        notes = []
        if self._prompter is not None:
            notes = [{"kind": k, "title": t, "message": m} for k, t, m in self._prompter.messages]
        return RunStatus(
            running=self.busy,
            percent=progress_percent(snap),
            progress=snap,
            report=report,
            error=self._error,
            log_file=str(self.log_file) if self.log_file else None,
            notifications=notes,
        )


# =============================================================================
# APP
# =============================================================================

def create_app(manager: Optional[RunManager] = None) -> FastAPI:
    app = FastAPI(title="DoomerFlow", version=__version__)
    app.state.manager = manager or RunManager()

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="online",
            engine="ffmpeg + sox doomer pipeline",
            version=__version__,
            busy=app.state.manager.busy,
            timestamp=datetime.now().isoformat(),
        )

    @app.post("/api/runs", response_model=RunStatus, status_code=202)
    async def start_run(req: RunRequest):
        logger.info(f"🎛️ Run | input={req.input_path} | mixes={req.mixes}")
        try:
            app.state.manager.start(req)
        except RuntimeError as e:
            raise HTTPException(409, str(e))
        return app.state.manager.status()

    @app.get("/api/runs/current", response_model=RunStatus)
    async def current_run():
        return app.state.manager.status()

    return app


# =============================================================================
# MAIN
# =============================================================================

def main() -> None:
    setup_logging(verbose=True)
    uvicorn.run(create_app(), host="127.0.0.1", port=8000)


if __name__ == "__main__":
    main()
