from __future__ import annotations

from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from common.config import load_config
from common.logging_setup import get_logger
from session.loop import SessionLoop


log = get_logger("server")


class ExportRequest(BaseModel):
    path: Optional[str] = None


def create_app(loop: SessionLoop) -> FastAPI:
    """
    Control surface over a running SessionLoop.

    Pause/resume go through the loop's queue like every other event; the read
    endpoints only look at the published snapshot and the status dict.
    """
    app = FastAPI(title="Navigation State API", version="1.0.0")

    # (Optional) CORS for local dev tools
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten as needed
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        snap = loop.latest()
        return {
            "status": "ok",
            "seq": loop.publisher.seq,
            "has_snapshot": snap is not None,
            "fault": None if snap is None else snap.fault,
        }

    @app.get("/status")
    def status():
        return loop.status()

    @app.get("/snapshot")
    def snapshot():
        snap = loop.latest()
        if snap is None:
            raise HTTPException(status_code=404, detail="no_snapshot_yet")
        return snap.to_dict()

    @app.post("/pause")
    def pause():
        loop.pause()
        return {"queued": "pause"}

    @app.post("/resume")
    def resume():
        loop.resume()
        return {"queued": "resume"}

    @app.post("/export")
    def export(req: Optional[ExportRequest] = None):
        path = loop.export(req.path if req is not None else None)
        log.info("Export requested", extra={"extra": {"path": str(path)}})
        return {"path": str(Path(path))}

    return app


# -------- local dev entrypoint --------
if __name__ == "__main__":
    P = load_config()
    _loop = SessionLoop.from_config(P)
    _loop.start(tick_s=float(P["session"].get("tick_s", 0.010)))
    srv = P.get("server", {})
    uvicorn.run(create_app(_loop), host=srv.get("host", "0.0.0.0"), port=int(srv.get("port", 8000)))
    _loop.stop()
