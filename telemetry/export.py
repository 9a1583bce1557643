from __future__ import annotations

"""
Session recording and the exported session document.

Document schema (JSON, version 1):
    {
      "format": "navstate.session", "version": 1,
      "session_id": str, "started": ISO-8601, "ended": ISO-8601,
      "events": [ {"ts", "t", "magnitude_g", "jerk", "speed_mps"}, ... ],   # arrival order
      "final_state": NavigationState dict | null,
      "peak_g_force": float, "max_speed_mps": float, "distance_m": float,
      "audit": AuditVerdict dict | null,
      "counters": {str: int}
    }
Floats are written with repr precision, so load_session() gives back the
same scalars that were exported.
"""

import json
import time
from collections import deque
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from common.geo import G0
from common.logging_setup import get_logger
from common.types import Accelerometer
from common.utils import iso_from_ms
from estimator.state import NavigationState


log = get_logger("telemetry.export")

FORMAT = "navstate.session"
VERSION = 1


@dataclass(slots=True)
class SessionEvent:
    """Notable inertial event (jerk or g-force spike)."""
    ts: str
    t: float
    magnitude_g: float
    jerk: float
    speed_mps: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SessionEvent":
        return cls(
            ts=str(d["ts"]),
            t=float(d["t"]),
            magnitude_g=float(d["magnitude_g"]),
            jerk=float(d["jerk"]),
            speed_mps=float(d["speed_mps"]),
        )


@dataclass
class SessionRecord:
    session_id: str
    started: str
    ended: str
    events: List[SessionEvent] = field(default_factory=list)
    final_state: Optional[NavigationState] = None
    peak_g_force: float = 1.0
    max_speed_mps: float = 0.0
    distance_m: float = 0.0
    audit: Optional[Dict[str, Any]] = None
    counters: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": FORMAT,
            "version": VERSION,
            "session_id": self.session_id,
            "started": self.started,
            "ended": self.ended,
            "events": [e.to_dict() for e in self.events],
            "final_state": None if self.final_state is None else self.final_state.to_dict(),
            "peak_g_force": self.peak_g_force,
            "max_speed_mps": self.max_speed_mps,
            "distance_m": self.distance_m,
            "audit": self.audit,
            "counters": dict(self.counters),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SessionRecord":
        if d.get("format") != FORMAT:
            raise ValueError(f"not a {FORMAT} document")
        if int(d.get("version", 0)) != VERSION:
            raise ValueError(f"unsupported session document version: {d.get('version')}")
        fs = d.get("final_state")
        return cls(
            session_id=str(d["session_id"]),
            started=str(d["started"]),
            ended=str(d["ended"]),
            events=[SessionEvent.from_dict(e) for e in d.get("events", [])],
            final_state=None if fs is None else NavigationState.from_dict(fs),
            peak_g_force=float(d["peak_g_force"]),
            max_speed_mps=float(d["max_speed_mps"]),
            distance_m=float(d["distance_m"]),
            audit=d.get("audit"),
            counters={str(k): int(v) for k, v in (d.get("counters") or {}).items()},
        )


class SessionRecorder:
    """
    Accumulates the exportable artifact of a session: bounded event log,
    maxima and the latest state/verdict. Fed by the session consumer only.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        *,
        jerk_threshold: float = 5.0,
        g_threshold: float = 1.5,
        max_events: int = 1000,
    ):
        self.session_id = session_id or f"nav-{int(time.time() * 1000)}"
        self.started = iso_from_ms()
        self.jerk_threshold = float(jerk_threshold)
        self.g_threshold = float(g_threshold)
        self.events: Deque[SessionEvent] = deque(maxlen=max(1, int(max_events)))
        self.final_state: Optional[NavigationState] = None
        self.peak_g_force = 1.0
        self.max_speed_mps = 0.0
        self.distance_m = 0.0
        self.audit: Optional[Dict[str, Any]] = None
        self._prev_mag: Optional[float] = None

    @classmethod
    def from_config(cls, P: Dict, session_id: Optional[str] = None) -> "SessionRecorder":
        c = P.get("session", {})
        return cls(
            session_id,
            jerk_threshold=float(c.get("event_jerk_mps3", 5.0)),
            g_threshold=float(c.get("event_g", 1.5)),
            max_events=int(c.get("max_events", 1000)),
        )

    def observe_accel(self, sample: Accelerometer, speed_mps: float, wallclock_ms: float) -> Optional[SessionEvent]:
        """Log the sample when its jerk or g-force crosses a threshold."""
        mag = sample.magnitude
        jerk = 0.0 if self._prev_mag is None else (mag - self._prev_mag) / sample.dt
        self._prev_mag = mag
        g_force = mag / G0 + 1.0
        if abs(jerk) < self.jerk_threshold and g_force < self.g_threshold:
            return None
        ev = SessionEvent(
            ts=iso_from_ms(wallclock_ms),
            t=sample.t,
            magnitude_g=mag / G0,
            jerk=jerk,
            speed_mps=float(speed_mps),
        )
        self.events.append(ev)
        return ev

    def observe_snapshot(self, snap) -> None:
        self.final_state = snap.state
        if snap.metrics is not None:
            self.peak_g_force = max(self.peak_g_force, snap.metrics.peak_g_force)
            self.max_speed_mps = max(self.max_speed_mps, snap.metrics.speed_mps)
            self.distance_m = snap.metrics.distance_m
        if snap.verdict is not None:
            self.audit = snap.verdict.to_dict()

    def reset_jerk(self) -> None:
        """Break the jerk chain (after a pause)."""
        self._prev_mag = None

    def record(self, counters: Optional[Dict[str, int]] = None) -> SessionRecord:
        return SessionRecord(
            session_id=self.session_id,
            started=self.started,
            ended=iso_from_ms(),
            events=list(self.events),
            final_state=self.final_state,
            peak_g_force=self.peak_g_force,
            max_speed_mps=self.max_speed_mps,
            distance_m=self.distance_m,
            audit=self.audit,
            counters=dict(counters or {}),
        )


def export_session(record: SessionRecord, path: str) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
    log.info("Session exported", extra={"extra": {"path": str(p), "events": len(record.events)}})
    return p


def load_session(path: str) -> SessionRecord:
    return SessionRecord.from_dict(json.loads(Path(path).read_text()))
