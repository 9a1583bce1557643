from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from common.logging_setup import get_logger
from common.types import AuditVerdict, DerivedMetrics, FixStatus
from common.utils import iso_from_ms
from estimator.state import NavigationState


log = get_logger("telemetry.publisher")


@dataclass(frozen=True, slots=True)
class Snapshot:
    """
    One fully formed publish tick.

    Attributes:
        seq: monotonically increasing sequence number (1-based)
        wallclock_ms: corrected wallclock (ms since epoch)
        ts: ISO-8601 form of wallclock_ms
        state: read-only NavigationState
        metrics / verdict: None when the cycle raised a DomainError (see fault)
        fix_status: acquired | error | unavailable
        paused: control-surface pause flag at publish time
        fault: DomainError message, if any
    """
    seq: int
    wallclock_ms: float
    ts: str
    state: NavigationState
    metrics: Optional[DerivedMetrics]
    verdict: Optional[AuditVerdict]
    fix_status: str = FixStatus.UNAVAILABLE
    paused: bool = False
    fault: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "wallclock_ms": self.wallclock_ms,
            "ts": self.ts,
            "state": self.state.to_dict(),
            "metrics": None if self.metrics is None else self.metrics.to_dict(),
            "display": None if self.metrics is None else self.metrics.display(),
            "verdict": None if self.verdict is None else self.verdict.to_dict(),
            "fix_status": self.fix_status,
            "paused": self.paused,
            "fault": self.fault,
        }


Subscriber = Callable[[Snapshot], None]


class TelemetryPublisher:
    """
    Builds immutable snapshots and swaps a single `latest` reference.

    Readers on any thread call latest() and get either the previous or the new
    snapshot; nothing is ever visible half-built.
    """

    def __init__(self) -> None:
        self._latest: Optional[Snapshot] = None
        self._seq = 0
        self._subs: List[Subscriber] = []
        self._subs_lock = threading.Lock()

    @property
    def seq(self) -> int:
        return self._seq

    def latest(self) -> Optional[Snapshot]:
        return self._latest

    def subscribe(self, fn: Subscriber) -> None:
        with self._subs_lock:
            self._subs.append(fn)

    def unsubscribe(self, fn: Subscriber) -> None:
        with self._subs_lock:
            if fn in self._subs:
                self._subs.remove(fn)

    def publish(
        self,
        state: NavigationState,
        metrics: Optional[DerivedMetrics],
        verdict: Optional[AuditVerdict],
        *,
        wallclock_ms: float,
        fix_status: str = FixStatus.UNAVAILABLE,
        paused: bool = False,
        fault: Optional[str] = None,
    ) -> Snapshot:
        snap = Snapshot(
            seq=self._seq + 1,
            wallclock_ms=float(wallclock_ms),
            ts=iso_from_ms(wallclock_ms),
            state=state,
            metrics=metrics,
            verdict=verdict,
            fix_status=fix_status,
            paused=paused,
            fault=fault,
        )
        self._seq = snap.seq
        self._latest = snap

        with self._subs_lock:
            subs = list(self._subs)
        for fn in subs:
            try:
                fn(snap)
            except Exception:
                log.exception("Snapshot subscriber failed", extra={"extra": {"seq": snap.seq}})
        return snap
