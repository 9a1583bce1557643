from __future__ import annotations

"""
Session loop: the single consumer between sensor producers and the estimator.

Producers (sensor callbacks, the ticker, the control surface) only enqueue:
    loop.submit_raw("accelerometer", {"x": .., "y": .., "z": ..}, t)
    loop.tick(t) / loop.pause(t) / loop.resume(t)

One consumer applies the queue in arrival order, either the thread started by
start() or explicit drain() calls (replay, tests):
    loop.start(); ...; loop.stop()
    # or
    loop.drain()

Integration clock: the latest accelerometer/gyroscope readings are held
(zero-order hold). Ticks and inertial events advance the clock from the time
baseline and integrate the held readings over the gap; a non-positive gap
(cross-source skew) integrates nothing, unless the accelerometer's own clock
stalled: then ingest's default timestep is integrated instead. Every completed
predict/correct cycle publishes exactly one snapshot.
"""

import queue
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import numpy as np

from common.errors import DomainError, EphemerisUnavailable, InvalidSample
from common.geo import P0_HPA, haversine_m
from common.logging_setup import get_logger
from common.types import Accelerometer, Ambient, Barometer, FixStatus, GPSFix, Gyroscope
from common.utils import RateTimer, RunningStats
from estimator.core import StateEstimator
from estimator.state import NavigationState
from ingest.normalize import SensorIngest
from session.ephemeris import Celestial, compute_celestial
from session.timesync import TimeSync
from telemetry.audit import CoherenceAuditor
from telemetry.export import SessionRecorder, export_session
from telemetry.metrics import DerivedMetricsEngine
from telemetry.publisher import Snapshot, TelemetryPublisher


log = get_logger("session.loop")

Event = Tuple[str, Any]


class SessionLoop:
    """
    Owns the event queue and wires SensorIngest -> StateEstimator ->
    DerivedMetricsEngine -> CoherenceAuditor -> TelemetryPublisher.

    `elapsed_s` is active session time on the event clock: the sum of the
    integrated gaps, so paused time never counts.
    """

    def __init__(
        self,
        ingest: SensorIngest,
        estimator: StateEstimator,
        metrics: DerivedMetricsEngine,
        auditor: CoherenceAuditor,
        publisher: Optional[TelemetryPublisher] = None,
        recorder: Optional[SessionRecorder] = None,
        *,
        timesync: Optional[TimeSync] = None,
        ephemeris: Callable[..., Celestial] = compute_celestial,
        ephemeris_period_s: float = 60.0,
        temperature_c: float = 15.0,
        export_dir: str = "logs",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ingest = ingest
        self.estimator = estimator
        self.metrics = metrics
        self.auditor = auditor
        self.publisher = publisher or TelemetryPublisher()
        self.recorder = recorder or SessionRecorder()
        self.timesync = timesync
        self._ephemeris = ephemeris
        self.ephemeris_period_s = float(ephemeris_period_s)
        self.temperature_c = float(temperature_c)
        self.export_dir = export_dir
        self.clock = clock

        self._q: "queue.Queue[Event]" = queue.Queue()
        self._stop = threading.Event()
        self._consumer: Optional[threading.Thread] = None
        self._ticker: Optional[Ticker] = None
        self._record_lock = threading.Lock()
        # Held by whichever thread is applying events: the consumer or one drain()
        self._consume_lock = threading.Lock()

        # Consumer-owned state
        self.paused = False
        self.fix_status = FixStatus.UNAVAILABLE
        self.elapsed_s = 0.0
        self._baseline: Optional[float] = None
        self._held_accel = np.zeros(3)
        self._held_gyro = np.zeros(3)
        self._last_hpa: Optional[float] = None
        self.fix_drift_m: Optional[float] = None
        self.ambient: Dict[str, Optional[float]] = {"lux": None, "db": None}
        self.celestial: Optional[Celestial] = None
        self.ephemeris_status = "pending"
        self._ephemeris_due_ms: Optional[float] = None

        self.counters: Dict[str, int] = {
            "samples": 0,
            "invalid": 0,
            "ticks": 0,
            "skew": 0,
            "paused_drops": 0,
            "snapshots": 0,
            "faults": 0,
        }
        self._rate = RateTimer(window=100)
        self._latency = RunningStats()

    @classmethod
    def from_config(
        cls,
        P: Dict,
        *,
        initial: Optional[NavigationState] = None,
        timesync: Optional[TimeSync] = None,
        session_id: Optional[str] = None,
    ) -> "SessionLoop":
        c = P.get("session", {})
        return cls(
            SensorIngest.from_config(P),
            StateEstimator.from_config(P, initial=initial),
            DerivedMetricsEngine.from_config(P),
            CoherenceAuditor.from_config(P),
            TelemetryPublisher(),
            SessionRecorder.from_config(P, session_id=session_id),
            timesync=timesync,
            ephemeris_period_s=float(c.get("ephemeris_period_s", 60.0)),
            temperature_c=float(c.get("temperature_c", 15.0)),
            export_dir=str(c.get("export_dir", "logs")),
        )

    # ----------------------------
    # Producer side (any thread)
    # ----------------------------
    def submit_raw(self, source: str, fields: Mapping[str, Any], t: float) -> None:
        self._q.put(("sample", (source, fields, t)))

    def tick(self, t: Optional[float] = None) -> None:
        self._q.put(("tick", self.clock() if t is None else t))

    def pause(self, t: Optional[float] = None) -> None:
        self._q.put(("pause", self.clock() if t is None else t))

    def resume(self, t: Optional[float] = None) -> None:
        self._q.put(("resume", self.clock() if t is None else t))

    def pending(self) -> int:
        return self._q.qsize()

    def latest(self) -> Optional[Snapshot]:
        return self.publisher.latest()

    # ----------------------------
    # Consumer side
    # ----------------------------
    def drain(self, max_items: Optional[int] = None) -> int:
        """Apply queued events on the calling thread. Returns how many were applied."""
        c = self._consumer
        if c is not None and c.is_alive() and threading.current_thread() is not c:
            raise RuntimeError("drain() called while the consumer thread is running")
        if not self._consume_lock.acquire(blocking=False):
            raise RuntimeError("drain() called while another thread is applying events")
        n = 0
        try:
            while max_items is None or n < max_items:
                try:
                    ev = self._q.get_nowait()
                except queue.Empty:
                    break
                self._apply(ev)
                n += 1
        finally:
            self._consume_lock.release()
        return n

    def start(self, tick_s: Optional[float] = None) -> None:
        """Start the consumer thread, and a ticker when tick_s > 0."""
        if self._consumer is not None and self._consumer.is_alive():
            return
        self._stop.clear()
        self._consumer = threading.Thread(target=self._run, name="nav-consumer", daemon=True)
        self._consumer.start()
        if tick_s:
            self._ticker = Ticker(self, period_s=tick_s)
            self._ticker.start()
        log.info("Session started", extra={"extra": {"session_id": self.recorder.session_id, "tick_s": tick_s}})

    def stop(self, timeout: float = 2.0) -> None:
        """Stop ticker and consumer, then apply whatever is still queued (unless the consumer is stuck)."""
        if self._ticker is not None:
            self._ticker.stop(timeout)
            self._ticker = None
        self._stop.set()
        if self._consumer is not None:
            self._consumer.join(timeout=timeout)
            if self._consumer.is_alive():
                log.warning(
                    "Consumer still busy after stop timeout; queued events left unapplied",
                    extra={"extra": {"timeout": timeout, "pending": self.pending()}},
                )
                return
        self.drain()
        log.info("Session stopped", extra={"extra": {"counters": dict(self.counters)}})

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                ev = self._q.get(timeout=0.05)
            except queue.Empty:
                continue
            try:
                with self._consume_lock:
                    self._apply(ev)
            except Exception:
                # Keep consuming; a bug in one event must not stall the session
                log.exception("Event failed", extra={"extra": {"kind": ev[0]}})

    def _apply(self, ev: Event) -> None:
        kind, payload = ev
        t0 = time.perf_counter()
        published = False
        if kind == "sample":
            published = self._on_sample(*payload)
        elif kind == "tick":
            self.counters["ticks"] += 1
            if not self.paused:
                published = self._advance(float(payload))
        elif kind == "pause":
            self._on_pause(float(payload))
        elif kind == "resume":
            self._on_resume(float(payload))
        else:
            log.warning("Unknown event kind", extra={"extra": {"kind": kind}})
        if published:
            self._latency.add((time.perf_counter() - t0) * 1000.0)

    # ----------------------------
    # Event handlers
    # ----------------------------
    def _on_sample(self, source: str, fields: Mapping[str, Any], t: Any) -> bool:
        try:
            sample = self.ingest.normalize(source, fields, t)
        except InvalidSample as e:
            self.counters["invalid"] += 1
            log.warning("Invalid sample dropped", extra={"extra": e.to_dict()})
            if source == "gps":
                self.fix_status = FixStatus.ERROR
            return False
        self.counters["samples"] += 1

        if isinstance(sample, Accelerometer):
            published = False
            if self.paused:
                self.counters["paused_drops"] += 1
            else:
                fallback = sample.dt if self.ingest.last_substituted else None
                published = self._advance(sample.t, fallback)
                with self._record_lock:
                    self.recorder.observe_accel(sample, self.estimator.state().speed, self._wallclock_ms())
            self._held_accel = np.array(sample.vector)
            return published
        if isinstance(sample, Gyroscope):
            published = False
            if self.paused:
                self.counters["paused_drops"] += 1
            else:
                published = self._advance(sample.t)
            self._held_gyro = np.array(sample.vector)
            return published
        if isinstance(sample, GPSFix):
            before = self.estimator.state()
            if self.estimator.correct_with_fix(sample.lat, sample.lon, sample.alt):
                self.fix_status = FixStatus.ACQUIRED
                self.fix_drift_m = haversine_m(before.lat, before.lon, sample.lat, sample.lon)
                log.debug("Fix injected", extra={"extra": {"drift_m": self.fix_drift_m}})
                self._publish(0.0)
                return True
            self.fix_status = FixStatus.ERROR
            return False
        if isinstance(sample, Barometer):
            self._last_hpa = sample.hpa
            if self.estimator.correct_with_pressure(sample.hpa, sample.t, self.temperature_c):
                self._publish(0.0)
                return True
            return False
        if isinstance(sample, Ambient):
            if sample.lux is not None:
                self.ambient["lux"] = sample.lux
            if sample.db is not None:
                self.ambient["db"] = sample.db
        return False

    def _advance(self, t: float, fallback_dt: Optional[float] = None) -> bool:
        """
        Integrate the held readings from the baseline up to t.

        fallback_dt is the default timestep ingest substituted for a sample whose
        own clock did not move; it stands in for a non-positive gap and pushes
        the baseline forward by that much.
        """
        if self._baseline is None:
            self._baseline = t
            return False
        dt = t - self._baseline
        if dt <= 0:
            if fallback_dt is None:
                self.counters["skew"] += 1
                return False
            dt = fallback_dt
            t = self._baseline + dt
        self._baseline = t
        if not self.estimator.predict(self._held_accel, self._held_gyro, dt):
            return False
        self.elapsed_s += dt
        self._publish(dt)
        return True

    def _on_pause(self, t: float) -> None:
        if self.paused:
            return
        self.paused = True
        log.info("Session paused", extra={"extra": {"t": t, "elapsed_s": self.elapsed_s}})

    def _on_resume(self, t: float) -> None:
        if not self.paused:
            return
        self.paused = False
        # Idle time is never integrated: restart every clock at the resume instant
        self._baseline = t
        self.ingest.reset()
        with self._record_lock:
            self.recorder.reset_jerk()
        log.info("Session resumed", extra={"extra": {"t": t, "elapsed_s": self.elapsed_s}})

    # ----------------------------
    # Publish cycle
    # ----------------------------
    def _wallclock_ms(self) -> float:
        if self.timesync is not None:
            return self.timesync.get_corrected_now()
        return time.time() * 1000.0

    def _sound_speed_kmh(self, state: NavigationState, wallclock_ms: float) -> Optional[float]:
        if self._ephemeris_due_ms is None or wallclock_ms >= self._ephemeris_due_ms:
            self._ephemeris_due_ms = wallclock_ms + self.ephemeris_period_s * 1000.0
            try:
                self.celestial = self._ephemeris(
                    wallclock_ms,
                    state.lat,
                    state.lon,
                    self.temperature_c,
                    self._last_hpa if self._last_hpa is not None else P0_HPA,
                )
                self.ephemeris_status = "ok"
            except EphemerisUnavailable as e:
                self.celestial = None
                self.ephemeris_status = "unavailable"
                log.warning("Ephemeris unavailable; nominal sound speed", extra={"extra": e.to_dict()})
        return None if self.celestial is None else self.celestial.local_sound_speed_kmh

    def _publish(self, dt: float) -> Snapshot:
        state = self.estimator.state()
        wall = self._wallclock_ms()
        metrics = verdict = None
        fault: Optional[str] = None
        try:
            metrics = self.metrics.compute(
                state, self.estimator.last_accel, self.elapsed_s, dt, self._sound_speed_kmh(state, wall)
            )
            verdict = self.auditor.audit(metrics.proper_time_s, self.estimator.position_sigma())
        except DomainError as e:
            metrics = verdict = None
            fault = str(e)
            self.counters["faults"] += 1
            log.error("Domain fault", extra={"extra": e.to_dict()})

        snap = self.publisher.publish(
            state,
            metrics,
            verdict,
            wallclock_ms=wall,
            fix_status=self.fix_status,
            paused=self.paused,
            fault=fault,
        )
        with self._record_lock:
            self.recorder.observe_snapshot(snap)
        self.counters["snapshots"] += 1
        self._rate.tick()
        return snap

    # ----------------------------
    # Control surface helpers
    # ----------------------------
    def all_counters(self) -> Dict[str, int]:
        out = dict(self.counters)
        out["substituted_dt"] = self.ingest.substituted_dt
        out["rejected"] = self.estimator.rejected
        out["zupt_locks"] = self.estimator.zupt_locks
        out["events"] = len(self.recorder.events)
        return out

    def status(self) -> Dict[str, Any]:
        lat = self._latency
        return {
            "session_id": self.recorder.session_id,
            "fix_status": self.fix_status,
            "fix_drift_m": self.fix_drift_m,
            "paused": self.paused,
            "elapsed_s": self.elapsed_s,
            "seq": self.publisher.seq,
            "queue_depth": self.pending(),
            "counters": self.all_counters(),
            "timesync": {"status": "disabled"} if self.timesync is None else self.timesync.to_dict(),
            "ephemeris": {
                "status": self.ephemeris_status,
                "celestial": None if self.celestial is None else self.celestial.to_dict(),
            },
            "ambient": dict(self.ambient),
            "loop_rate_hz": self._rate.rate(),
            "cycle_latency_ms": {"mean": lat.mean, "std": lat.std, "peak": lat.peak, "n": lat.n},
        }

    def export(self, path: Optional[str] = None) -> Path:
        with self._record_lock:
            record = self.recorder.record(self.all_counters())
        if path is None:
            path = str(Path(self.export_dir) / f"{record.session_id}.json")
        return export_session(record, path)


class Ticker:
    """Enqueues loop.tick() every period_s on its own thread."""

    def __init__(self, loop: SessionLoop, period_s: float = 0.010):
        self.loop = loop
        self.period_s = float(period_s)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="nav-ticker", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        self._thread.join(timeout=timeout)

    def _run(self) -> None:
        next_t = time.perf_counter()
        while True:
            next_t += self.period_s
            if self._stop.wait(max(0.0, next_t - time.perf_counter())):
                break
            self.loop.tick()
