"""
Integration tests for the session loop (ingest -> estimator -> metrics -> audit -> publisher)
"""

import pytest
import dataclasses
import os
import sys
import threading
import time
from unittest.mock import Mock

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import load_config
from common.errors import EphemerisUnavailable
from estimator.core import StateEstimator
from estimator.state import NavigationState, initial_vector
from ingest.normalize import SensorIngest
from ingest.sources import SyntheticSource
from session.loop import SessionLoop
from session.service import _feed
from telemetry.audit import CoherenceAuditor
from telemetry.export import load_session
from telemetry.metrics import C_LIGHT, NOMINAL_SOUND_KMH, DerivedMetricsEngine

SEED = (43.2965, 5.3698, 0.0)


def _loop(**kwargs) -> SessionLoop:
    initial = kwargs.pop("initial", None)
    return SessionLoop(
        SensorIngest(),
        StateEstimator(SEED, initial=initial),
        DerivedMetricsEngine(),
        CoherenceAuditor(),
        **kwargs,
    )


def _accel(loop: SessionLoop, x: float, t: float) -> None:
    loop.submit_raw("accelerometer", {"x": x, "y": 0.0, "z": 0.0}, t)


class TestIntegration:
    """Test cases for the zero-order-hold integration clock"""

    def test_constant_acceleration_replay(self):
        """1 m/s^2 for 10 s at 10 ms: 10 m/s, displayed as 36.000 km/h"""
        loop = _loop()
        for k in range(1001):
            _accel(loop, 1.0, k * 0.01)
        assert loop.drain() == 1001

        snap = loop.latest()
        assert snap.seq == 1000
        assert snap.metrics.speed_mps == pytest.approx(10.0, abs=1e-9)
        assert snap.to_dict()["display"]["speed_kmh"] == "36.000"
        assert loop.elapsed_s == pytest.approx(10.0)
        assert snap.metrics.distance_m == pytest.approx(50.0, rel=1e-3)

    def test_first_event_only_sets_baseline(self):
        """No snapshot until there is a gap to integrate"""
        loop = _loop()
        _accel(loop, 1.0, 3.0)
        loop.drain()
        assert loop.latest() is None

    def test_ticks_integrate_held_reading(self):
        """Ticks between sensor samples integrate the held acceleration"""
        loop = _loop()
        _accel(loop, 2.0, 0.0)
        loop.tick(0.5)
        loop.tick(1.0)
        loop.drain()
        snap = loop.latest()
        assert snap.seq == 2
        assert snap.state.velocity[0] == pytest.approx(2.0)
        assert loop.counters["ticks"] == 2

    def test_cross_source_skew_integrates_nothing(self):
        """A gyroscope sample stamped before the baseline does not integrate"""
        loop = _loop()
        _accel(loop, 1.0, 0.0)
        _accel(loop, 1.0, 1.0)
        loop.submit_raw("gyroscope", {"x": 0.0, "y": 0.0, "z": 0.1}, 0.99)
        loop.drain()
        assert loop.counters["skew"] == 1
        assert loop.latest().seq == 1
        assert loop.latest().state.velocity[0] == pytest.approx(1.0)

    def test_stalled_accelerometer_clock_uses_default_timestep(self):
        """Repeated timestamps on the accelerometer integrate the default 10 ms each"""
        loop = _loop()
        for _ in range(100):
            _accel(loop, 1.0, 5.0)
        loop.drain()
        snap = loop.latest()
        assert snap.seq == 99
        assert snap.state.velocity[0] == pytest.approx(0.99)
        assert loop.elapsed_s == pytest.approx(0.99)
        assert loop.counters["skew"] == 0
        assert loop.all_counters()["substituted_dt"] == 99

    def test_pause_resume_excludes_idle_time(self):
        """Nothing is integrated while paused and idle time is not counted"""
        loop = _loop()
        for k in range(101):
            _accel(loop, 1.0, round(k * 0.01, 2))
        loop.pause(1.0)
        for k in range(101, 500):
            _accel(loop, 1.0, round(k * 0.01, 2))
            loop.tick(round(k * 0.01, 2))
        loop.resume(5.0)
        for k in range(501, 601):
            _accel(loop, 1.0, round(k * 0.01, 2))
        loop.drain()

        snap = loop.latest()
        assert snap.paused is False
        assert snap.state.velocity[0] == pytest.approx(2.0)
        assert loop.elapsed_s == pytest.approx(2.0)
        assert snap.metrics.elapsed_s == pytest.approx(2.0)
        assert loop.counters["paused_drops"] == 399

    def test_pause_is_idempotent(self):
        """A second pause does not reset anything"""
        loop = _loop()
        loop.pause(0.0)
        loop.pause(1.0)
        loop.drain()
        assert loop.paused is True
        loop.resume(2.0)
        loop.drain()
        assert loop.paused is False


class TestCorrections:
    """Test cases for GPS / barometer / ambient events"""

    def test_fix_visible_in_next_snapshot(self):
        """A GPS fix mid-session is exactly the position of the next snapshot"""
        loop = _loop()
        for k in range(200):
            _accel(loop, 1.5, k * 0.01)
        loop.drain()
        assert loop.fix_status == "unavailable"
        seq = loop.latest().seq

        loop.submit_raw("gps", {"lat": 43.3, "lon": 5.4, "alt": 10.0}, 2.0)
        loop.drain()
        snap = loop.latest()
        assert snap.seq == seq + 1
        assert snap.state.position == (43.3, 5.4, 10.0)
        assert snap.fix_status == "acquired"

    def test_fix_drift_reported(self):
        """The distance between the predicted position and the injected fix is kept"""
        loop = _loop()
        loop.submit_raw("gps", {"lat": SEED[0] + 0.001, "lon": SEED[1], "alt": 0.0}, 0.0)
        loop.drain()
        assert loop.status()["fix_drift_m"] == pytest.approx(111.2, abs=0.5)

    def test_invalid_fix_sets_error(self):
        """An invalid GPS sample is dropped, counted and flags the fix status"""
        loop = _loop()
        loop.submit_raw("gps", {"lat": "nowhere", "lon": 5.4, "alt": 10.0}, 0.0)
        loop.drain()
        assert loop.fix_status == "error"
        assert loop.counters["invalid"] == 1
        assert loop.latest() is None

    def test_barometer_cycles(self):
        """Every accepted barometer reading is one cycle"""
        loop = _loop()
        loop.submit_raw("barometer", {"hpa": 1013.25}, 0.0)
        loop.submit_raw("barometer", {"hpa": 1013.10}, 1.0)
        loop.drain()
        snap = loop.latest()
        assert snap.seq == 2
        assert snap.state.velocity[2] > 0.0

    def test_ambient_only_held(self):
        """Ambient readings update the status but publish nothing"""
        loop = _loop()
        loop.submit_raw("ambient", {"lux": 320.0}, 0.0)
        loop.submit_raw("ambient", {"db": 54.0}, 0.1)
        loop.drain()
        assert loop.latest() is None
        assert loop.status()["ambient"] == {"lux": 320.0, "db": 54.0}


class TestFaults:
    """Test cases for fault and fallback handling"""

    def test_domain_error_published_as_fault(self):
        """Speed at c faults the snapshot; the loop keeps going"""
        start = dataclasses.replace(
            NavigationState.from_vector(initial_vector(*SEED)), velocity=(C_LIGHT, 0.0, 0.0)
        )
        loop = _loop(initial=start)
        loop.tick(0.0)
        loop.tick(0.01)
        loop.submit_raw("gps", {"lat": 43.3, "lon": 5.4, "alt": 0.0}, 0.02)
        loop.drain()

        snap = loop.latest()
        assert snap.seq == 2
        assert snap.fault is not None
        assert snap.metrics is None and snap.verdict is None
        assert loop.counters["faults"] == 2

    def test_ephemeris_failure_uses_nominal_sound_speed(self):
        """Without an ephemeris the nominal 1234.8 km/h is used"""
        eph = Mock(side_effect=EphemerisUnavailable("no sky", source="ephemeris"))
        loop = _loop(ephemeris=eph)
        _accel(loop, 1.0, 0.0)
        _accel(loop, 1.0, 0.01)
        loop.drain()
        assert loop.latest().metrics.sound_speed_kmh == NOMINAL_SOUND_KMH
        assert loop.status()["ephemeris"]["status"] == "unavailable"

    def test_local_sound_speed_from_ephemeris(self):
        """With the ephemeris available the local speed of sound is used"""
        loop = _loop(temperature_c=15.0)
        _accel(loop, 1.0, 0.0)
        _accel(loop, 1.0, 0.01)
        loop.drain()
        assert loop.latest().metrics.sound_speed_kmh == pytest.approx(1225.07, abs=0.01)
        assert loop.status()["ephemeris"]["status"] == "ok"

    def test_wallclock_from_timesync(self):
        """Snapshot wallclocks come from the corrected clock"""
        ts = Mock()
        ts.get_corrected_now.return_value = 1_700_000_000_000.0
        ts.to_dict.return_value = {"status": "synced"}
        loop = _loop(timesync=ts)
        _accel(loop, 1.0, 0.0)
        _accel(loop, 1.0, 0.01)
        loop.drain()
        assert loop.latest().ts == "2023-11-14T22:13:20.000Z"
        assert loop.status()["timesync"] == {"status": "synced"}


class TestConsumerThread:
    """Test cases for the threaded consumer"""

    def test_drain_refused_from_other_thread(self):
        """Only the consumer applies events while it runs"""
        loop = _loop()
        loop.start()
        try:
            with pytest.raises(RuntimeError):
                loop.drain()
        finally:
            loop.stop()

    def test_threaded_consumer_applies_in_order(self):
        """The consumer thread applies every queued event"""
        loop = _loop()
        loop.start()
        try:
            for k in range(101):
                _accel(loop, 1.0, k * 0.01)
            deadline = time.monotonic() + 5.0
            while loop.publisher.seq < 100 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            loop.stop()
        assert loop.latest().seq == 100
        assert loop.latest().state.velocity[0] == pytest.approx(1.0)

    def test_concurrent_drains_refused(self):
        """A second drain() while another thread is applying events is refused"""
        loop = _loop()
        entered = threading.Event()
        release = threading.Event()
        predict = loop.estimator.predict

        def held_predict(*args):
            entered.set()
            release.wait(5.0)
            return predict(*args)

        loop.estimator.predict = held_predict
        for k in range(3):
            _accel(loop, 1.0, k * 0.01)
        worker = threading.Thread(target=loop.drain)
        worker.start()
        try:
            assert entered.wait(5.0)
            with pytest.raises(RuntimeError):
                loop.drain()
        finally:
            release.set()
            worker.join(5.0)
        assert loop.latest().seq == 2

    def test_stop_timeout_leaves_busy_consumer_alone(self):
        """stop() returns without draining when the consumer outlives the timeout"""
        loop = _loop()
        entered = threading.Event()
        release = threading.Event()
        predict = loop.estimator.predict

        def held_predict(*args):
            entered.set()
            release.wait(5.0)
            return predict(*args)

        loop.estimator.predict = held_predict
        loop.start()
        consumer = loop._consumer
        try:
            for k in range(3):
                _accel(loop, 1.0, k * 0.01)
            assert entered.wait(5.0)
            loop.stop(timeout=0.05)
            assert loop.pending() == 1
        finally:
            release.set()
            consumer.join(5.0)
        assert not consumer.is_alive()
        assert loop.latest().seq == 1

    def test_ticker_produces_ticks(self):
        """A running ticker enqueues ticks on the loop clock"""
        loop = _loop()
        loop.start(tick_s=0.01)
        try:
            time.sleep(0.2)
        finally:
            loop.stop()
        assert loop.counters["ticks"] > 0

    def test_feed_synthetic_source(self):
        """The service feeder pushes a whole synthetic run through the loop"""
        loop = _loop()
        events = SyntheticSource(rate_hz=100).events(duration_s=1.0)
        _feed(loop, events, threading.Event())
        loop.drain()
        assert loop.counters["samples"] > 200
        assert loop.fix_status == "acquired"
        assert loop.latest() is not None


class TestSessionExport:
    """Test cases for exporting a live session"""

    def test_export_round_trip(self, tmp_path):
        """The exported document carries the final state and maxima of the session"""
        loop = SessionLoop.from_config(load_config(None), session_id="nav-export")
        for k in range(301):
            _accel(loop, 1.0 if k < 150 else 0.0, k * 0.01)
        loop.drain()
        path = loop.export(str(tmp_path / "session.json"))

        rec = load_session(str(path))
        snap = loop.latest()
        assert rec.session_id == "nav-export"
        assert rec.final_state == snap.state
        assert rec.distance_m == snap.metrics.distance_m
        assert rec.max_speed_mps == pytest.approx(1.5)
        assert rec.counters["snapshots"] == 300
        assert len(rec.events) >= 1

    def test_resume_from_exported_state(self, tmp_path):
        """A new session seeded from an export starts where the last one ended"""
        loop = _loop()
        for k in range(101):
            _accel(loop, 1.0, k * 0.01)
        loop.submit_raw("gps", {"lat": 43.31, "lon": 5.41, "alt": 3.0}, 1.0)
        loop.drain()
        path = loop.export(str(tmp_path / "a.json"))

        final = load_session(str(path)).final_state
        resumed = SessionLoop.from_config(load_config(None), initial=final)
        assert resumed.estimator.state() == final
