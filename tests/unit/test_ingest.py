"""
Unit tests for sensor ingest and sensor sources
"""

import pytest
import math
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import InvalidSample, SensorUnavailable
from common.types import Accelerometer, Ambient, Barometer, GPSFix, Gyroscope
from ingest.normalize import DEFAULT_DT_S, SensorIngest, dead_zone
from ingest.sources import CSVReplaySource, SyntheticSource, write_sensor_csv


class TestDeadZone:
    """Test cases for the linear acceleration dead zone"""

    def test_small_components_clamped_to_zero(self):
        """Components below 0.005 m/s^2 become exactly 0.0"""
        assert dead_zone((0.001, -0.004, 0.0)) == (0.0, 0.0, 0.0)

    def test_large_components_kept(self):
        """Components at or above the threshold pass through"""
        assert dead_zone((0.01, -0.005, 2.5)) == (0.01, -0.005, 2.5)


class TestSensorIngest:
    """Test cases for SensorIngest.normalize"""

    def test_accelerometer_dead_zoned(self):
        """Accelerometer samples come out typed and dead-zoned"""
        ing = SensorIngest()
        s = ing.normalize("accelerometer", {"x": 0.001, "y": "1.5", "z": 0}, 0.0)
        assert isinstance(s, Accelerometer)
        assert s.vector == (0.0, 1.5, 0.0)

    def test_first_sample_uses_default_dt(self):
        """The first sample of a source gets the default 10 ms timestep"""
        ing = SensorIngest()
        s = ing.normalize("gyroscope", {"x": 0.1, "y": 0.0, "z": 0.0}, 5.0)
        assert isinstance(s, Gyroscope)
        assert s.dt == DEFAULT_DT_S
        assert ing.substituted_dt == 0

    def test_dt_per_source(self):
        """dt is measured against the previous sample of the same source only"""
        ing = SensorIngest()
        ing.normalize("accelerometer", {"x": 0, "y": 0, "z": 0}, 1.00)
        ing.normalize("gyroscope", {"x": 0, "y": 0, "z": 0}, 1.50)
        s = ing.normalize("accelerometer", {"x": 0, "y": 0, "z": 0}, 1.02)
        assert s.dt == pytest.approx(0.02)

    def test_non_positive_dt_substituted(self):
        """A repeated or earlier timestamp is replaced by the default timestep"""
        ing = SensorIngest(default_dt=0.01)
        ing.normalize("accelerometer", {"x": 0, "y": 0, "z": 0}, 2.0)
        s = ing.normalize("accelerometer", {"x": 0, "y": 0, "z": 0}, 2.0)
        assert s.dt == 0.01
        s = ing.normalize("accelerometer", {"x": 0, "y": 0, "z": 0}, 1.5)
        assert s.dt == 0.01
        assert ing.substituted_dt == 2
        assert ing.last_substituted is True

        ing.normalize("accelerometer", {"x": 0, "y": 0, "z": 0}, 2.5)
        assert ing.last_substituted is False

    def test_late_sample_does_not_move_baseline_back(self):
        """The per-source baseline is monotonic"""
        ing = SensorIngest()
        ing.normalize("accelerometer", {"x": 0, "y": 0, "z": 0}, 2.0)
        ing.normalize("accelerometer", {"x": 0, "y": 0, "z": 0}, 1.0)
        s = ing.normalize("accelerometer", {"x": 0, "y": 0, "z": 0}, 2.5)
        assert s.dt == pytest.approx(0.5)

    @pytest.mark.parametrize(
        "source,fields",
        [
            ("accelerometer", {"x": 1.0, "y": 2.0}),
            ("accelerometer", {"x": float("nan"), "y": 0.0, "z": 0.0}),
            ("gyroscope", {"x": "fast", "y": 0.0, "z": 0.0}),
            ("gps", {"lat": 95.0, "lon": 5.0, "alt": 0.0}),
            ("gps", {"lat": 43.0, "lon": 181.0, "alt": 0.0}),
            ("barometer", {"hpa": 0.0}),
            ("ambient", {}),
            ("magnetometer", {"x": 1.0}),
        ],
    )
    def test_invalid_samples_rejected(self, source, fields):
        """Malformed, non-finite or out-of-range events raise InvalidSample"""
        with pytest.raises(InvalidSample):
            SensorIngest().normalize(source, fields, 0.0)

    def test_non_mapping_fields_rejected(self):
        """Fields must be a mapping"""
        with pytest.raises(InvalidSample):
            SensorIngest().normalize("barometer", None, 0.0)

    def test_invalid_sample_does_not_advance_baseline(self):
        """A rejected sample leaves the source baseline where it was"""
        ing = SensorIngest()
        ing.normalize("barometer", {"hpa": 1013.0}, 1.0)
        with pytest.raises(InvalidSample):
            ing.normalize("barometer", {"hpa": -1.0}, 3.0)
        s = ing.normalize("barometer", {"hpa": 1012.9}, 2.0)
        assert isinstance(s, Barometer)
        assert s.dt == pytest.approx(1.0)

    def test_gps_and_ambient(self):
        """GPS fixes and ambient readings come out typed"""
        ing = SensorIngest()
        fix = ing.normalize("gps", {"lat": 43.3, "lon": 5.4, "alt": 10}, 0.0)
        assert isinstance(fix, GPSFix)
        assert (fix.lat, fix.lon, fix.alt) == (43.3, 5.4, 10.0)
        amb = ing.normalize("ambient", {"lux": 250}, 0.0)
        assert isinstance(amb, Ambient)
        assert amb.lux == 250.0 and amb.db is None

    def test_reset_forgets_baselines(self):
        """After reset() the next sample is treated as the first one"""
        ing = SensorIngest(default_dt=0.01)
        ing.normalize("accelerometer", {"x": 0, "y": 0, "z": 0}, 1.0)
        ing.reset()
        s = ing.normalize("accelerometer", {"x": 0, "y": 0, "z": 0}, 9.0)
        assert s.dt == 0.01


class TestSources:
    """Test cases for replay and synthetic sources"""

    def test_synthetic_event_counts(self):
        """One second at 100 Hz yields 100 accelerometer and 100 gyroscope events"""
        events = list(SyntheticSource(rate_hz=100, gps_period_s=0.5, baro_period_s=0).events(duration_s=1.0))
        kinds = [e[0] for e in events]
        assert kinds.count("accelerometer") == 100
        assert kinds.count("gyroscope") == 100
        assert kinds.count("gps") == 2
        assert kinds.count("barometer") == 0

    def test_synthetic_reproducible(self):
        """The same seed yields the same stream"""
        a = list(SyntheticSource(seed=7).events(duration_s=0.2))
        b = list(SyntheticSource(seed=7).events(duration_s=0.2))
        assert a == b

    def test_csv_round_trip(self, tmp_path):
        """write_sensor_csv output replays as the same events"""
        src = list(SyntheticSource(rate_hz=50, gps_period_s=0.2, baro_period_s=0.2).events(duration_s=0.4))
        path = tmp_path / "run.csv"
        rows = write_sensor_csv(str(path), src)
        assert rows == 20

        replay = list(CSVReplaySource(str(path)).events())
        assert [e[0] for e in replay].count("accelerometer") == 20
        assert [e[0] for e in replay].count("gps") == 2
        first_acc = next(e for e in replay if e[0] == "accelerometer")
        assert float(first_acc[1]["x"]) == pytest.approx(src[0][1]["x"])
        assert all(math.isfinite(e[2]) for e in replay)

    def test_csv_missing_file(self, tmp_path):
        """A missing replay file is reported as SensorUnavailable"""
        with pytest.raises(SensorUnavailable):
            list(CSVReplaySource(str(tmp_path / "missing.csv")).events())
