"""
Unit tests for network time sync
"""

import pytest
import os
import sys
from unittest.mock import Mock

import requests

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from session.timesync import DEFAULT_URL, TimeSync


class FakeClock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _response(status_code=200, payload=None):
    r = Mock()
    r.status_code = status_code
    r.json.return_value = payload or {}
    return r


class TestTimeSync:
    """Test cases for TimeSync"""

    def test_unsynced_uses_local_clock(self):
        """Before any sync the corrected clock is the local clock"""
        ts = TimeSync(session=Mock(), clock=FakeClock(1000.0))
        assert ts.status == "unsynced"
        assert ts.get_corrected_now() == 1_000_000.0

    def test_sync_from_iso_timestamp(self):
        """offset = server time - local time"""
        session = Mock()
        session.get.return_value = _response(payload={"utc_datetime": "1970-01-01T00:16:41.000000+00:00"})
        ts = TimeSync(session=session, clock=FakeClock(1000.0))
        assert ts.sync() is True
        assert ts.status == "synced"
        assert ts.offset_ms == pytest.approx(1000.0)
        assert ts.get_corrected_now() == pytest.approx(1_001_000.0)
        session.get.assert_called_once_with(DEFAULT_URL, timeout=5.0)

    def test_sync_from_unixtime(self):
        """The unixtime field is used when no ISO timestamp is present"""
        session = Mock()
        session.get.return_value = _response(payload={"unixtime": 998})
        ts = TimeSync(session=session, clock=FakeClock(1000.0))
        assert ts.sync() is True
        assert ts.offset_ms == pytest.approx(-2000.0)

    def test_network_failure_keeps_offset(self):
        """A failed sync reports unavailable and keeps the last offset"""
        session = Mock()
        session.get.return_value = _response(payload={"unixtime": 1001})
        ts = TimeSync(session=session, clock=FakeClock(1000.0))
        ts.sync()

        session.get.side_effect = requests.ConnectionError("network down")
        assert ts.sync() is False
        assert ts.status == "unavailable"
        assert ts.offset_ms == pytest.approx(1000.0)
        assert "network down" in ts.last_error

    def test_http_error(self):
        """Non-200 responses are a failed sync"""
        session = Mock()
        session.get.return_value = _response(status_code=503)
        ts = TimeSync(session=session, clock=FakeClock(1000.0))
        assert ts.sync() is False
        assert ts.offset_ms == 0.0
        assert ts.to_dict()["status"] == "unavailable"

    def test_unparseable_payload(self):
        """A body without a usable time is a failed sync"""
        session = Mock()
        bad = _response()
        bad.json.side_effect = ValueError("not json")
        session.get.return_value = bad
        ts = TimeSync(session=session, clock=FakeClock(1000.0))
        assert ts.sync() is False

        session.get.return_value = _response(payload={"timezone": "Etc/UTC"})
        assert ts.sync() is False

    def test_from_config(self):
        """URL and timeout come from the timesync section"""
        ts = TimeSync.from_config({"timesync": {"url": "http://time.local/now", "timeout_s": 1.5}}, session=Mock())
        assert ts.url == "http://time.local/now"
        assert ts.timeout == 1.5
