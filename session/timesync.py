from __future__ import annotations

"""
Network time offset for snapshot wallclocks.

Usage:
    ts = TimeSync()               # default: worldtimeapi.org UTC endpoint
    ts.sync()                     # False on any network/parse failure (offset kept)
    now_ms = ts.get_corrected_now()
"""

import time
from typing import Any, Callable, Dict, Optional

import requests

from common.errors import TimeSyncUnavailable
from common.logging_setup import get_logger
from common.utils import parse_iso8601


log = get_logger("session.timesync")

DEFAULT_URL = "https://worldtimeapi.org/api/timezone/Etc/UTC"


class TimeSync:
    """
    Local clock + network-derived offset. A failed sync is never fatal: the
    offset stays at its last known value (zero before the first success) and
    `status` reports "unavailable".
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.url = url
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        self._clock = clock
        self.offset_ms = 0.0
        self.round_trip_ms: Optional[float] = None
        self.status = "unsynced"
        self.last_error: Optional[str] = None

    @classmethod
    def from_config(cls, P: Dict, session: Optional[requests.Session] = None) -> "TimeSync":
        c = P.get("timesync", {})
        return cls(url=str(c.get("url", DEFAULT_URL)), timeout=float(c.get("timeout_s", 5.0)), session=session)

    def local_ms(self) -> float:
        return self._clock() * 1000.0

    def get_corrected_now(self) -> float:
        """Milliseconds since epoch, corrected by the last known offset."""
        return self.local_ms() + self.offset_ms

    def sync(self) -> bool:
        try:
            offset, rtt = self._measure()
        except TimeSyncUnavailable as e:
            self.status = "unavailable"
            self.last_error = str(e)
            log.warning("Time sync unavailable; keeping offset", extra={"extra": {**e.to_dict(), "offset_ms": self.offset_ms}})
            return False
        self.offset_ms = offset
        self.round_trip_ms = rtt
        self.status = "synced"
        self.last_error = None
        log.info("Time synced", extra={"extra": {"offset_ms": round(offset, 3), "rtt_ms": round(rtt, 3)}})
        return True

    def _measure(self):
        t0 = self.local_ms()
        try:
            r = self.session.get(self.url, timeout=self.timeout)
        except requests.RequestException as e:
            raise TimeSyncUnavailable(f"request failed: {e}", source="timesync") from e
        t1 = self.local_ms()
        if r.status_code != 200:
            raise TimeSyncUnavailable(f"HTTP {r.status_code}", source="timesync")
        try:
            server_ms = _server_ms(r.json())
        except (ValueError, KeyError, TypeError) as e:
            raise TimeSyncUnavailable(f"unparseable time payload: {e}", source="timesync") from e
        # Server stamped the reply roughly half-way through the round trip
        return server_ms - 0.5 * (t0 + t1), t1 - t0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "offset_ms": self.offset_ms,
            "round_trip_ms": self.round_trip_ms,
            "error": self.last_error,
        }


def _server_ms(payload: Dict[str, Any]) -> float:
    if "utc_datetime" in payload:
        return parse_iso8601(str(payload["utc_datetime"])).timestamp() * 1000.0
    return float(payload["unixtime"]) * 1000.0
