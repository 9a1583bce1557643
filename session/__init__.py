"""
Session

Provides:
- SessionLoop: single-consumer event queue, zero-order-hold integration clock,
  pause/resume, one snapshot per predict/correct cycle
- Ticker: 10 ms tick producer
- TimeSync: network time offset for snapshot wallclocks
- compute_celestial: solar position, sidereal time and local speed of sound
- service.py: CLI runner (python -m session.service)

Usage examples:
    from session import SessionLoop
    loop = SessionLoop.from_config(load_config())
"""
from .ephemeris import Celestial, compute_celestial
from .loop import SessionLoop, Ticker
from .timesync import TimeSync

__all__ = ["SessionLoop", "Ticker", "TimeSync", "Celestial", "compute_celestial"]
