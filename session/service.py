from __future__ import annotations

"""
Session service: run the estimator end to end from a sensor source.

Examples:
  # Synthetic sensors in real time for 30 s, control surface on :8000
  python -m session.service --synthetic --realtime --duration 30 --serve

  # Replay a CSV as fast as possible and write the session document
  python -m session.service --imu data/run.csv --export logs/run.json

  # Continue from the final state of an exported session
  python -m session.service --synthetic --duration 10 --resume-from logs/run.json
"""

import argparse
import threading
import time
from typing import Iterable, Optional

import uvicorn

from common.config import DEFAULT_CONFIG_PATH, load_config
from common.errors import SensorUnavailable
from common.logging_setup import get_logger, setup_logging
from ingest.sources import CSVReplaySource, RawEvent, SyntheticSource
from server.app import create_app
from session.loop import SessionLoop
from session.timesync import TimeSync
from telemetry.export import load_session


log = get_logger("session.service")


def _feed(
    loop: SessionLoop,
    events: Iterable[RawEvent],
    stop_event: threading.Event,
    align_clock: bool = False,
) -> None:
    """
    Push raw events into the loop until the source ends or stop is set.
    align_clock shifts source time onto the loop clock so the ticker and the
    sensors share one time base.
    """
    offset: Optional[float] = None
    count = 0
    try:
        for source, fields, t in events:
            if stop_event.is_set():
                break
            if offset is None:
                offset = loop.clock() - t if align_clock else 0.0
            loop.submit_raw(source, fields, t + offset)
            count += 1
    except SensorUnavailable as e:
        log.error("Sensor source unavailable", extra={"extra": e.to_dict()})
    log.info("Sensor feed finished", extra={"extra": {"events": count}})


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to params.yaml")

    gsrc = ap.add_mutually_exclusive_group()
    gsrc.add_argument("--imu", help="Path to sensor CSV file to replay")
    gsrc.add_argument("--synthetic", action="store_true", help="Procedural sensor stream (default)")

    ap.add_argument("--rate", type=int, default=100, help="Synthetic inertial rate (Hz)")
    ap.add_argument("--duration", type=float, default=None, help="Stop after N seconds")
    ap.add_argument("--realtime", action="store_true", help="Pace the source at its own timestamps and run the ticker")
    ap.add_argument("--export", default=None, help="Session document path (default: <export_dir>/<session_id>.json)")
    ap.add_argument("--resume-from", default=None, help="Seed the estimator from an exported session")
    ap.add_argument("--serve", action="store_true", help="Run the control surface (FastAPI) in the foreground")
    ap.add_argument("--no-timesync", action="store_true", help="Skip network time sync")
    ap.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR")

    args = ap.parse_args()

    P = load_config(args.config)
    setup_logging(args.log_level or P.get("logging", {}).get("level"), force=True)

    initial = None
    if args.resume_from:
        initial = load_session(args.resume_from).final_state
        log.info("Seeded from session document", extra={"extra": {"path": args.resume_from, "has_state": initial is not None}})

    timesync = None
    if P.get("timesync", {}).get("enabled", True) and not args.no_timesync:
        timesync = TimeSync.from_config(P)

    loop = SessionLoop.from_config(P, initial=initial, timesync=timesync)

    # Source selection
    if args.imu:
        events = CSVReplaySource(args.imu, realtime=args.realtime).events()
    else:
        events = SyntheticSource(rate_hz=args.rate).events(duration_s=args.duration, realtime=args.realtime)

    stop = threading.Event()
    threads = []

    if timesync is not None:
        t_sync = threading.Thread(target=timesync.sync, name="nav-timesync", daemon=True)
        t_sync.start()

    # Duration handling (optional global stop)
    if args.duration is not None:
        def _timer():
            time.sleep(float(args.duration))
            stop.set()
        t_timer = threading.Thread(target=_timer, daemon=True)
        t_timer.start()

    tick_s = float(P.get("session", {}).get("tick_s", 0.010)) if args.realtime else None
    loop.start(tick_s=tick_s)

    t_feed = threading.Thread(
        target=_feed,
        args=(loop, events, stop, args.realtime),
        name="nav-feed",
        daemon=True,
    )
    t_feed.start()
    threads.append(t_feed)

    try:
        if args.serve:
            srv = P.get("server", {})
            uvicorn.run(create_app(loop), host=srv.get("host", "0.0.0.0"), port=int(srv.get("port", 8000)))
            stop.set()
        else:
            while any(t.is_alive() for t in threads) and not stop.is_set():
                time.sleep(0.2)
    except KeyboardInterrupt:
        stop.set()
    finally:
        stop.set()
        for t in threads:
            t.join(timeout=1.0)
        loop.stop()

    path = loop.export(args.export)
    print(f"Session finished: {path}")


if __name__ == "__main__":
    main()
