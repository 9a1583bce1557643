"""
Sensor ingest

Provides:
- SensorIngest: raw platform events -> typed SensorSamples
    - per-source dt with a 10 ms fallback for non-positive deltas
    - 0.005 m/s^2 dead zone on linear acceleration
- Sources yielding raw (source, fields, t) events:
    - CSVReplaySource: replay from CSV (t, ax, ay, az, gx, gy, gz, lat, lon, alt, hpa)
    - SyntheticSource: procedural generator for demos and tests

Usage examples:
    from ingest import SensorIngest, SyntheticSource
"""
from .normalize import SensorIngest, dead_zone
from .sources import CSVReplaySource, SyntheticSource, write_sensor_csv

__all__ = ["SensorIngest", "dead_zone", "CSVReplaySource", "SyntheticSource", "write_sensor_csv"]
