"""
Telemetry

- metrics.py: DerivedMetricsEngine (speed, Lorentz factor, proper time, g-force, drag, distance)
- audit.py: CoherenceAuditor (bias-error growth vs. fixed threshold)
- publisher.py: TelemetryPublisher / Snapshot (single swapped reference)
- export.py: SessionRecorder, export_session / load_session (JSON session document)
"""
from .audit import CoherenceAuditor
from .export import SessionRecord, SessionRecorder, export_session, load_session
from .metrics import DerivedMetricsEngine, lorentz_factor
from .publisher import Snapshot, TelemetryPublisher

__all__ = [
    "CoherenceAuditor",
    "DerivedMetricsEngine",
    "lorentz_factor",
    "Snapshot",
    "TelemetryPublisher",
    "SessionRecord",
    "SessionRecorder",
    "export_session",
    "load_session",
]
