from __future__ import annotations

"""
Error taxonomy for the navigation pipeline.

Only DomainError is surfaced as a fault in published snapshots; every other
error is recovered where it is raised and reported through a status field.
"""

from typing import Any, Dict, Optional


class NavError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, *, source: Optional[str] = None, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.source = source
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "msg": str(self), "source": self.source, **self.detail}


class InvalidSample(NavError):
    """Malformed, missing or non-finite sensor fields. The sample is dropped."""


class NonPositiveTimestep(NavError):
    """Per-source delta time <= 0. Recovered by substituting the default timestep."""


class SensorUnavailable(NavError):
    """Permission denied or sensor API absent. Operation continues with reduced fidelity."""


class DomainError(NavError):
    """A physical invariant is violated (e.g. speed >= c). Reported as a fault."""


class EphemerisUnavailable(NavError):
    """Ephemeris computation failed; nominal constants are used instead."""


class TimeSyncUnavailable(NavError):
    """Network time could not be fetched; the last known offset is kept."""
