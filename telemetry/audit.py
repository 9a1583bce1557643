from __future__ import annotations

import math
from typing import Dict, Optional

from common.errors import DomainError
from common.types import AuditVerdict


class CoherenceAuditor:
    """
    Divergence flag from a bias-error growth model:

        uncertainty = bias_error * sqrt(tau)
        coherent    = uncertainty < threshold

    Pure and idempotent in tau. The covariance-derived position sigma is carried
    alongside as the deterministic figure consumers should prefer.
    """

    def __init__(self, bias_error: float = 0.001, threshold: float = 0.005):
        self.bias_error = float(bias_error)
        self.threshold = float(threshold)

    @classmethod
    def from_config(cls, P: Dict) -> "CoherenceAuditor":
        c = P.get("audit", {})
        return cls(bias_error=float(c.get("bias_error", 0.001)), threshold=float(c.get("threshold", 0.005)))

    def uncertainty(self, proper_time_s: float) -> float:
        tau = float(proper_time_s)
        if not math.isfinite(tau) or tau < 0:
            raise DomainError("proper time must be finite and >= 0", detail={"tau": tau})
        return self.bias_error * math.sqrt(tau)

    def horizon_s(self) -> float:
        """Proper time at which the verdict flips to divergent."""
        return (self.threshold / self.bias_error) ** 2

    def audit(self, proper_time_s: float, position_sigma: Optional[float] = None) -> AuditVerdict:
        u = self.uncertainty(proper_time_s)
        return AuditVerdict(
            coherent=u < self.threshold,
            uncertainty=u,
            threshold=self.threshold,
            position_sigma=position_sigma,
        )
