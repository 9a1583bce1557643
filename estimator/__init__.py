"""
Navigation state estimator

- state.py: versioned 24-element state layout and the NavigationState view
- core.py: StateEstimator (predict / correct_with_fix / correct_with_pressure)
"""
from .core import StateEstimator
from .state import LAYOUT_VERSION, N_STATES, NavigationState

__all__ = ["StateEstimator", "NavigationState", "LAYOUT_VERSION", "N_STATES"]
