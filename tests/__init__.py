"""
Navigation State Test Suite

This package contains tests for the navigation state estimator, its derived
telemetry, the coherence audit and the session loop.

Structure:
- unit/: Unit tests for individual components
- integration/: Session loop and control surface end to end
"""
