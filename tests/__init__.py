"""
PlanDB Test Suite.

This package contains:
- unit/: Unit tests (pure components and in-memory backends)
- integration/: Integration tests (PlanStore and HTTP API over in-memory backends)
"""
