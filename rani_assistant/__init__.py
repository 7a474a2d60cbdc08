"""Rani system assistant core (state-driven, privilege-aware).

Core design goals:
- Wanted vs. current state, reconciled into idempotent shell fragments
- Priority-ordered, deduplicated task queue
- Persistent command sessions (normal and escalated)
- Verify-then-execute script transport
- Centralized logging
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
