"""
Pure domain layer.

No ORM, database or I/O dependencies.  The clock is injected into services
so that timestamps stay deterministic under test.
"""

from fab_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
