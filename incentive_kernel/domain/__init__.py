"""
Pure domain layer.

Value objects and time abstraction with NO dependencies on the ORM,
the database, or I/O (SystemClock excepted).
"""

from incentive_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from incentive_kernel.domain.workflow import (
    Guard,
    Transition,
    Workflow,
    allowed_actions,
    find_transition,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Guard",
    "Transition",
    "Workflow",
    "allowed_actions",
    "find_transition",
]
