"""Kernel domain layer: pure value objects with zero I/O."""

from studio_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from studio_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Guard",
    "Transition",
    "Workflow",
]
