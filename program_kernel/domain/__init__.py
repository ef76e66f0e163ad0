"""
Pure domain layer for the kernel: time abstractions only.
"""

from program_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    RequestDeadline,
    SystemClock,
)

__all__ = ["Clock", "DeterministicClock", "RequestDeadline", "SystemClock"]
