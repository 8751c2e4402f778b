"""
Test fixtures package.

Provides fakes for the scheduler's collaborators (store, collector, clocks,
listeners) and small data builders.
"""

from .fakes import (
    T0,
    FakeClock,
    FakeCollector,
    FakeMonotonic,
    FakeStore,
    RecordingListener,
    RecordingSleep,
    default_tier_configs,
    make_assignments,
)

__all__ = [
    "T0",
    "FakeClock",
    "FakeCollector",
    "FakeMonotonic",
    "FakeStore",
    "RecordingListener",
    "RecordingSleep",
    "default_tier_configs",
    "make_assignments",
]
