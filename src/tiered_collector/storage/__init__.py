"""Storage layer: read access to tier assignments and collected rows."""

from .repositories import TierAssignmentRepository

__all__ = ["TierAssignmentRepository"]
