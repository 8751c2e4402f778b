"""Repository module for data access layer.

Repositories use async/await and the IDatabaseAdapter protocol for
testability and dependency injection.
"""

from .tier_assignments import TierAssignmentRepository

__all__ = ["TierAssignmentRepository"]
