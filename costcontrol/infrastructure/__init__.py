"""
Infrastructure Layer - Persistence, transactions and locking.

This module provides:
- Repository pattern for data access
- Unit of work and deadlines for atomic, cancellable operations
- Per-project locks
"""

from .repositories import (
    BaseRepository,
    CostControlRepository,
    EstimateSnapshotReader,
)
from .unit_of_work import UnitOfWork, Deadline
from .locks import ProjectLockRegistry, default_lock_registry

__all__ = [
    'BaseRepository',
    'CostControlRepository',
    'EstimateSnapshotReader',
    'UnitOfWork',
    'Deadline',
    'ProjectLockRegistry',
    'default_lock_registry',
]
