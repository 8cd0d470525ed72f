"""
Repository implementations for data access layer.
"""
from .base_repository import BaseRepository
from .cost_control_repository import CostControlRepository
from .estimate_repository import EstimateSnapshotReader

__all__ = [
    'BaseRepository',
    'CostControlRepository',
    'EstimateSnapshotReader',
]
