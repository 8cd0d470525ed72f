"""
Domain Layer - Core business entities and services for cost control.

This module contains:
- entities/: Immutable views of estimate rows (SourceEntity, EstimateSnapshot)
- tree.py: In-memory index over a project's cost-control nodes
- services/: Aggregation, orphan cleanup, deduplication, synchronization, edits
"""

from .entities import SourceEntity, EstimateSnapshot
from .tree import CostTree

__all__ = [
    'SourceEntity', 'EstimateSnapshot',
    'CostTree',
]
