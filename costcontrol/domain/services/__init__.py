"""
Domain Services - Aggregation, orphan cleanup, deduplication and synchronization.
"""

from .aggregation_engine import AggregationEngine, InvariantViolation
from .orphan_filter import OrphanFilter, OrphanClassification
from .deduplicator import Deduplicator, DedupeResult, choose_survivor, dedupe_key
from .sync_orchestrator import SyncOrchestrator, SyncResult, MaintenanceResult
from .edit_service import CostControlEditService, MANUAL_FIELDS

__all__ = [
    'AggregationEngine',
    'InvariantViolation',
    'OrphanFilter',
    'OrphanClassification',
    'Deduplicator',
    'DedupeResult',
    'choose_survivor',
    'dedupe_key',
    'SyncOrchestrator',
    'SyncResult',
    'MaintenanceResult',
    'CostControlEditService',
    'MANUAL_FIELDS',
]
