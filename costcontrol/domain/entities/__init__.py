"""
Domain Entities - Core immutable business objects.
"""

from .source_entity import (
    SourceEntity,
    EstimateSnapshot,
    STRUCTURE_LEVEL,
    ELEMENT_LEVEL,
    DETAIL_LEVEL,
    SOURCE_LEVELS,
)

__all__ = [
    'SourceEntity', 'EstimateSnapshot',
    'STRUCTURE_LEVEL', 'ELEMENT_LEVEL', 'DETAIL_LEVEL', 'SOURCE_LEVELS',
]
