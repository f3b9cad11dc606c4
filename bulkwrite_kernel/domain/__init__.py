"""
Pure kernel domain layer.

Time and entity schemas.  Services receive a Clock by constructor
injection and never call ``datetime.now()`` themselves.
"""

from bulkwrite_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from bulkwrite_kernel.domain.schemas import EntitySchema, FieldSchema, FieldType

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "EntitySchema",
    "FieldSchema",
    "FieldType",
]
