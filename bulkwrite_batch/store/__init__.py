"""
bulkwrite_batch.store -- Record store protocol and the SQL reference store.
"""

from bulkwrite_batch.store.base import RecordStore
from bulkwrite_batch.store.sql_store import SqlRecordStore

__all__ = [
    "RecordStore",
    "SqlRecordStore",
]
