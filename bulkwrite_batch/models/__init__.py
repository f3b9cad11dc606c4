"""
bulkwrite_batch.models -- ORM models for retry jobs and stored records.

Architecture: bulkwrite_batch/models. Imports from bulkwrite_kernel.db.base only.
"""

from bulkwrite_batch.models.retry_job import RetryJobModel
from bulkwrite_batch.models.stored_record import StoredRecordModel

__all__ = [
    "RetryJobModel",
    "StoredRecordModel",
]
