"""Utility modules for the bulkwrite kernel."""

from bulkwrite_kernel.utils.hashing import (
    canonicalize_json,
    hash_payload,
    hash_record_content,
)

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "hash_record_content",
]
