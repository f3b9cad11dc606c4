"""
bulkwrite_batch -- Resilient bulk writes with deferred retry.

Splits arbitrarily large homogeneous record batches into quota-compliant
chunks, writes each chunk with per-record partial-failure semantics, runs
pre/post/error hooks around every chunk, and persists still-failing
records as retry jobs replayed later with exponential backoff.

Architecture:
    bulkwrite_batch/ is a top-level package.  Nothing in bulkwrite_kernel/
    or bulkwrite_config/ imports from bulkwrite_batch (create_tables
    imports the models lazily).  BulkWriteOrchestrator is the entry point.

Invariants:
    Chunks concatenate to the input, order preserved
    One outcome per record; per-record failures never raise
    Failed records deduplicated by record key
    Hook failures are logged, never propagated
    Retry payloads rehydrated through the entity type registry
    At most one runner claims a PENDING job (conditional update)
    Retry jobs never return to PENDING; reschedule creates a successor row
    No orphaned PENDING rows after a scheduler failure
"""
