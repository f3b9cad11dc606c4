"""Bulk write services: executor, context, hooks, processor, retry."""

from bulkwrite_batch.services.context import (
    TRUNCATION_MARKER,
    ExecutionContext,
    RunMetadata,
)
from bulkwrite_batch.services.executor import OperationExecutor
from bulkwrite_batch.services.hooks import (
    ErrorHook,
    HookManager,
    PostChunkHook,
    PreChunkHook,
)
from bulkwrite_batch.services.processor import Processor
from bulkwrite_batch.services.retry_handler import RetryHandler
from bulkwrite_batch.services.retry_runner import ScheduledRetryRunner
from bulkwrite_batch.services.scheduler import (
    DeferredScheduler,
    InlineScheduler,
    JobScheduler,
)

__all__ = [
    "DeferredScheduler",
    "ErrorHook",
    "ExecutionContext",
    "HookManager",
    "InlineScheduler",
    "JobScheduler",
    "OperationExecutor",
    "PostChunkHook",
    "PreChunkHook",
    "Processor",
    "RetryHandler",
    "RunMetadata",
    "ScheduledRetryRunner",
    "TRUNCATION_MARKER",
]
