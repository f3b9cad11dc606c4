"""
ExecutionContext -- per-run state: metadata and a bounded execution log.

Contract:
    ``log(message)`` appends ``"<timestamp> <LEVEL> <message>\\n"``.  When the
    rendered log would exceed ``max_chars``, the oldest entries are dropped
    (whole entries first, then the head of the single oversized entry) and
    the truncation marker is placed once at the head.  The marker never
    repeats, and ``len(context.text) <= max_chars`` always holds.

    Every entry is mirrored to the structured logger at the same level, so
    the bounded log is a convenience copy, never the only record.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from bulkwrite_kernel.domain.clock import Clock, SystemClock
from bulkwrite_kernel.logging_config import get_logger

from bulkwrite_batch.domain.types import OperationKind

logger = get_logger("batch.context")

TRUNCATION_MARKER = "...[earlier log entries truncated]...\n"

DEFAULT_MAX_LOG_CHARS = 30_000


@dataclass(frozen=True)
class RunMetadata:
    """Identity of one processor run."""

    run_id: UUID
    operation: OperationKind
    entity_type: str
    started_at: datetime
    job_id: UUID | None = None
    attempt: int = 1
    correlation_id: str | None = None


class ExecutionContext:
    """Mutable per-run state handed to hooks."""

    def __init__(
        self,
        metadata: RunMetadata,
        max_chars: int = DEFAULT_MAX_LOG_CHARS,
        clock: Clock | None = None,
    ) -> None:
        if max_chars <= len(TRUNCATION_MARKER):
            raise ValueError(
                f"max_chars must exceed the truncation marker length "
                f"({len(TRUNCATION_MARKER)}), got {max_chars}"
            )
        self._metadata = metadata
        self._max_chars = max_chars
        self._clock = clock or SystemClock()
        self._entries: deque[str] = deque()
        self._size = 0
        self._truncated = False

    @property
    def metadata(self) -> RunMetadata:
        return self._metadata

    @property
    def max_chars(self) -> int:
        return self._max_chars

    @property
    def truncated(self) -> bool:
        return self._truncated

    @property
    def text(self) -> str:
        body = "".join(self._entries)
        return TRUNCATION_MARKER + body if self._truncated else body

    def __len__(self) -> int:
        return self._size + (len(TRUNCATION_MARKER) if self._truncated else 0)

    def log(self, message: str | None, level: int = logging.INFO) -> None:
        """Append one entry.  Blank messages are ignored."""
        if message is None or not str(message).strip():
            return
        text = str(message).rstrip("\n")
        level_name = logging.getLevelName(level)
        entry = f"{self._clock.now().isoformat()} {level_name} {text}\n"

        logger.log(
            level,
            text,
            extra={
                "run_id": str(self._metadata.run_id),
                "job_id": str(self._metadata.job_id) if self._metadata.job_id else None,
                "attempt": self._metadata.attempt,
            },
        )

        self._entries.append(entry)
        self._size += len(entry)
        self._trim()

    def _trim(self) -> None:
        if len(self) <= self._max_chars:
            return
        self._truncated = True
        budget = self._max_chars - len(TRUNCATION_MARKER)
        while self._entries and self._size > budget:
            if len(self._entries) == 1:
                # Keep the tail of a single entry larger than the budget
                only = self._entries.pop()
                tail = only[len(only) - budget:]
                self._entries.append(tail)
                self._size = len(tail)
                break
            self._size -= len(self._entries.popleft())
