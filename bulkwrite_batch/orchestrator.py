"""
BulkWriteOrchestrator -- DI container for the bulk write system.

Contract:
    Wires the type registry, codec, record store, executor, hooks,
    processor, retry handler, scheduler and retry runner from one settings
    object.  Single place where all bulk write dependencies are composed,
    and where the handler/runner cycle is closed (``bind_runner``).

Architecture: bulkwrite_batch (top-level).  The canonical entry point for
    configuring and running bulk writes.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Session factory injection: no component holds a session across a
      scheduler call.
"""

from __future__ import annotations

from typing import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from bulkwrite_config import get_settings
from bulkwrite_config.schema import BulkWriteSettings
from bulkwrite_kernel.domain.clock import Clock, SystemClock
from bulkwrite_kernel.logging_config import get_logger

from bulkwrite_batch.codec import JsonRecordCodec
from bulkwrite_batch.domain.types import (
    ExecutionResult,
    OperationDescriptor,
    Record,
    RetryPolicy,
)
from bulkwrite_batch.registry import EntityTypeRegistry, build_registry
from bulkwrite_batch.services.executor import OperationExecutor
from bulkwrite_batch.services.hooks import HookManager
from bulkwrite_batch.services.processor import Processor
from bulkwrite_batch.services.retry_handler import RetryHandler
from bulkwrite_batch.services.retry_runner import ScheduledRetryRunner
from bulkwrite_batch.services.scheduler import DeferredScheduler, JobScheduler
from bulkwrite_batch.store.base import RecordStore
from bulkwrite_batch.store.sql_store import SqlRecordStore

logger = get_logger("batch.orchestrator")


class BulkWriteOrchestrator:
    """DI container for the bulk write system.

    Contract:
        - ``from_settings()`` factory creates a fully wired orchestrator.
        - ``write()`` runs one batch with the configured retry defaults.
        - ``processor`` / ``runner`` / ``retry_handler`` / ``scheduler``
          give access to the wired services.

    Non-goals:
        - Does NOT start a DeferredScheduler -- caller decides.
        - Does NOT create tables -- see ``bulkwrite_kernel.db.create_tables``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: BulkWriteSettings,
        registry: EntityTypeRegistry,
        store: RecordStore,
        scheduler: JobScheduler,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        hooks: HookManager | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._registry = registry
        self._store = store
        self._scheduler = scheduler
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or uuid4()
        self._hooks = hooks or HookManager()
        self._codec = JsonRecordCodec(registry)

        self._retry_handler = RetryHandler(
            session_factory=session_factory,
            codec=self._codec,
            registry=registry,
            scheduler=scheduler,
            settings=settings,
            clock=self._clock,
            actor_id=self._actor_id,
        )
        self._processor = Processor(
            executor=OperationExecutor(store),
            hooks=self._hooks,
            settings=settings,
            retry_handler=self._retry_handler,
            clock=self._clock,
            size_of=self._record_size,
        )
        self._runner = ScheduledRetryRunner(
            session_factory=session_factory,
            processor=self._processor,
            retry_handler=self._retry_handler,
            codec=self._codec,
            clock=self._clock,
            actor_id=self._actor_id,
        )
        self._retry_handler.bind_runner(self._runner.run)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_settings(
        cls,
        session_factory: Callable[[], Session],
        settings: BulkWriteSettings | None = None,
        scheduler: JobScheduler | None = None,
        store: RecordStore | None = None,
        registry: EntityTypeRegistry | None = None,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ) -> BulkWriteOrchestrator:
        """Create a fully wired orchestrator.

        Args:
            session_factory: Callable returning new sessions.
            settings: Optional settings; loaded via ``get_settings()`` if None.
            scheduler: Optional scheduler; a DeferredScheduler on the same
                clock if None.
            store: Optional record store; a SqlRecordStore on the same
                session factory if None.
            registry: Optional type registry; built from settings if None.
            clock: Optional clock for deterministic testing.
            actor_id: Optional actor UUID for audit attribution.
        """
        effective_settings = settings or get_settings()
        effective_clock = clock or SystemClock()
        effective_actor = actor_id or uuid4()
        effective_registry = registry if registry is not None else build_registry(effective_settings)

        effective_store = store or SqlRecordStore(
            session_factory=session_factory,
            registry=effective_registry,
            actor_id=effective_actor,
            max_records_per_call=effective_settings.max_records_per_call,
        )
        effective_scheduler = scheduler or DeferredScheduler(clock=effective_clock)

        logger.info(
            "orchestrator_created",
            extra={
                "entity_types": list(effective_registry.list_types()),
                "scheduler": type(effective_scheduler).__name__,
                "store": type(effective_store).__name__,
            },
        )

        return cls(
            session_factory=session_factory,
            settings=effective_settings,
            registry=effective_registry,
            store=effective_store,
            scheduler=effective_scheduler,
            clock=effective_clock,
            actor_id=effective_actor,
        )

    # -------------------------------------------------------------------------
    # Write
    # -------------------------------------------------------------------------

    def write(
        self,
        records: Sequence[Record],
        descriptor: OperationDescriptor,
        retries: int | None = None,
        final_attempt: bool = False,
        correlation_id: str | None = None,
    ) -> ExecutionResult:
        """Run one batch; ``retries`` defaults to ``settings.default_retries``."""
        policy = RetryPolicy(
            retries=self._settings.default_retries if retries is None else retries,
            final_attempt=final_attempt,
            correlation_id=correlation_id,
        )
        return self._processor.process(records, descriptor, policy)

    def _record_size(self, record: Record) -> int:
        return self._codec.payload_size([record])

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def settings(self) -> BulkWriteSettings:
        return self._settings

    @property
    def registry(self) -> EntityTypeRegistry:
        return self._registry

    @property
    def codec(self) -> JsonRecordCodec:
        return self._codec

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def hooks(self) -> HookManager:
        return self._hooks

    @property
    def processor(self) -> Processor:
        return self._processor

    @property
    def retry_handler(self) -> RetryHandler:
        return self._retry_handler

    @property
    def runner(self) -> ScheduledRetryRunner:
        return self._runner

    @property
    def scheduler(self) -> JobScheduler:
        return self._scheduler

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def actor_id(self) -> UUID:
        return self._actor_id
