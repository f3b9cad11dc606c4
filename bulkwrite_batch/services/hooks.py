"""
Hook protocols and HookManager.

Contract:
    Three extension points run around every chunk:
      ``PreChunkHook.before_chunk(chunk, context)``
      ``PostChunkHook.after_chunk(chunk, outcomes, context)``
      ``ErrorHook.on_error(records, context, error)``
    Dispatch is synchronous and in registration order.  Every hook call is
    isolated: a raising hook is logged at WARNING through the execution
    context and the remaining hooks still run.  A failure of the dispatch
    itself is logged at ERROR.  Nothing propagates to the processor.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence, runtime_checkable

from bulkwrite_batch.domain.types import Chunk, Record, RecordOutcome
from bulkwrite_batch.services.context import ExecutionContext


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class PreChunkHook(Protocol):
    """Runs before a chunk is written."""

    def before_chunk(self, chunk: Chunk, context: ExecutionContext) -> None: ...


@runtime_checkable
class PostChunkHook(Protocol):
    """Runs after a chunk is written, with the store's outcomes."""

    def after_chunk(
        self,
        chunk: Chunk,
        outcomes: Sequence[RecordOutcome],
        context: ExecutionContext,
    ) -> None: ...


@runtime_checkable
class ErrorHook(Protocol):
    """Runs for the failing records of a chunk."""

    def on_error(
        self,
        records: Sequence[Record],
        context: ExecutionContext,
        error: Exception,
    ) -> None: ...


def _hook_name(hook: Any) -> str:
    return getattr(hook, "name", None) or type(hook).__name__


# =============================================================================
# HookManager
# =============================================================================


class HookManager:
    """Ordered registry and error-isolating dispatcher for chunk hooks.

    Contract:
        - ``register_pre/post/error()`` raise TypeError when the object
          lacks the protocol method.
        - ``register()`` adds an object to every list it qualifies for.
        - ``dispatch_*()`` never raise.
    """

    def __init__(self) -> None:
        self._pre: list[PreChunkHook] = []
        self._post: list[PostChunkHook] = []
        self._error: list[ErrorHook] = []

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_pre(self, hook: PreChunkHook) -> None:
        if not callable(getattr(hook, "before_chunk", None)):
            raise TypeError(f"{_hook_name(hook)} does not implement before_chunk()")
        self._pre.append(hook)

    def register_post(self, hook: PostChunkHook) -> None:
        if not callable(getattr(hook, "after_chunk", None)):
            raise TypeError(f"{_hook_name(hook)} does not implement after_chunk()")
        self._post.append(hook)

    def register_error(self, hook: ErrorHook) -> None:
        if not callable(getattr(hook, "on_error", None)):
            raise TypeError(f"{_hook_name(hook)} does not implement on_error()")
        self._error.append(hook)

    def register(self, hook: Any) -> None:
        """Register ``hook`` for every extension point it implements."""
        matched = False
        if isinstance(hook, PreChunkHook):
            self._pre.append(hook)
            matched = True
        if isinstance(hook, PostChunkHook):
            self._post.append(hook)
            matched = True
        if isinstance(hook, ErrorHook):
            self._error.append(hook)
            matched = True
        if not matched:
            raise TypeError(f"{_hook_name(hook)} implements no hook protocol")

    @property
    def pre_hooks(self) -> tuple[PreChunkHook, ...]:
        return tuple(self._pre)

    @property
    def post_hooks(self) -> tuple[PostChunkHook, ...]:
        return tuple(self._post)

    @property
    def error_hooks(self) -> tuple[ErrorHook, ...]:
        return tuple(self._error)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def dispatch_pre(self, chunk: Chunk, context: ExecutionContext) -> None:
        try:
            for hook in self._pre:
                try:
                    hook.before_chunk(chunk, context)
                except Exception as exc:
                    self._hook_failed(context, "before_chunk", hook, exc)
        except Exception as exc:
            self._dispatch_failed(context, "pre", exc)

    def dispatch_post(
        self,
        chunk: Chunk,
        outcomes: Sequence[RecordOutcome],
        context: ExecutionContext,
    ) -> None:
        try:
            for hook in self._post:
                try:
                    hook.after_chunk(chunk, outcomes, context)
                except Exception as exc:
                    self._hook_failed(context, "after_chunk", hook, exc)
        except Exception as exc:
            self._dispatch_failed(context, "post", exc)

    def dispatch_error(
        self,
        records: Sequence[Record],
        context: ExecutionContext,
        error: Exception,
    ) -> None:
        try:
            for hook in self._error:
                try:
                    hook.on_error(records, context, error)
                except Exception as exc:
                    self._hook_failed(context, "on_error", hook, exc)
        except Exception as exc:
            self._dispatch_failed(context, "error", exc)

    @staticmethod
    def _hook_failed(
        context: ExecutionContext, method: str, hook: Any, exc: Exception,
    ) -> None:
        context.log(
            f"hook {_hook_name(hook)}.{method} raised "
            f"{type(exc).__name__}: {exc}",
            logging.WARNING,
        )

    @staticmethod
    def _dispatch_failed(context: ExecutionContext, phase: str, exc: Exception) -> None:
        context.log(
            f"{phase} hook dispatch failed: {type(exc).__name__}: {exc}",
            logging.ERROR,
        )
