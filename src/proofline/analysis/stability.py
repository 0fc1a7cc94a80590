"""Idle-triggered stability pass over already analyzed blocks.

After the first pass settles and the user stops interacting, blocks that are
not yet stable are verified once more with a narrower provider check. The
pass converges: every verification round increments the block's pass count,
blocks at ``max_passes`` are no longer verified, and provider errors force
the block stable instead of retrying.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from ..state.models import AnalysisResult, Issue, IssueSource, RequestToken, new_request_token
from ..state.store import TextStateStore
from .callbacks import StabilityPassCallbacks, invoke_callback
from .matching import resolve_provider_issues
from .merger import create_analysis_result
from .provider import AnalysisProvider, BlockContext

__all__ = ["StabilityPass", "StabilityPassManager"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StabilityPass:
    field_id: str
    callbacks: StabilityPassCallbacks
    result: asyncio.Future[AnalysisResult]
    block_ids: tuple[str, ...] = ()
    pending: set[str] = field(default_factory=set)
    tokens: dict[str, RequestToken] = field(default_factory=dict)


class StabilityPassManager:
    """Schedules and runs verification passes for each field."""

    def __init__(
        self,
        store: TextStateStore,
        provider: AnalysisProvider,
        *,
        idle_delay: float = 1.0,
        context_chars: int = 200,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._idle_delay = max(0.0, float(idle_delay))
        self._context_chars = max(0, int(context_chars))
        self._loop = loop
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._passes: dict[str, StabilityPass] = {}
        self._tasks: dict[RequestToken, asyncio.Task[None]] = {}

    @property
    def idle_delay(self) -> float:
        return self._idle_delay

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def schedule_stability_check(self, field_id: str, callbacks: StabilityPassCallbacks | None = None) -> None:
        """(Re)start the field's idle timer; earlier pending timers are dropped."""

        self.cancel_idle_timer(field_id)
        handle = self._get_loop().call_later(self._idle_delay, self._on_idle, field_id, callbacks)
        self._timers[field_id] = handle

    def cancel_idle_timer(self, field_id: str) -> None:
        handle = self._timers.pop(field_id, None)
        if handle is not None:
            handle.cancel()

    def is_idle_timer_scheduled(self, field_id: str) -> bool:
        return field_id in self._timers

    def _on_idle(self, field_id: str, callbacks: StabilityPassCallbacks | None) -> None:
        self._timers.pop(field_id, None)
        self.run_stability_pass(field_id, callbacks)

    # ------------------------------------------------------------------
    # Pass execution
    # ------------------------------------------------------------------
    def run_stability_pass(self, field_id: str, callbacks: StabilityPassCallbacks | None = None) -> bool:
        """Start a pass if every guard allows it; return ``True`` when one started."""

        callbacks = callbacks or StabilityPassCallbacks()
        store = self._store
        if store.get_field(field_id) is None:
            return False
        if field_id in self._passes:
            LOGGER.debug("Stability pass already running for %s", field_id)
            return False
        if not store.are_all_blocks_clean(field_id):
            LOGGER.debug("Skipping stability pass for %s: blocks still in flight", field_id)
            return False
        if store.has_any_unapplied_issues(field_id):
            LOGGER.debug("Skipping stability pass for %s: unapplied issues on screen", field_id)
            return False
        if store.are_all_blocks_stable(field_id):
            LOGGER.debug("Skipping stability pass for %s: all blocks stable", field_id)
            return False
        unstable = store.get_unstable_blocks(field_id)
        if not unstable:
            LOGGER.debug("Skipping stability pass for %s: no eligible blocks", field_id)
            return False

        current = StabilityPass(
            field_id=field_id,
            callbacks=callbacks,
            result=self._get_loop().create_future(),
            block_ids=tuple(block.id for block in unstable),
        )
        self._passes[field_id] = current

        for block in unstable:
            token = new_request_token("verify")
            current.pending.add(block.id)
            current.tokens[block.id] = token
            store.set_block_stability_checking(field_id, block.id, True)
            store.set_block_request_token(field_id, block.id, token)
            context = self._context_for(field_id, block.id)
            self._spawn(token, self._dispatch(field_id, block.id, block.text, context, token))

        LOGGER.info("Stability pass for %s: verifying %s block(s)", field_id, len(current.pending))
        invoke_callback(callbacks.on_stability_pass_start, field_id, list(current.block_ids))
        return True

    def handle_verification_result(
        self,
        field_id: str,
        block_id: str,
        issues: list[Issue],
        request_token: RequestToken | None,
    ) -> bool:
        current = self._passes.get(field_id)
        if current is None or block_id not in current.pending:
            return False
        if current.tokens.get(block_id) != request_token:
            LOGGER.debug("Discarding stale verification for block %s in %s", block_id, field_id)
            return False
        if not self._store.merge_block_result(field_id, block_id, issues, True, request_token):
            LOGGER.debug("Verification for block %s in %s was rejected by the store", block_id, field_id)
            self._release_block(field_id, block_id, request_token)
            return False
        invoke_callback(current.callbacks.on_block_verified, field_id, block_id, issues)
        self._release_block(field_id, block_id, request_token)
        return True

    def handle_verification_error(
        self,
        field_id: str,
        block_id: str,
        error: BaseException | str,
        request_token: RequestToken | None = None,
    ) -> None:
        current = self._passes.get(field_id)
        if current is None or block_id not in current.pending:
            return
        if request_token is not None and current.tokens.get(block_id) != request_token:
            return
        LOGGER.warning("Verification failed for block %s in %s: %s", block_id, field_id, error)
        self._store.force_block_stable(field_id, block_id)
        self._release_block(field_id, block_id, current.tokens.get(block_id))

    def cancel_stability_pass(self, field_id: str) -> None:
        """Stop the idle timer and any in-flight pass for ``field_id``."""

        self.cancel_idle_timer(field_id)
        current = self._passes.pop(field_id, None)
        if current is None:
            return
        for block_id in current.pending:
            token = current.tokens.get(block_id)
            block = self._store.get_block(field_id, block_id)
            if block is not None and block.active_request_token == token:
                block.is_stability_checking = False
                block.active_request_token = None
            task = self._tasks.get(token) if token is not None else None
            if task is not None:
                task.cancel()
        if not current.result.done():
            current.result.cancel()
        LOGGER.debug("Stability pass cancelled for %s", field_id)
        invoke_callback(current.callbacks.on_stability_pass_cancelled, field_id)

    def is_stability_pass_pending(self, field_id: str) -> bool:
        return field_id in self._passes

    def current_pass(self, field_id: str) -> StabilityPass | None:
        return self._passes.get(field_id)

    async def aclose(self) -> None:
        for field_id in list(self._timers):
            self.cancel_idle_timer(field_id)
        for field_id in list(self._passes):
            self.cancel_stability_pass(field_id)
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _dispatch(
        self,
        field_id: str,
        block_id: str,
        block_text: str,
        context: BlockContext,
        token: RequestToken,
    ) -> None:
        try:
            response = await self._provider.verify(block_text, context)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.handle_verification_error(field_id, block_id, exc, token)
            return

        block = self._store.get_block(field_id, block_id)
        if block is None or block.active_request_token != token:
            LOGGER.debug("Discarding stale verification for block %s in %s", block_id, field_id)
            self._release_block(field_id, block_id, token)
            return
        issues = resolve_provider_issues(block, response, context, source=IssueSource.VERIFICATION)
        self.handle_verification_result(field_id, block_id, issues, token)

    def _release_block(self, field_id: str, block_id: str, token: RequestToken | None) -> None:
        current = self._passes.get(field_id)
        if current is None or block_id not in current.pending or current.tokens.get(block_id) != token:
            return
        current.pending.discard(block_id)
        current.tokens.pop(block_id, None)
        if not current.pending:
            self._finish(current)

    def _finish(self, current: StabilityPass) -> None:
        if self._passes.get(current.field_id) is current:
            del self._passes[current.field_id]
        state = self._store.get_field(current.field_id)
        result = create_analysis_result(state.text, state.blocks) if state else AnalysisResult(text="")
        LOGGER.info("Stability pass complete for %s", current.field_id)
        invoke_callback(current.callbacks.on_stability_pass_complete, current.field_id, result)
        if not current.result.done():
            current.result.set_result(result)

    def _context_for(self, field_id: str, block_id: str) -> BlockContext:
        previous, following = self._store.get_block_context(field_id, block_id, self._context_chars)
        return BlockContext(previous_text=previous, next_text=following)

    def _spawn(self, token: RequestToken, coro) -> None:
        task = self._get_loop().create_task(coro)
        self._tasks[token] = task
        task.add_done_callback(lambda _task, key=token: self._tasks.pop(key, None))

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop
