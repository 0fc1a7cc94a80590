"""First-pass coordinator: dispatch changed blocks and merge their results."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from ..state.models import AnalysisResult, Issue, IssueSource, RequestToken, new_request_token
from ..state.store import TextStateStore
from .callbacks import BlockAnalysisCallbacks, invoke_callback
from .matching import resolve_provider_issues
from .merger import create_analysis_result
from .provider import AnalysisProvider, BlockContext

__all__ = ["AnalysisRun", "BlockAnalyzer"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AnalysisRun:
    """Bookkeeping for one first-pass analysis of a field.

    ``pending`` is the completion barrier: the run finishes when it empties.
    ``result`` resolves with the merged :class:`AnalysisResult` at that point
    and is cancelled when a newer run supersedes this one.
    """

    field_id: str
    callbacks: BlockAnalysisCallbacks
    result: asyncio.Future[AnalysisResult]
    pending: set[str] = field(default_factory=set)
    tokens: dict[str, RequestToken] = field(default_factory=dict)
    dispatched: tuple[str, ...] = ()

    @property
    def done(self) -> bool:
        return self.result.done()


class BlockAnalyzer:
    """Sends dirty blocks to the provider and merges responses into the store."""

    def __init__(
        self,
        store: TextStateStore,
        provider: AnalysisProvider,
        *,
        context_chars: int = 200,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._context_chars = max(0, int(context_chars))
        self._loop = loop
        self._runs: dict[str, AnalysisRun] = {}
        self._tasks: dict[RequestToken, asyncio.Task[None]] = {}

    @property
    def store(self) -> TextStateStore:
        return self._store

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def analyze_text(
        self,
        field_id: str,
        text: str,
        callbacks: BlockAnalysisCallbacks | None = None,
    ) -> AnalysisRun:
        """Reconcile ``text`` and dispatch every block that needs analysis.

        Blocks left unanalyzed by an earlier provider error are retried here.
        Unchanged blocks whose request is still in flight join the new run
        without being sent again.
        """

        callbacks = callbacks or BlockAnalysisCallbacks()
        loop = self._get_loop()
        self.cancel_analysis(field_id)

        reconciled = self._store.update_text(field_id, text)
        run = AnalysisRun(field_id=field_id, callbacks=callbacks, result=loop.create_future())

        to_dispatch = list(reconciled.dirty_blocks)
        for block in reconciled.clean_blocks:
            if block.is_analyzing and block.active_request_token is not None:
                run.pending.add(block.id)
                run.tokens[block.id] = block.active_request_token
            elif not block.is_analyzed and not block.is_analyzing:
                to_dispatch.append(block)

        if not to_dispatch and not run.pending:
            LOGGER.debug("Field %s unchanged; reporting cached issues", field_id)
            self._finish(run)
            return run

        self._runs[field_id] = run
        for block in sorted(to_dispatch, key=lambda item: item.start_offset):
            token = new_request_token("req")
            run.pending.add(block.id)
            run.tokens[block.id] = token
            self._store.set_block_analyzing(field_id, block.id, True)
            self._store.set_block_request_token(field_id, block.id, token)
            invoke_callback(callbacks.on_block_analysis_start, field_id, block.id)
            context = self._context_for(field_id, block.id)
            self._spawn(token, self._dispatch(field_id, block.id, block.text, context, token))
        run.dispatched = tuple(block.id for block in to_dispatch)
        LOGGER.debug(
            "Field %s: dispatched %s block(s), %s already in flight",
            field_id,
            len(to_dispatch),
            len(run.pending) - len(to_dispatch),
        )
        return run

    def handle_block_result(
        self,
        field_id: str,
        block_id: str,
        issues: list[Issue],
        request_token: RequestToken | None,
    ) -> bool:
        """Merge a provider response; return ``False`` when it was stale."""

        accepted = self._store.merge_block_result(field_id, block_id, issues, False, request_token)
        if not accepted:
            return False
        run = self._runs.get(field_id)
        if run is None or run.tokens.get(block_id) != request_token or block_id not in run.pending:
            return True
        invoke_callback(run.callbacks.on_block_analysis_complete, field_id, block_id, issues)
        run.pending.discard(block_id)
        run.tokens.pop(block_id, None)
        if not run.pending:
            self._finish(run)
        return True

    def handle_block_error(
        self,
        field_id: str,
        block_id: str,
        error: BaseException | str,
        request_token: RequestToken | None = None,
    ) -> None:
        block = self._store.get_block(field_id, block_id)
        if block is not None and (request_token is None or block.active_request_token == request_token):
            block.is_analyzing = False
            block.active_request_token = None

        run = self._runs.get(field_id)
        if run is None or block_id not in run.pending:
            return
        if request_token is not None and run.tokens.get(block_id) != request_token:
            return
        invoke_callback(run.callbacks.on_block_analysis_error, field_id, block_id, str(error))
        run.pending.discard(block_id)
        run.tokens.pop(block_id, None)
        if not run.pending:
            self._finish(run)

    def cancel_analysis(self, field_id: str) -> None:
        """Drop tracking for the field's current run; block state is left as is."""

        run = self._runs.pop(field_id, None)
        if run is not None and not run.result.done():
            run.result.cancel()

    def is_analysis_pending(self, field_id: str) -> bool:
        return field_id in self._runs

    def pending_block_count(self, field_id: str) -> int:
        run = self._runs.get(field_id)
        return len(run.pending) if run is not None else 0

    def current_run(self, field_id: str) -> AnalysisRun | None:
        return self._runs.get(field_id)

    async def aclose(self) -> None:
        """Cancel outstanding provider requests."""

        for field_id in list(self._runs):
            self.cancel_analysis(field_id)
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
            response = await self._provider.analyze(block_text, context)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Analysis failed for block %s in %s: %s", block_id, field_id, exc)
            self.handle_block_error(field_id, block_id, exc, token)
            return

        block = self._store.get_block(field_id, block_id)
        if block is None or block.active_request_token != token:
            LOGGER.debug("Discarding stale analysis for block %s in %s", block_id, field_id)
            return
        issues = resolve_provider_issues(block, response, context, source=IssueSource.ANALYSIS)
        self.handle_block_result(field_id, block_id, issues, token)

    def _finish(self, run: AnalysisRun) -> None:
        state = self._store.get_field(run.field_id)
        result = create_analysis_result(state.text, state.blocks) if state else AnalysisResult(text="")
        if self._runs.get(run.field_id) is run:
            del self._runs[run.field_id]
        invoke_callback(run.callbacks.on_all_blocks_complete, run.field_id, result)
        if not run.result.done():
            run.result.set_result(result)

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
