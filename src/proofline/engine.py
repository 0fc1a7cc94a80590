"""Session facade wiring the store, first pass and stability pass together."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from .analysis.block_analyzer import AnalysisRun, BlockAnalyzer
from .analysis.callbacks import BlockAnalysisCallbacks, StabilityPassCallbacks, invoke_callback
from .analysis.merger import create_analysis_result
from .analysis.provider import AnalysisProvider
from .analysis.stability import StabilityPassManager
from .errors import UnknownIssueError
from .services.settings import Settings
from .state.models import AnalysisResult, Issue
from .state.store import TextStateStore

__all__ = ["CheckerSession"]

LOGGER = logging.getLogger(__name__)


class CheckerSession:
    """Drives incremental checking for any number of text fields.

    Every edit cancels the field's stability pass and runs a first pass over
    the changed blocks. When the first pass settles, or after a suggestion is
    accepted or ignored, an idle timer is (re)started; when it fires the
    stability pass verifies blocks that are not yet stable. Completed passes
    reschedule the check, which stops once every block is done.
    """

    def __init__(
        self,
        provider: AnalysisProvider,
        *,
        settings: Settings | None = None,
        analysis_callbacks: BlockAnalysisCallbacks | None = None,
        stability_callbacks: StabilityPassCallbacks | None = None,
        stability_enabled: bool = True,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._provider = provider
        self._store = TextStateStore(
            policy=self._settings.confidence_policy(),
            split_config=self._settings.split_config(),
            ignored_texts=self._settings.ignored_words,
        )
        self._analyzer = BlockAnalyzer(
            self._store,
            provider,
            context_chars=self._settings.context_chars,
            loop=loop,
        )
        self._stability = StabilityPassManager(
            self._store,
            provider,
            idle_delay=self._settings.idle_delay,
            context_chars=self._settings.context_chars,
            loop=loop,
        )
        self._stability_enabled = stability_enabled
        self._user_analysis = analysis_callbacks or BlockAnalysisCallbacks()
        self._user_stability = stability_callbacks or StabilityPassCallbacks()
        self._analysis_callbacks = self._wrap_analysis_callbacks()
        self._stability_callbacks = self._wrap_stability_callbacks()

    @property
    def store(self) -> TextStateStore:
        return self._store

    @property
    def analyzer(self) -> BlockAnalyzer:
        return self._analyzer

    @property
    def stability(self) -> StabilityPassManager:
        return self._stability

    @property
    def ignored_words(self) -> frozenset[str]:
        return self._store.ignored_texts

    # ------------------------------------------------------------------
    # Host events
    # ------------------------------------------------------------------
    def on_text_changed(self, field_id: str, text: str) -> AnalysisRun:
        self._stability.cancel_stability_pass(field_id)
        return self._analyzer.analyze_text(field_id, text, self._analysis_callbacks)

    def accept_issue(self, field_id: str, issue_id: str) -> str:
        """Apply an issue's suggestion and return the field's new text."""

        state = self._store.require_field(field_id)
        issue = self._store.find_issue(field_id, issue_id)
        if issue is None:
            raise UnknownIssueError(field_id, issue_id)
        self._stability.cancel_stability_pass(field_id)

        current = state.text[issue.start_offset : issue.end_offset]
        if current != issue.original_text:
            LOGGER.warning(
                "Issue %s expected %r at %s but found %r",
                issue_id,
                issue.original_text,
                issue.start_offset,
                current,
            )
        new_text = state.text[: issue.start_offset] + issue.suggested_text + state.text[issue.end_offset :]
        self._store.apply_local_change(field_id, issue, new_text)
        LOGGER.debug("Accepted issue %s in %s", issue_id, field_id)
        self._schedule(field_id)
        return new_text

    def ignore_issue(self, field_id: str, issue_id: str) -> Issue:
        """Dismiss this one issue."""

        self._store.require_field(field_id)
        self._stability.cancel_stability_pass(field_id)
        removed = self._store.remove_issue(field_id, issue_id)
        if removed is None:
            raise UnknownIssueError(field_id, issue_id)
        self._schedule(field_id)
        return removed

    def ignore_all_similar(self, field_id: str, issue_id: str) -> list[Issue]:
        """Dismiss every issue with the same original text, in every field.

        The text stays ignored for the rest of the session and is forwarded
        to the provider when it supports ``ignore_word``.
        """

        self._store.require_field(field_id)
        issue = self._store.find_issue(field_id, issue_id)
        if issue is None:
            raise UnknownIssueError(field_id, issue_id)
        for known in self._store.field_ids():
            self._stability.cancel_stability_pass(known)
        removed = self._store.ignore_text(issue.original_text)
        ignore_word = getattr(self._provider, "ignore_word", None)
        if callable(ignore_word):
            ignore_word(issue.original_text.strip().lower())
        LOGGER.debug("Ignored %s issue(s) matching %r", len(removed), issue.original_text)
        for known in self._store.field_ids():
            self._schedule(known)
        return [removed_issue for _field_id, removed_issue in removed]

    def current_result(self, field_id: str) -> AnalysisResult | None:
        state = self._store.get_field(field_id)
        if state is None:
            return None
        return create_analysis_result(state.text, state.blocks)

    def clear_field(self, field_id: str) -> None:
        self._analyzer.cancel_analysis(field_id)
        self._stability.cancel_stability_pass(field_id)
        self._store.clear_field(field_id)

    def is_idle(self, field_id: str) -> bool:
        return not (
            self._analyzer.is_analysis_pending(field_id)
            or self._stability.is_stability_pass_pending(field_id)
            or self._stability.is_idle_timer_scheduled(field_id)
        )

    async def wait_until_idle(
        self,
        field_ids: Sequence[str] | None = None,
        *,
        poll_interval: float = 0.01,
    ) -> None:
        """Wait until no first pass, stability pass or idle timer remains."""

        targets = tuple(field_ids) if field_ids is not None else self._store.field_ids()
        for field_id in targets:
            while True:
                run = self._analyzer.current_run(field_id)
                if run is not None:
                    await asyncio.wait([run.result])
                    continue
                current = self._stability.current_pass(field_id)
                if current is not None:
                    await asyncio.wait([current.result])
                    continue
                if self._stability.is_idle_timer_scheduled(field_id):
                    await asyncio.sleep(poll_interval)
                    continue
                break

    async def aclose(self) -> None:
        await self._analyzer.aclose()
        await self._stability.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _schedule(self, field_id: str) -> None:
        if self._stability_enabled:
            self._stability.schedule_stability_check(field_id, self._stability_callbacks)

    def _wrap_analysis_callbacks(self) -> BlockAnalysisCallbacks:
        user = self._user_analysis

        def on_all_blocks_complete(field_id: str, result: AnalysisResult) -> None:
            invoke_callback(user.on_all_blocks_complete, field_id, result)
            self._schedule(field_id)

        return BlockAnalysisCallbacks(
            on_block_analysis_start=user.on_block_analysis_start,
            on_block_analysis_complete=user.on_block_analysis_complete,
            on_block_analysis_error=user.on_block_analysis_error,
            on_all_blocks_complete=on_all_blocks_complete,
        )

    def _wrap_stability_callbacks(self) -> StabilityPassCallbacks:
        user = self._user_stability

        def on_stability_pass_complete(field_id: str, result: AnalysisResult) -> None:
            invoke_callback(user.on_stability_pass_complete, field_id, result)
            self._schedule(field_id)

        return StabilityPassCallbacks(
            on_stability_pass_start=user.on_stability_pass_start,
            on_block_verified=user.on_block_verified,
            on_stability_pass_complete=on_stability_pass_complete,
            on_stability_pass_cancelled=user.on_stability_pass_cancelled,
        )
