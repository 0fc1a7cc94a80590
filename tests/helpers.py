"""Shared test doubles for the analysis engine."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Mapping

from proofline.analysis.provider import BlockContext, ProviderIssue, ProviderResponse
from proofline.state.models import Issue
from proofline.state.store import TextStateStore

Responder = Callable[[str], "ProviderResponse | Exception"]


def no_issues(_text: str) -> ProviderResponse:
    return ProviderResponse()


def typo_rules(corrections: Mapping[str, str], *, category: str = "spelling") -> Responder:
    """Report every ``original -> suggested`` pair whose original occurs in the text."""

    def respond(text: str) -> ProviderResponse:
        return ProviderResponse(
            issues=tuple(
                ProviderIssue(category=category, original_text=original, suggested_text=suggested)
                for original, suggested in corrections.items()
                if original in text
            )
        )

    return respond


@dataclass
class PendingCall:
    mode: str
    text: str
    context: BlockContext
    future: asyncio.Future = field(repr=False)

    def resolve(self, response: ProviderResponse | None = None) -> None:
        self.future.set_result(response or ProviderResponse())

    def fail(self, error: Exception) -> None:
        self.future.set_exception(error)


class FakeProvider:
    """Provider answering from rules, or parking calls for the test to resolve."""

    def __init__(
        self,
        analyze: Responder = no_issues,
        verify: Responder = no_issues,
        *,
        manual: bool = False,
        manual_verify: bool = False,
    ) -> None:
        self._analyze = analyze
        self._verify = verify
        self.manual = manual
        self.manual_verify = manual_verify
        self.analyze_calls: list[str] = []
        self.verify_calls: list[str] = []
        self.pending: list[PendingCall] = []
        self.ignored: list[str] = []

    async def analyze(self, text: str, context: BlockContext) -> ProviderResponse:
        self.analyze_calls.append(text)
        return await self._answer("analyze", text, context, self._analyze)

    async def verify(self, text: str, context: BlockContext) -> ProviderResponse:
        self.verify_calls.append(text)
        return await self._answer("verify", text, context, self._verify, parked=self.manual_verify)

    def ignore_word(self, word: str) -> None:
        self.ignored.append(word)

    def pending_for(self, text_fragment: str, mode: str = "analyze") -> PendingCall:
        for call in self.pending:
            if call.mode == mode and text_fragment in call.text and not call.future.done():
                return call
        raise AssertionError(f"No pending {mode} call containing {text_fragment!r}")

    async def _answer(
        self,
        mode: str,
        text: str,
        context: BlockContext,
        responder: Responder,
        *,
        parked: bool = False,
    ) -> ProviderResponse:
        if self.manual or parked:
            future = asyncio.get_running_loop().create_future()
            self.pending.append(PendingCall(mode, text, context, future))
            return await future
        await asyncio.sleep(0)
        result = responder(text)
        if isinstance(result, Exception):
            raise result
        return result


async def drain(rounds: int = 10) -> None:
    """Let scheduled tasks and zero-delay timers run."""

    for _ in range(rounds):
        await asyncio.sleep(0)


def merge_first_pass(store: TextStateStore, field_id: str, block_id: str, issues: list[Issue]) -> None:
    """Simulate a completed first-pass request for one block."""

    token = "req_test_" + block_id
    store.set_block_analyzing(field_id, block_id, True)
    store.set_block_request_token(field_id, block_id, token)  # type: ignore[arg-type]
    assert store.merge_block_result(field_id, block_id, issues, False, token)  # type: ignore[arg-type]


def spelling(original: str, suggested: str, start: int) -> Issue:
    return Issue(
        category="spelling",
        start_offset=start,
        end_offset=start + len(original),
        original_text=original,
        suggested_text=suggested,
    )
