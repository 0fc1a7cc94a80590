"""Tests for the idle-triggered stability pass."""

from __future__ import annotations

import asyncio

import pytest

from helpers import FakeProvider, drain, merge_first_pass, spelling
from proofline.analysis.callbacks import StabilityPassCallbacks
from proofline.analysis.provider import ProviderIssue, ProviderResponse
from proofline.analysis.stability import StabilityPassManager
from proofline.state.store import TextStateStore

FIELD = "notes"
TEXT = "All is well.\n\nNothing to fix."


def _settled_store(text: str = TEXT) -> TextStateStore:
    store = TextStateStore()
    store.update_text(FIELD, text)
    for block in store.require_field(FIELD).blocks:
        merge_first_pass(store, FIELD, block.id, [])
    return store


class _Events:
    def __init__(self) -> None:
        self.started: list[list[str]] = []
        self.verified: list[str] = []
        self.completed = 0
        self.cancelled = 0

    def callbacks(self) -> StabilityPassCallbacks:
        return StabilityPassCallbacks(
            on_stability_pass_start=lambda field, ids: self.started.append(list(ids)),
            on_block_verified=lambda field, block_id, issues: self.verified.append(block_id),
            on_stability_pass_complete=lambda field, result: setattr(self, "completed", self.completed + 1),
            on_stability_pass_cancelled=lambda field: setattr(self, "cancelled", self.cancelled + 1),
        )


@pytest.mark.asyncio
async def test_pass_verifies_unstable_blocks_until_stable():
    store = _settled_store()
    provider = FakeProvider()
    manager = StabilityPassManager(store, provider)
    events = _Events()

    assert manager.run_stability_pass(FIELD, events.callbacks())
    result = await manager.current_pass(FIELD).result

    assert events.started == [["b1", "b2"]]
    assert sorted(events.verified) == ["b1", "b2"]
    assert events.completed == 1
    assert result.issues == []
    assert store.are_all_blocks_stable(FIELD)
    assert not manager.run_stability_pass(FIELD)
    assert len(provider.verify_calls) == 2


@pytest.mark.asyncio
async def test_pass_is_skipped_while_issues_are_unapplied():
    store = TextStateStore()
    store.update_text(FIELD, "Teh end.")
    merge_first_pass(store, FIELD, "b1", [spelling("Teh", "The", 0)])
    manager = StabilityPassManager(store, FakeProvider())

    assert not manager.run_stability_pass(FIELD)
    assert not manager.run_stability_pass("unknown")


@pytest.mark.asyncio
async def test_pass_is_skipped_while_blocks_are_in_flight():
    store = _settled_store()
    store.set_block_analyzing(FIELD, "b2", True)
    manager = StabilityPassManager(store, FakeProvider())

    assert not manager.run_stability_pass(FIELD)


@pytest.mark.asyncio
async def test_new_verification_issue_lowers_confidence():
    def respond(text: str) -> ProviderResponse:
        if "Nothing" in text:
            return ProviderResponse(issues=(ProviderIssue("grammar", "Nothing to fix", "There is nothing to fix"),))
        return ProviderResponse()

    store = _settled_store()
    manager = StabilityPassManager(store, FakeProvider(verify=respond))

    manager.run_stability_pass(FIELD)
    await manager.current_pass(FIELD).result

    block = store.get_block(FIELD, "b2")
    assert block.confidence == pytest.approx(0.2)
    assert block.has_unapplied_issues
    assert block.issues[0].start_offset == 14
    assert not manager.run_stability_pass(FIELD)


@pytest.mark.asyncio
async def test_verification_error_forces_block_stable():
    provider = FakeProvider(verify=lambda text: RuntimeError("timeout"))
    store = _settled_store()
    manager = StabilityPassManager(store, provider)
    events = _Events()

    manager.run_stability_pass(FIELD, events.callbacks())
    await manager.current_pass(FIELD).result

    assert events.completed == 1
    assert events.verified == []
    assert store.are_all_blocks_stable(FIELD)


@pytest.mark.asyncio
async def test_repeated_passes_terminate_at_max_passes():
    store = TextStateStore()
    store.update_text(FIELD, "Accepted fix.")
    merge_first_pass(store, FIELD, "b1", [spelling("fix", "fixes", 9)])
    issue_id = store.get_block(FIELD, "b1").issues[0].id
    store.remove_issue(FIELD, issue_id)
    manager = StabilityPassManager(store, FakeProvider())

    passes = 0
    while manager.run_stability_pass(FIELD):
        await manager.current_pass(FIELD).result
        passes += 1

    block = store.get_block(FIELD, "b1")
    assert passes == 2
    assert block.passes == store.policy.max_passes
    assert store.is_block_stable(block)


@pytest.mark.asyncio
async def test_cancel_clears_flags_and_ignores_late_results():
    provider = FakeProvider(manual=True)
    store = _settled_store()
    manager = StabilityPassManager(store, provider)
    events = _Events()
    manager.run_stability_pass(FIELD, events.callbacks())
    await drain()
    current = manager.current_pass(FIELD)

    manager.cancel_stability_pass(FIELD)
    await drain()

    assert events.cancelled == 1
    assert current.result.cancelled()
    assert not manager.is_stability_pass_pending(FIELD)
    assert all(not block.is_stability_checking for block in store.require_field(FIELD).blocks)
    assert all(block.active_request_token is None for block in store.require_field(FIELD).blocks)
    assert all(call.future.cancelled() for call in provider.pending)
    assert all(block.passes == 0 for block in store.require_field(FIELD).blocks)

    manager.cancel_stability_pass(FIELD)
    assert events.cancelled == 1


@pytest.mark.asyncio
async def test_idle_timer_triggers_pass_and_can_be_rescheduled():
    store = _settled_store()
    provider = FakeProvider()
    manager = StabilityPassManager(store, provider, idle_delay=0.01)
    events = _Events()

    manager.schedule_stability_check(FIELD, events.callbacks())
    manager.schedule_stability_check(FIELD, events.callbacks())
    assert manager.is_idle_timer_scheduled(FIELD)

    await asyncio.sleep(0.05)
    await drain()

    assert not manager.is_idle_timer_scheduled(FIELD)
    assert len(events.started) == 1
    assert events.completed == 1


@pytest.mark.asyncio
async def test_cancel_before_timer_fires_prevents_pass():
    store = _settled_store()
    provider = FakeProvider()
    manager = StabilityPassManager(store, provider, idle_delay=0.01)

    manager.schedule_stability_check(FIELD)
    manager.cancel_stability_pass(FIELD)
    await asyncio.sleep(0.03)

    assert provider.verify_calls == []
    await manager.aclose()


@pytest.mark.asyncio
async def test_pass_completes_when_results_are_rejected_or_blocks_vanish():
    provider = FakeProvider(manual_verify=True)
    store = _settled_store()
    manager = StabilityPassManager(store, provider)
    events = _Events()
    assert manager.run_stability_pass(FIELD, events.callbacks())
    await drain()
    current = manager.current_pass(FIELD)
    token = current.tokens["b1"]
    store.set_block_request_token(FIELD, "b1", None)

    assert not manager.handle_verification_result(FIELD, "b1", [], token)
    assert current.pending == {"b2"}

    store.clear_field(FIELD)
    provider.pending_for("Nothing", "verify").resolve()
    await current.result

    assert events.completed == 1
    assert events.verified == []
    assert not manager.is_stability_pass_pending(FIELD)
    await manager.aclose()
