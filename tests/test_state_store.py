"""Tests for reconciliation and block state in :class:`TextStateStore`."""

from __future__ import annotations

import pytest

from helpers import merge_first_pass, spelling
from proofline.errors import UnknownFieldError
from proofline.state.models import Issue, IssueSource
from proofline.state.store import TextStateStore

FIELD = "editor"
TEXT = "Teh cat sat.\n\nIt was happpy."


def _analyzed_store() -> TextStateStore:
    store = TextStateStore()
    store.update_text(FIELD, TEXT)
    merge_first_pass(store, FIELD, "b1", [spelling("Teh", "The", 0)])
    merge_first_pass(store, FIELD, "b2", [spelling("happpy", "happy", 21)])
    return store


def test_first_observation_marks_every_block_dirty():
    store = TextStateStore()
    result = store.update_text(FIELD, TEXT)

    assert [block.id for block in result.dirty_blocks] == ["b1", "b2"]
    assert result.clean_blocks == []
    assert result.has_dirty
    state = store.require_field(FIELD)
    assert state.text == TEXT
    assert state.version == 1


def test_editing_one_block_keeps_the_others_clean():
    store = _analyzed_store()

    result = store.update_text(FIELD, "Teh dog sat.\n\nIt was happpy.")

    assert [block.id for block in result.dirty_blocks] == ["b3"]
    assert [block.id for block in result.clean_blocks] == ["b2"]
    carried = result.clean_blocks[0]
    assert carried.is_analyzed
    assert [(issue.start_offset, issue.original_text) for issue in carried.issues] == [(21, "happpy")]


def test_clean_block_issues_shift_with_the_block():
    store = _analyzed_store()
    before = store.get_block(FIELD, "b2").issues[0]

    result = store.update_text(FIELD, "Teh cat sat down.\n\nIt was happpy.")

    block = store.get_block(FIELD, "b2")
    assert block in result.clean_blocks
    issue = block.issues[0]
    assert (block.start_offset, issue.start_offset, issue.end_offset) == (19, 26, 32)
    assert store.require_field(FIELD).text[issue.start_offset : issue.end_offset] == "happpy"
    assert issue is not before
    assert before.start_offset == 21


def test_repeated_blocks_are_each_claimed_once():
    store = TextStateStore()
    store.update_text(FIELD, "Hello there.\n\nHello there.\n\n")

    result = store.update_text(FIELD, "Intro.\n\nHello there.\n\nHello there.\n\n")

    assert len(result.dirty_blocks) == 1
    assert sorted(block.id for block in result.clean_blocks) == ["b1", "b2"]


def test_merge_rejects_stale_tokens():
    store = TextStateStore()
    store.update_text(FIELD, TEXT)
    store.set_block_request_token(FIELD, "b1", "req_current")

    assert not store.merge_block_result(FIELD, "b1", [], False, "req_old")
    assert not store.get_block(FIELD, "b1").is_analyzed
    assert not store.merge_block_result(FIELD, "missing", [], False, "req_current")
    assert not store.merge_block_result("other", "b1", [], False, "req_current")

    store.set_block_request_token(FIELD, "b2", None)
    assert not store.merge_block_result(FIELD, "b2", [], False, "req_unexpected")


def test_first_pass_sets_confidence_from_issue_presence():
    store = _analyzed_store()
    store.update_text(FIELD, TEXT + "\n\nAll good here.")
    merge_first_pass(store, FIELD, "b4", [])

    assert store.get_block(FIELD, "b1").confidence == 0.0
    clean = store.get_block(FIELD, "b4")
    assert clean.confidence == pytest.approx(0.5)
    assert clean.passes == 0
    assert not clean.has_unapplied_issues
    assert clean.active_request_token is None


def test_verification_merge_boosts_or_penalizes():
    store = TextStateStore()
    store.update_text(FIELD, "Fine text here.\n\nMore fine text.")
    merge_first_pass(store, FIELD, "b1", [])
    merge_first_pass(store, FIELD, "b2", [])

    store.set_block_request_token(FIELD, "b1", "verify_1")
    assert store.merge_block_result(FIELD, "b1", [], True, "verify_1")
    b1 = store.get_block(FIELD, "b1")
    assert (b1.confidence, b1.passes) == (pytest.approx(1.0), 1)
    assert store.is_block_stable(b1)

    found = Issue("grammar", 22, 26, "fine", "finer")
    store.set_block_request_token(FIELD, "b2", "verify_2")
    assert store.merge_block_result(FIELD, "b2", [found], True, "verify_2")
    b2 = store.get_block(FIELD, "b2")
    assert b2.confidence == pytest.approx(0.2)
    assert b2.passes == 1
    assert b2.issues[0].source is IssueSource.VERIFICATION
    assert b2.has_unapplied_issues


def test_verification_does_not_duplicate_known_issues():
    store = TextStateStore()
    store.update_text(FIELD, "Teh end.")
    merge_first_pass(store, FIELD, "b1", [spelling("Teh", "The", 0)])

    store.set_block_request_token(FIELD, "b1", "verify_1")
    store.merge_block_result(FIELD, "b1", [spelling("Teh", "The", 0)], True, "verify_1")

    block = store.get_block(FIELD, "b1")
    assert len(block.issues) == 1
    assert block.confidence == pytest.approx(0.5)


def test_apply_local_change_shifts_following_blocks():
    store = _analyzed_store()
    teh = store.get_block(FIELD, "b1").issues[0]
    teh.suggested_text = "The one"
    new_text = "The one cat sat.\n\nIt was happpy."

    store.apply_local_change(FIELD, teh, new_text)

    b1 = store.get_block(FIELD, "b1")
    b2 = store.get_block(FIELD, "b2")
    assert b1.issues == []
    assert (b1.start_offset, b1.end_offset) == (0, 18)
    assert b1.text == "The one cat sat.\n\n"
    assert (b2.start_offset, b2.end_offset) == (18, 32)
    happpy = b2.issues[0]
    assert (happpy.start_offset, happpy.end_offset) == (25, 31)
    assert new_text[happpy.start_offset : happpy.end_offset] == "happpy"
    assert store.require_field(FIELD).text == new_text


def test_apply_local_change_updates_hash_so_next_edit_is_clean():
    store = _analyzed_store()
    teh = store.get_block(FIELD, "b1").issues[0]
    new_text = "The cat sat.\n\nIt was happpy."
    store.apply_local_change(FIELD, teh, new_text)

    result = store.update_text(FIELD, new_text)

    assert result.dirty_blocks == []


def test_apply_local_change_drops_overlapping_issues_in_block():
    store = TextStateStore()
    store.update_text(FIELD, "the the cat")
    repeated = Issue("style", 0, 7, "the the", "the")
    article = Issue("grammar", 4, 7, "the", "a")
    later = Issue("spelling", 8, 11, "cat", "cats")
    merge_first_pass(store, FIELD, "b1", [repeated, article, later])

    store.apply_local_change(FIELD, store.get_block(FIELD, "b1").issues[0], "the cat")

    remaining = store.get_block(FIELD, "b1").issues
    assert [(issue.original_text, issue.start_offset) for issue in remaining] == [("cat", 4)]


def test_remove_issue_and_unapplied_tracking():
    store = _analyzed_store()
    issue_id = store.get_block(FIELD, "b1").issues[0].id
    assert store.has_any_unapplied_issues(FIELD)

    removed = store.remove_issue(FIELD, issue_id)

    assert removed is not None and removed.id == issue_id
    assert store.remove_issue(FIELD, issue_id) is None
    assert not store.get_block(FIELD, "b1").has_unapplied_issues
    assert store.has_any_unapplied_issues(FIELD)


def test_unstable_blocks_exclude_busy_unanalyzed_and_exhausted():
    store = TextStateStore()
    store.update_text(FIELD, "One.\n\nTwo.\n\nThree.\n\nFour.")
    merge_first_pass(store, FIELD, "b1", [])
    merge_first_pass(store, FIELD, "b2", [])
    store.set_block_stability_checking(FIELD, "b2", True)
    merge_first_pass(store, FIELD, "b4", [])
    store.get_block(FIELD, "b4").passes = store.policy.max_passes

    assert [block.id for block in store.get_unstable_blocks(FIELD)] == ["b1"]
    assert not store.are_all_blocks_clean(FIELD)
    assert store.is_block_done(store.get_block(FIELD, "b4"))


def test_force_block_stable_converges():
    store = TextStateStore()
    store.update_text(FIELD, "Hello.")
    store.force_block_stable(FIELD, "b1")

    block = store.get_block(FIELD, "b1")
    assert store.is_block_stable(block)
    assert store.are_all_blocks_stable(FIELD)


def test_block_context_and_unknown_field():
    store = TextStateStore()
    store.update_text(FIELD, TEXT)

    assert store.get_block_context(FIELD, "b1", 5) == (None, "It wa")
    assert store.get_block_context(FIELD, "b2", 4) == ("t.\n\n", None)
    with pytest.raises(UnknownFieldError):
        store.require_field("nope")
    assert store.get_all_issues("nope") == []


def test_clearing_fields():
    store = _analyzed_store()
    store.update_text("other", "Second field.")

    store.clear_field(FIELD)
    assert store.field_ids() == ("other",)
    store.clear_all()
    assert store.field_ids() == ()
    assert store.get_field("other") is None


def test_ignored_text_is_removed_everywhere_and_dropped_on_merge():
    store = _analyzed_store()
    store.update_text("other", "Teh end.")
    merge_first_pass(store, "other", "b1", [spelling("Teh", "The", 0)])

    removed = store.ignore_text(" teh ")

    assert sorted(field_id for field_id, _issue in removed) == [FIELD, "other"]
    assert [issue.original_text for issue in store.get_all_issues(FIELD)] == ["happpy"]
    assert not store.has_any_unapplied_issues("other")
    assert store.is_ignored_text("TEH")

    store.update_text("other", "Teh end again.")
    merge_first_pass(store, "other", "b2", [spelling("Teh", "The", 0)])
    block = store.get_block("other", "b2")
    assert block.issues == []
    assert block.confidence == store.policy.boost
    assert store.ignore_text("   ") == []
