"""Per-field block state with incremental reconciliation.

The store owns the authoritative block list for every observed text field.
Each edit is reconciled against the previous block list by content hash so
that unchanged blocks keep their issues, confidence and pass count, and only
changed blocks need another round trip to the analysis provider.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import replace
from typing import Iterable, Sequence

from ..blocks.hasher import hash_block
from ..blocks.splitter import RawBlock, SplitConfig, split_text
from ..errors import UnknownFieldError
from .models import (
    Block,
    ConfidencePolicy,
    DirtyBlocks,
    Issue,
    IssueSource,
    IssueStatus,
    RequestToken,
    TextField,
)

__all__ = ["TextStateStore"]

LOGGER = logging.getLogger(__name__)


class TextStateStore:
    """Holds block lists, issues and confidence for every text field.

    Instances are created by the host and handed to the analyzer and the
    stability pass manager; there is no process-wide store.
    """

    def __init__(
        self,
        *,
        policy: ConfidencePolicy | None = None,
        split_config: SplitConfig | None = None,
        ignored_texts: Iterable[str] = (),
    ) -> None:
        self._policy = policy or ConfidencePolicy()
        self._split_config = split_config or SplitConfig()
        self._fields: dict[str, TextField] = {}
        self._ignored: set[str] = set()
        for text in ignored_texts:
            self._remember_ignored(text)

    @property
    def policy(self) -> ConfidencePolicy:
        return self._policy

    @property
    def split_config(self) -> SplitConfig:
        return self._split_config

    @property
    def ignored_texts(self) -> frozenset[str]:
        return frozenset(self._ignored)

    # ------------------------------------------------------------------
    # Field access
    # ------------------------------------------------------------------
    def get_field(self, field_id: str) -> TextField | None:
        return self._fields.get(field_id)

    def require_field(self, field_id: str) -> TextField:
        state = self._fields.get(field_id)
        if state is None:
            raise UnknownFieldError(field_id)
        return state

    def get_block(self, field_id: str, block_id: str) -> Block | None:
        state = self._fields.get(field_id)
        if state is None:
            return None
        return state.find_block(block_id)

    def field_ids(self) -> tuple[str, ...]:
        return tuple(self._fields)

    def clear_field(self, field_id: str) -> None:
        self._fields.pop(field_id, None)

    def clear_all(self) -> None:
        self._fields.clear()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    def update_text(self, field_id: str, new_text: str) -> DirtyBlocks:
        """Reconcile ``new_text`` against the field's previous blocks."""

        raw_blocks = split_text(new_text, self._split_config)
        state = self._fields.get(field_id)

        if state is None:
            state = TextField(field_id=field_id)
            blocks = [self._fresh_block(state, raw) for raw in raw_blocks]
            state.text = new_text
            state.blocks = blocks
            state.bump()
            self._fields[field_id] = state
            LOGGER.debug("Field %s observed with %s block(s)", field_id, len(blocks))
            return DirtyBlocks(dirty_blocks=list(blocks), clean_blocks=[], all_blocks=list(blocks))

        result = self._reconcile(state, raw_blocks)
        state.text = new_text
        state.blocks = result.all_blocks
        state.bump()
        LOGGER.debug(
            "Field %s reconciled: %s dirty, %s clean",
            field_id,
            len(result.dirty_blocks),
            len(result.clean_blocks),
        )
        return result

    def _reconcile(self, state: TextField, raw_blocks: Sequence[RawBlock]) -> DirtyBlocks:
        candidates: dict[str, list[Block]] = defaultdict(list)
        for block in state.blocks:
            candidates[block.hash].append(block)

        dirty: list[Block] = []
        clean: list[Block] = []
        merged: list[Block] = []
        for raw in raw_blocks:
            previous = self._claim(candidates.get(raw.hash), raw.start_offset)
            if previous is None:
                block = self._fresh_block(state, raw)
                dirty.append(block)
            else:
                block = self._carry_over(previous, raw)
                clean.append(block)
            merged.append(block)
        return DirtyBlocks(dirty_blocks=dirty, clean_blocks=clean, all_blocks=merged)

    @staticmethod
    def _claim(pool: list[Block] | None, start_offset: int) -> Block | None:
        """Remove and return the unclaimed block nearest to ``start_offset``.

        Ties go to the block that appeared first in the previous list.
        """

        if not pool:
            return None
        best_index = min(
            range(len(pool)),
            key=lambda index: (abs(pool[index].start_offset - start_offset), index),
        )
        return pool.pop(best_index)

    @staticmethod
    def _fresh_block(state: TextField, raw: RawBlock) -> Block:
        return Block(
            id=state.next_block_id(),
            start_offset=raw.start_offset,
            end_offset=raw.end_offset,
            hash=raw.hash,
            text=raw.text,
        )

    @staticmethod
    def _carry_over(previous: Block, raw: RawBlock) -> Block:
        delta = raw.start_offset - previous.start_offset
        block = replace(
            previous,
            start_offset=raw.start_offset,
            end_offset=raw.end_offset,
            text=raw.text,
            issues=[issue.shifted(delta) for issue in previous.issues],
        )
        block.refresh_unapplied()
        return block

    # ------------------------------------------------------------------
    # Provider results
    # ------------------------------------------------------------------
    def merge_block_result(
        self,
        field_id: str,
        block_id: str,
        issues: Iterable[Issue],
        is_stability_pass: bool,
        request_token: RequestToken | None,
    ) -> bool:
        """Merge provider issues into a block; return ``False`` for stale responses."""

        state = self._fields.get(field_id)
        if state is None:
            return False
        block = state.find_block(block_id)
        if block is None:
            LOGGER.debug("Dropping result for vanished block %s in %s", block_id, field_id)
            return False
        if block.active_request_token != request_token:
            LOGGER.debug("Discarding stale result for block %s in %s", block_id, field_id)
            return False

        incoming = [issue for issue in issues if not self.is_ignored_text(issue.original_text)]
        if is_stability_pass:
            self._merge_verification(block, incoming)
        else:
            block.issues = [
                replace(issue, source=IssueSource.ANALYSIS, status=IssueStatus.NEW) for issue in incoming
            ]
            block.confidence = self._policy.boost if not incoming else 0.0

        block.is_analyzed = True
        block.is_analyzing = False
        block.is_stability_checking = False
        block.active_request_token = None
        block.refresh_unapplied()
        state.bump()
        return True

    def _merge_verification(self, block: Block, incoming: Sequence[Issue]) -> None:
        known = {issue.key for issue in block.issues}
        added = 0
        for issue in incoming:
            if issue.key in known:
                continue
            known.add(issue.key)
            block.issues.append(replace(issue, source=IssueSource.VERIFICATION, status=IssueStatus.NEW))
            added += 1
        if added:
            block.confidence = _clamp(block.confidence - self._policy.penalty)
            LOGGER.debug("Stability pass surfaced %s new issue(s) in block %s", added, block.id)
        else:
            block.confidence = _clamp(block.confidence + self._policy.boost)
        block.passes += 1

    # ------------------------------------------------------------------
    # Consumer-driven mutations
    # ------------------------------------------------------------------
    def remove_issue(self, field_id: str, issue_id: str) -> Issue | None:
        """Delete an accepted or ignored issue without triggering analysis."""

        state = self._fields.get(field_id)
        if state is None:
            return None
        for block in state.blocks:
            for index, issue in enumerate(block.issues):
                if issue.id == issue_id:
                    del block.issues[index]
                    block.refresh_unapplied()
                    state.bump()
                    return issue
        return None

    def ignore_text(self, text: str) -> list[tuple[str, Issue]]:
        """Ignore ``text`` in every field from now on.

        Matching is case-insensitive on the issue's original text. Existing
        matches are removed and returned as ``(field_id, issue)`` pairs; later
        provider results carrying the same text are dropped on merge.
        """

        normalized = self._remember_ignored(text)
        if normalized is None:
            return []
        removed: list[tuple[str, Issue]] = []
        for field_id, state in self._fields.items():
            changed = False
            for block in state.blocks:
                kept = []
                for issue in block.issues:
                    if issue.original_text.strip().lower() == normalized:
                        removed.append((field_id, issue))
                    else:
                        kept.append(issue)
                if len(kept) != len(block.issues):
                    block.issues = kept
                    block.refresh_unapplied()
                    changed = True
            if changed:
                state.bump()
        LOGGER.debug("Ignoring %r; removed %s issue(s)", normalized, len(removed))
        return removed

    def is_ignored_text(self, text: str) -> bool:
        return text.strip().lower() in self._ignored

    def _remember_ignored(self, text: str) -> str | None:
        normalized = text.strip().lower()
        if not normalized:
            return None
        self._ignored.add(normalized)
        return normalized

    def find_issue(self, field_id: str, issue_id: str) -> Issue | None:
        state = self._fields.get(field_id)
        if state is None:
            return None
        for block in state.blocks:
            for issue in block.issues:
                if issue.id == issue_id:
                    return issue
        return None

    def apply_local_change(self, field_id: str, issue: Issue, new_full_text: str) -> None:
        """Record a known replacement of ``issue`` without re-splitting the text."""

        state = self.require_field(field_id)
        self.remove_issue(field_id, issue.id)
        delta = len(issue.suggested_text) - len(issue.original_text)

        owner_index = next(
            (index for index, block in enumerate(state.blocks) if block.contains_offset(issue.start_offset)),
            -1,
        )
        if owner_index == -1:
            LOGGER.warning("No block owns offset %s in field %s", issue.start_offset, field_id)
            state.text = new_full_text
            state.bump()
            return

        owner = state.blocks[owner_index]
        replaced = issue.span
        kept: list[Issue] = []
        for other in owner.issues:
            if other.span.overlaps(replaced):
                continue
            kept.append(other.shifted(delta) if other.start_offset >= replaced.end else other)
        owner.issues = kept
        owner.end_offset += delta
        owner.text = new_full_text[owner.start_offset : owner.end_offset]
        owner.hash = hash_block(owner.text)
        owner.is_analyzed = True
        owner.refresh_unapplied()

        if delta:
            for block in state.blocks[owner_index + 1 :]:
                block.start_offset += delta
                block.end_offset += delta
                block.issues = [other.shifted(delta) for other in block.issues]

        state.text = new_full_text
        state.bump()

    # ------------------------------------------------------------------
    # Flags used by the coordinators
    # ------------------------------------------------------------------
    def set_block_analyzing(self, field_id: str, block_id: str, value: bool) -> None:
        block = self.get_block(field_id, block_id)
        if block is not None:
            block.is_analyzing = value

    def set_block_stability_checking(self, field_id: str, block_id: str, value: bool) -> None:
        block = self.get_block(field_id, block_id)
        if block is not None:
            block.is_stability_checking = value

    def set_block_request_token(self, field_id: str, block_id: str, token: RequestToken | None) -> None:
        block = self.get_block(field_id, block_id)
        if block is not None:
            block.active_request_token = token

    def force_block_stable(self, field_id: str, block_id: str) -> None:
        """Treat a block as converged without another verification round."""

        block = self.get_block(field_id, block_id)
        if block is None:
            return
        block.confidence = max(block.confidence, self._policy.stable_threshold)
        block.passes = max(block.passes, 1)
        block.is_stability_checking = False
        block.active_request_token = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_all_issues(self, field_id: str) -> list[Issue]:
        state = self._fields.get(field_id)
        if state is None:
            return []
        return [issue for block in state.blocks for issue in block.issues]

    def get_block_context(
        self, field_id: str, block_id: str, max_chars: int = 200
    ) -> tuple[str | None, str | None]:
        state = self._fields.get(field_id)
        if state is None:
            return None, None
        index = state.index_of(block_id)
        if index == -1:
            return None, None
        previous = state.blocks[index - 1].text if index > 0 else None
        following = state.blocks[index + 1].text if index + 1 < len(state.blocks) else None
        if previous is not None:
            previous = previous[-max_chars:] if max_chars > 0 else ""
        if following is not None:
            following = following[:max_chars] if max_chars > 0 else ""
        return previous, following

    def is_block_stable(self, block: Block) -> bool:
        return block.confidence >= self._policy.stable_threshold and block.passes >= 1

    def is_block_done(self, block: Block) -> bool:
        return self.is_block_stable(block) or block.passes >= self._policy.max_passes

    def get_unstable_blocks(self, field_id: str) -> list[Block]:
        state = self._fields.get(field_id)
        if state is None:
            return []
        return [
            block
            for block in state.blocks
            if block.is_analyzed
            and not block.is_busy
            and not block.has_unapplied_issues
            and block.passes < self._policy.max_passes
            and not self.is_block_stable(block)
        ]

    def has_any_unapplied_issues(self, field_id: str) -> bool:
        state = self._fields.get(field_id)
        if state is None:
            return False
        return any(block.has_unapplied_issues for block in state.blocks)

    def are_all_blocks_clean(self, field_id: str) -> bool:
        state = self._fields.get(field_id)
        if state is None:
            return True
        return not any(block.is_busy for block in state.blocks)

    def are_all_blocks_stable(self, field_id: str) -> bool:
        state = self._fields.get(field_id)
        if state is None:
            return True
        return all(self.is_block_stable(block) for block in state.blocks)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
