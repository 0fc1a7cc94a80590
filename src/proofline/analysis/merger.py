"""Collapse per-block issue lists into one presentation-ready result."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from ..state.models import AnalysisResult, Block, Issue

__all__ = [
    "adjust_issue_offsets",
    "merge_block_issues",
    "validate_issue_offsets",
    "deduplicate_issues",
    "drop_mismatched_issues",
    "create_analysis_result",
]

LOGGER = logging.getLogger(__name__)


def adjust_issue_offsets(issues: Iterable[Issue], delta: int) -> list[Issue]:
    """Return copies of ``issues`` shifted by ``delta`` characters."""

    return [issue.shifted(delta) for issue in issues]


def merge_block_issues(blocks: Iterable[Block]) -> list[Issue]:
    """Concatenate every block's issues, sorted by start offset (stable for ties)."""

    issues = [issue for block in blocks for issue in block.issues]
    return sorted(issues, key=lambda issue: issue.start_offset)


def validate_issue_offsets(issues: Iterable[Issue], text_length: int) -> list[Issue]:
    valid: list[Issue] = []
    for issue in issues:
        if issue.start_offset < 0 or issue.end_offset > text_length:
            LOGGER.warning(
                "Invalid issue offset %s-%s for text length %s",
                issue.start_offset,
                issue.end_offset,
                text_length,
            )
            continue
        if issue.start_offset >= issue.end_offset:
            LOGGER.warning("Invalid issue range: start %s >= end %s", issue.start_offset, issue.end_offset)
            continue
        valid.append(issue)
    return valid


def deduplicate_issues(issues: Iterable[Issue]) -> list[Issue]:
    """Keep the first issue for each ``(start, end, suggested_text)`` key."""

    seen: set[tuple[int, int, str]] = set()
    unique: list[Issue] = []
    for issue in issues:
        if issue.key in seen:
            continue
        seen.add(issue.key)
        unique.append(issue)
    return unique


def drop_mismatched_issues(issues: Iterable[Issue], text: str) -> list[Issue]:
    """Drop issues whose ``original_text`` no longer matches the live text."""

    kept: list[Issue] = []
    for issue in issues:
        if text[issue.start_offset : issue.end_offset] != issue.original_text:
            LOGGER.debug("Dropping issue %s: text at %s-%s changed", issue.id, issue.start_offset, issue.end_offset)
            continue
        kept.append(issue)
    return kept


def create_analysis_result(text: str, blocks: Sequence[Block]) -> AnalysisResult:
    issues = [issue for issue in merge_block_issues(blocks) if not issue.ignored]
    issues = deduplicate_issues(issues)
    issues = validate_issue_offsets(issues, len(text))
    issues = drop_mismatched_issues(issues, text)
    return AnalysisResult(text=text, issues=[issue.copy() for issue in issues])
