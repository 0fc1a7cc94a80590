"""Incremental analysis coordination: first pass, stability pass and merging."""

from .block_analyzer import AnalysisRun, BlockAnalyzer
from .callbacks import BlockAnalysisCallbacks, StabilityPassCallbacks
from .matching import resolve_provider_issues
from .merger import (
    create_analysis_result,
    deduplicate_issues,
    merge_block_issues,
    validate_issue_offsets,
)
from .provider import AnalysisProvider, BlockContext, ProviderIssue, ProviderResponse
from .stability import StabilityPass, StabilityPassManager

__all__ = [
    "AnalysisProvider",
    "AnalysisRun",
    "BlockAnalysisCallbacks",
    "BlockAnalyzer",
    "BlockContext",
    "ProviderIssue",
    "ProviderResponse",
    "StabilityPass",
    "StabilityPassCallbacks",
    "StabilityPassManager",
    "create_analysis_result",
    "deduplicate_issues",
    "merge_block_issues",
    "resolve_provider_issues",
    "validate_issue_offsets",
]
