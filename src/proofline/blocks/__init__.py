"""Text segmentation and content hashing for incremental analysis."""

from .hasher import EMPTY_HASH, hash_block
from .splitter import RawBlock, SplitConfig, block_context, split_text

__all__ = ["EMPTY_HASH", "hash_block", "RawBlock", "SplitConfig", "block_context", "split_text"]
