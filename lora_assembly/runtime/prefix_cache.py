"""Sequence-level prefix cache.

Prompts are split into fixed-size token blocks whose hashes are chained, so
the hash of block N identifies the whole prefix up to and including it. A
lookup walks the chain and returns the longest cached prefix.
"""

from collections import OrderedDict
from collections.abc import Sequence
from typing import Any

from loguru import logger


def compute_block_hash(
    token_ids: Sequence[int],
    block_start: int,
    block_size: int,
    prev_hash: int = 0,
) -> int:
    """Compute a content hash for one block, chained to the previous block.

    Identical tokens at different positions hash differently, so only
    identical prefixes match.
    """
    block_end = min(block_start + block_size, len(token_ids))
    return hash((prev_hash, tuple(token_ids[block_start:block_end])))


def prefix_hashes(token_ids: Sequence[int], block_size: int) -> list[int]:
    """Chained hashes for every complete block of ``token_ids``."""
    hashes: list[int] = []
    prev_hash = 0
    for start in range(0, len(token_ids) - block_size + 1, block_size):
        prev_hash = compute_block_hash(token_ids, start, block_size, prev_hash)
        hashes.append(prev_hash)
    return hashes


class PrefixCache:
    """LRU cache mapping token prefixes to opaque cached-state handles.

    Attributes:
        max_entries: Maximum number of cached prefixes
        block_size: Token granularity of matching
    """

    def __init__(self, max_entries: int, block_size: int = 32) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        if block_size < 1:
            raise ValueError(f"block_size must be positive, got {block_size}")

        self.max_entries = max_entries
        self.block_size = block_size
        # prefix hash -> (handle, matched token count)
        self._entries: OrderedDict[int, tuple[Any, int]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def insert(self, token_ids: Sequence[int], handle: Any) -> bool:
        """Cache ``handle`` as the state for the complete-block prefix of ``token_ids``.

        Returns:
            False if the sequence is shorter than one block and nothing was cached.
        """
        hashes = prefix_hashes(token_ids, self.block_size)
        if not hashes:
            return False

        key = hashes[-1]
        self._entries[key] = (handle, len(hashes) * self.block_size)
        self._entries.move_to_end(key)

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug(f"Evicted prefix cache entry {evicted:x}")
        return True

    def lookup(self, token_ids: Sequence[int]) -> tuple[Any, int] | None:
        """Find the longest cached prefix of ``token_ids``.

        Returns:
            ``(handle, matched_tokens)`` or None on a miss.
        """
        for key in reversed(prefix_hashes(token_ids, self.block_size)):
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
                self._hits += 1
                return entry
        self._misses += 1
        return None

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "block_size": self.block_size,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }
