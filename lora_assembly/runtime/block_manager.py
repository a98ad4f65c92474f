"""Paged KV cache block pool.

Blocks are handed out from a free stack and reference counted so a block
shared by several sequences returns to the pool only when the last user
releases it.
"""

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class KVBlock:
    """A fixed-size block of KV cache storage.

    Attributes:
        block_id: Physical block index
        ref_count: Number of sequences using this block
        last_used: Timestamp of last access
    """

    block_id: int
    ref_count: int = 0
    last_used: float = field(default_factory=time.time)


class PagedBlockManager:
    """Manages a fixed pool of KV cache blocks.

    Attributes:
        num_blocks: Total number of blocks in the pool
        block_size: Tokens held by each block
        blocks: All blocks indexed by block_id
        free_blocks: Stack of available block IDs
    """

    def __init__(self, num_blocks: int, block_size: int) -> None:
        if num_blocks < 0:
            raise ValueError(f"num_blocks must be non-negative, got {num_blocks}")
        if block_size < 1:
            raise ValueError(f"block_size must be positive, got {block_size}")

        self.num_blocks = num_blocks
        self.block_size = block_size
        self.blocks: dict[int, KVBlock] = {i: KVBlock(block_id=i) for i in range(num_blocks)}
        # Reversed so block 0 is handed out first
        self.free_blocks: list[int] = list(reversed(range(num_blocks)))

    def allocate(self) -> int:
        """Allocate a free block and return its ID.

        Raises:
            MemoryError: If no free blocks are available.
        """
        if not self.free_blocks:
            raise MemoryError("No free KV cache blocks")

        block_id = self.free_blocks.pop()
        block = self.blocks[block_id]
        block.ref_count = 1
        block.last_used = time.time()
        return block_id

    def share(self, block_id: int) -> None:
        """Add a reference to an allocated block.

        Raises:
            ValueError: If the block is not currently allocated.
        """
        block = self.blocks[block_id]
        if block.ref_count <= 0:
            raise ValueError(f"Block {block_id} is not allocated")
        block.ref_count += 1
        block.last_used = time.time()

    def release(self, block_id: int) -> None:
        """Drop a reference; the block returns to the pool when none remain."""
        block = self.blocks.get(block_id)
        if block is None or block.ref_count <= 0:
            return

        block.ref_count -= 1
        if block.ref_count == 0:
            self.free_blocks.append(block_id)

    def blocks_for_tokens(self, num_tokens: int) -> int:
        """Number of blocks needed to hold ``num_tokens`` tokens."""
        return -(-num_tokens // self.block_size)

    def can_allocate(self, num_tokens: int) -> bool:
        return self.blocks_for_tokens(num_tokens) <= len(self.free_blocks)

    def get_free_count(self) -> int:
        return len(self.free_blocks)

    def get_stats(self) -> dict[str, Any]:
        """Return block pool statistics."""
        free = len(self.free_blocks)
        return {
            "total": self.num_blocks,
            "free": free,
            "used": self.num_blocks - free,
            "block_size": self.block_size,
        }
