"""Scheduler policy selection.

The policy is derived strictly from the loaded pipeline: paged-capacity
scheduling when the pipeline reports a paged KV cache, fixed-slot scheduling
otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from loguru import logger

from lora_assembly.errors import MissingCacheConfigError, SlotCountConversionError
from lora_assembly.loaders.base import SharedPipeline
from lora_assembly.models.paged_attention import CacheConfig

# Slot counts are non-zero unsigned 64-bit integers
MAX_SLOT_COUNT = 2**64 - 1


@dataclass(frozen=True)
class FixedSlots:
    """Serve at most ``count`` sequences concurrently."""

    count: int


@dataclass(frozen=True)
class PagedAttentionMeta:
    """Capacity-bounded scheduling over a paged KV cache."""

    max_num_seqs: int
    config: CacheConfig


@dataclass(frozen=True)
class DefaultScheduler:
    """Fixed-slot scheduling."""

    method: FixedSlots

    @property
    def fixed_slot_count(self) -> int:
        return self.method.count


SchedulerConfig = PagedAttentionMeta | DefaultScheduler


class MissingCacheConfigPolicy(Enum):
    """What to do when paged attention was requested but the pipeline has no cache config.

    Text models FAIL and vision models FALLBACK to fixed-slot scheduling.
    """

    FAIL = "fail"
    FALLBACK = "fallback"


def fixed_slots(max_num_seqs: int) -> FixedSlots:
    """Convert a sequence count into a fixed slot count.

    Raises:
        SlotCountConversionError: If the count is not an integer in 1..2**64-1
    """
    if (
        isinstance(max_num_seqs, bool)
        or not isinstance(max_num_seqs, int)
        or not 0 < max_num_seqs <= MAX_SLOT_COUNT
    ):
        raise SlotCountConversionError(max_num_seqs)
    return FixedSlots(count=max_num_seqs)


def paged_seq_count(max_num_seqs: int) -> int:
    """Check a sequence cap for paged scheduling, where 0 leaves the cap to the cache.

    Raises:
        ValueError: If the count is not a non-negative integer
    """
    if isinstance(max_num_seqs, bool) or not isinstance(max_num_seqs, int) or max_num_seqs < 0:
        raise ValueError(f"max_num_seqs must be a non-negative integer, got {max_num_seqs!r}")
    return max_num_seqs


def default_scheduler(max_num_seqs: int) -> DefaultScheduler:
    return DefaultScheduler(method=fixed_slots(max_num_seqs))


async def read_cache_config(pipeline: SharedPipeline) -> CacheConfig | None:
    """Copy the pipeline's cache config, holding its lock only for the read."""
    async with pipeline.lock() as locked:
        return locked.get_metadata().cache_config


async def select_scheduler(
    pipeline: SharedPipeline,
    paged_attn_requested: bool,
    max_num_seqs: int,
    on_missing_cache: MissingCacheConfigPolicy,
) -> SchedulerConfig:
    """Derive the scheduler policy for a loaded pipeline.

    Args:
        pipeline: The loaded pipeline
        paged_attn_requested: Whether the descriptor asked for paged attention
        max_num_seqs: Maximum concurrent sequences
        on_missing_cache: Behavior when paged attention was requested but
            the pipeline reports no cache config

    Returns:
        PagedAttentionMeta or DefaultScheduler

    Raises:
        SlotCountConversionError: If max_num_seqs does not fit a slot count
        ValueError: If max_num_seqs is negative under paged scheduling
        MissingCacheConfigError: If the cache config is missing under FAIL
    """
    if not paged_attn_requested:
        return default_scheduler(max_num_seqs)

    cache_config = await read_cache_config(pipeline)
    if cache_config is not None:
        return PagedAttentionMeta(max_num_seqs=paged_seq_count(max_num_seqs), config=cache_config)

    if on_missing_cache is MissingCacheConfigPolicy.FAIL:
        raise MissingCacheConfigError(
            "Paged attention was requested but the loaded pipeline has no cache config"
        )

    logger.info("Pipeline has no paged KV cache, falling back to fixed-slot scheduling")
    return default_scheduler(max_num_seqs)
