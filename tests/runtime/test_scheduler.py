"""Tests for scheduler policy selection."""

import pytest

from lora_assembly.errors import MissingCacheConfigError, SlotCountConversionError
from lora_assembly.runtime.scheduler import (
    MAX_SLOT_COUNT,
    DefaultScheduler,
    FixedSlots,
    MissingCacheConfigPolicy,
    PagedAttentionMeta,
    fixed_slots,
    select_scheduler,
)


class TestFixedSlots:
    """Tests for slot count conversion."""

    @pytest.mark.parametrize("count", [1, 32, MAX_SLOT_COUNT])
    def test_valid(self, count):
        assert fixed_slots(count) == FixedSlots(count=count)

    @pytest.mark.parametrize("count", [0, -1, MAX_SLOT_COUNT + 1, True, 2.0, "4"])
    def test_invalid(self, count):
        with pytest.raises(SlotCountConversionError) as exc_info:
            fixed_slots(count)
        assert exc_info.value.value == count

    def test_error_is_value_error(self):
        with pytest.raises(ValueError):
            fixed_slots(0)


class TestSelectScheduler:
    """Tests for select_scheduler."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "policy", [MissingCacheConfigPolicy.FAIL, MissingCacheConfigPolicy.FALLBACK]
    )
    async def test_fixed_slots_when_not_requested(self, paged_text_pipeline, policy):
        """Without a paged attention request the cache config is never read."""
        result = await select_scheduler(paged_text_pipeline, False, 8, policy)

        assert result == DefaultScheduler(method=FixedSlots(count=8))
        async with paged_text_pipeline.lock() as pipeline:
            assert pipeline.metadata_reads == 0

    @pytest.mark.asyncio
    async def test_paged_when_cache_config_present(self, paged_text_pipeline, cache_config):
        result = await select_scheduler(
            paged_text_pipeline, True, 16, MissingCacheConfigPolicy.FAIL
        )

        assert result == PagedAttentionMeta(max_num_seqs=16, config=cache_config)

    @pytest.mark.asyncio
    async def test_paged_accepts_any_seq_count(self, paged_text_pipeline):
        """The paged policy carries max_num_seqs as-is."""
        result = await select_scheduler(
            paged_text_pipeline, True, 0, MissingCacheConfigPolicy.FAIL
        )
        assert isinstance(result, PagedAttentionMeta)
        assert result.max_num_seqs == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [-5, True, 2.0])
    async def test_paged_rejects_invalid_seq_count(self, paged_text_pipeline, count):
        with pytest.raises(ValueError, match="non-negative integer"):
            await select_scheduler(
                paged_text_pipeline, True, count, MissingCacheConfigPolicy.FAIL
            )
        assert not paged_text_pipeline.locked()

    @pytest.mark.asyncio
    async def test_missing_cache_config_fails(self, text_pipeline):
        with pytest.raises(MissingCacheConfigError):
            await select_scheduler(text_pipeline, True, 8, MissingCacheConfigPolicy.FAIL)

    @pytest.mark.asyncio
    async def test_missing_cache_config_falls_back(self, text_pipeline):
        result = await select_scheduler(
            text_pipeline, True, 8, MissingCacheConfigPolicy.FALLBACK
        )
        assert result == DefaultScheduler(method=FixedSlots(count=8))
        assert result.fixed_slot_count == 8

    @pytest.mark.asyncio
    async def test_fallback_validates_slot_count(self, text_pipeline):
        with pytest.raises(SlotCountConversionError):
            await select_scheduler(text_pipeline, True, 0, MissingCacheConfigPolicy.FALLBACK)

    @pytest.mark.asyncio
    async def test_zero_slots_rejected(self, text_pipeline):
        with pytest.raises(SlotCountConversionError):
            await select_scheduler(text_pipeline, False, 0, MissingCacheConfigPolicy.FAIL)

    @pytest.mark.asyncio
    async def test_lock_released_after_read(self, paged_text_pipeline):
        await select_scheduler(paged_text_pipeline, True, 4, MissingCacheConfigPolicy.FAIL)
        assert not paged_text_pipeline.locked()
