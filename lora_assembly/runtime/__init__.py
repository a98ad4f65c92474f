"""Scheduling policy and runtime assembly for loaded pipelines."""

from lora_assembly.runtime.block_manager import KVBlock, PagedBlockManager
from lora_assembly.runtime.model import Model
from lora_assembly.runtime.prefix_cache import PrefixCache
from lora_assembly.runtime.runner import Runner, RunnerBuilder
from lora_assembly.runtime.scheduler import (
    DefaultScheduler,
    FixedSlots,
    MissingCacheConfigPolicy,
    PagedAttentionMeta,
    SchedulerConfig,
    select_scheduler,
)

__all__ = [
    "DefaultScheduler",
    "FixedSlots",
    "KVBlock",
    "MissingCacheConfigPolicy",
    "Model",
    "PagedAttentionMeta",
    "PagedBlockManager",
    "PrefixCache",
    "Runner",
    "RunnerBuilder",
    "SchedulerConfig",
    "select_scheduler",
]
