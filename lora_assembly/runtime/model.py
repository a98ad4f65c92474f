"""The assembled, ready-to-serve model."""

from __future__ import annotations

from typing import Any

from lora_assembly.models.tools import ToolCallback
from lora_assembly.runtime.runner import Runner
from lora_assembly.runtime.scheduler import DefaultScheduler, PagedAttentionMeta, SchedulerConfig


class Model:
    """A built model: the runner plus convenience accessors."""

    def __init__(self, runner: Runner) -> None:
        self.runner = runner

    @property
    def scheduler_config(self) -> SchedulerConfig:
        return self.runner.scheduler_config

    @property
    def prefix_cache_enabled(self) -> bool:
        return self.runner.prefix_cache is not None

    def get_tool_callback(self, name: str) -> ToolCallback | None:
        """Look up a registered tool callback by name."""
        callback = self.runner.tool_callbacks.get(name)
        if callback is not None:
            return callback
        bound = self.runner.tool_callbacks_with_tools.get(name)
        return bound.callback if bound is not None else None

    def tool_names(self) -> list[str]:
        return sorted(set(self.runner.tool_callbacks) | set(self.runner.tool_callbacks_with_tools))

    def config(self) -> dict[str, Any]:
        """Summarize how the model was assembled."""
        metadata = self.runner.metadata
        scheduler = self.scheduler_config
        summary: dict[str, Any] = {
            "model_id": metadata.model_id,
            "model_type": metadata.model_type.value,
            "device": str(metadata.device),
            "dtype": metadata.dtype.value,
            "adapters": metadata.adapter_ids,
            "no_kv_cache": self.runner.no_kv_cache,
            "prefix_cache_n": self.runner.prefix_cache_n if self.prefix_cache_enabled else None,
            "tools": self.tool_names(),
            "search": self.runner.search_enabled,
        }
        if isinstance(scheduler, PagedAttentionMeta):
            summary["scheduler"] = {
                "type": "paged_attention",
                "max_num_seqs": scheduler.max_num_seqs,
                "block_size": scheduler.config.block_size,
                "num_gpu_blocks": scheduler.config.num_gpu_blocks,
            }
        elif isinstance(scheduler, DefaultScheduler):
            summary["scheduler"] = {"type": "fixed", "slots": scheduler.fixed_slot_count}
        return summary

    async def close(self) -> None:
        """Release runtime resources. Safe to call more than once."""
        async with self.runner.pipeline.lock():
            self.runner.close()
