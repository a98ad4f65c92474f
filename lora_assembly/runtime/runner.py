"""Runtime assembly: binds a loaded pipeline to its scheduler and callbacks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from lora_assembly.config import get_settings
from lora_assembly.loaders.base import PipelineMetadata, SharedPipeline
from lora_assembly.models.tools import SearchCallback, Tool, ToolCallback, ToolCallbackWithTool
from lora_assembly.runtime.block_manager import PagedBlockManager
from lora_assembly.runtime.prefix_cache import PrefixCache
from lora_assembly.runtime.scheduler import PagedAttentionMeta, SchedulerConfig

DEFAULT_PREFIX_CACHE_N = 16


@dataclass
class Runner:
    """A pipeline ready to serve requests under a scheduling policy."""

    pipeline: SharedPipeline
    scheduler_config: SchedulerConfig
    metadata: PipelineMetadata
    throughput_logging: bool = False
    search_embedding_model: str | None = None
    search_callback: SearchCallback | None = None
    tool_callbacks: dict[str, ToolCallback] = field(default_factory=dict)
    tool_callbacks_with_tools: dict[str, ToolCallbackWithTool] = field(default_factory=dict)
    no_kv_cache: bool = False
    no_prefix_cache: bool = False
    prefix_cache_n: int = DEFAULT_PREFIX_CACHE_N
    block_manager: PagedBlockManager | None = None
    prefix_cache: PrefixCache | None = None
    closed: bool = False

    @property
    def search_enabled(self) -> bool:
        return self.search_embedding_model is not None or self.search_callback is not None

    def close(self) -> None:
        if self.closed:
            return
        if self.prefix_cache is not None:
            self.prefix_cache.clear()
        self.closed = True
        logger.info(f"Runner closed: {self.metadata.model_id}")


class RunnerBuilder:
    """Fluent builder for a Runner.

    Registration methods return the builder so calls can be chained. Tool
    callbacks are keyed by name; registering a name twice keeps the last one.
    """

    def __init__(
        self,
        pipeline: SharedPipeline,
        scheduler_config: SchedulerConfig,
        throughput_logging: bool = False,
        search_embedding_model: str | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.scheduler_config = scheduler_config
        self.throughput_logging = throughput_logging
        self.search_embedding_model = search_embedding_model
        self.search_callback: SearchCallback | None = None
        self.tool_callbacks: dict[str, ToolCallback] = {}
        self.tool_callbacks_with_tools: dict[str, ToolCallbackWithTool] = {}
        self.no_kv_cache = False
        self.no_prefix_cache = False
        self.prefix_cache_n = DEFAULT_PREFIX_CACHE_N

    def with_search_callback(self, callback: SearchCallback) -> RunnerBuilder:
        self.search_callback = callback
        return self

    def with_tool_callback(self, name: str, callback: ToolCallback) -> RunnerBuilder:
        self.tool_callbacks[name] = callback
        return self

    def with_tool_callback_and_tool(
        self, name: str, callback: ToolCallback, tool: Tool
    ) -> RunnerBuilder:
        self.tool_callbacks_with_tools[name] = ToolCallbackWithTool(callback=callback, tool=tool)
        return self

    def with_no_kv_cache(self, no_kv_cache: bool) -> RunnerBuilder:
        self.no_kv_cache = no_kv_cache
        return self

    def with_no_prefix_cache(self, no_prefix_cache: bool) -> RunnerBuilder:
        self.no_prefix_cache = no_prefix_cache
        return self

    def with_prefix_cache_n(self, n: int) -> RunnerBuilder:
        self.prefix_cache_n = n
        return self

    def _block_size(self) -> int:
        if isinstance(self.scheduler_config, PagedAttentionMeta):
            return self.scheduler_config.config.block_size
        return get_settings().default_block_size

    async def build(self) -> Runner:
        """Create the runner and the runtime resources its policy needs."""
        async with self.pipeline.lock() as pipeline:
            metadata = pipeline.get_metadata()

        block_manager = None
        if isinstance(self.scheduler_config, PagedAttentionMeta):
            cache = self.scheduler_config.config
            block_manager = PagedBlockManager(cache.num_gpu_blocks, cache.block_size)

        prefix_cache = None
        if not self.no_prefix_cache and self.prefix_cache_n > 0:
            prefix_cache = PrefixCache(self.prefix_cache_n, block_size=self._block_size())

        runner = Runner(
            pipeline=self.pipeline,
            scheduler_config=self.scheduler_config,
            metadata=metadata,
            throughput_logging=self.throughput_logging,
            search_embedding_model=self.search_embedding_model,
            search_callback=self.search_callback,
            tool_callbacks=dict(self.tool_callbacks),
            tool_callbacks_with_tools=dict(self.tool_callbacks_with_tools),
            no_kv_cache=self.no_kv_cache,
            no_prefix_cache=self.no_prefix_cache,
            prefix_cache_n=self.prefix_cache_n,
            block_manager=block_manager,
            prefix_cache=prefix_cache,
        )

        summary: dict[str, Any] = {
            "policy": type(self.scheduler_config).__name__,
            "tools": len(runner.tool_callbacks) + len(runner.tool_callbacks_with_tools),
            "prefix_cache": prefix_cache is not None,
            "search": runner.search_enabled,
        }
        if block_manager is not None:
            summary["kv_blocks"] = block_manager.num_blocks
        logger.info(f"Runner ready: {metadata.model_id} {summary}")
        return runner
