"""Loader and pipeline interfaces.

A ``Loader`` turns a model identifier plus adapters into a device-bound
``Pipeline``. Pipelines are shared behind an asyncio lock; callers read
metadata through ``SharedPipeline.lock()`` and release it right after.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from lora_assembly.models.device_map import DeviceMapSetting
from lora_assembly.models.paged_attention import CacheConfig, PagedAttentionConfig
from lora_assembly.models.types import (
    AdapterInfo,
    Device,
    IsqType,
    ModelDType,
    ModelType,
    TokenSource,
)


@dataclass
class PipelineMetadata:
    """Queryable facts about a loaded pipeline."""

    model_id: str
    model_type: ModelType
    device: Device
    dtype: ModelDType
    adapters: list[AdapterInfo] = field(default_factory=list)
    cache_config: CacheConfig | None = None
    no_kv_cache: bool = False
    chat_template: str | None = None
    loader_type: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def adapter_ids(self) -> list[str]:
        return [a.adapter_id for a in self.adapters]

    @property
    def is_lora(self) -> bool:
        return bool(self.adapters)


class Pipeline(ABC):
    """A loaded, device-bound model instance."""

    @abstractmethod
    def get_metadata(self) -> PipelineMetadata:
        """Return the pipeline's metadata."""


class SharedPipeline:
    """A pipeline guarded by an asyncio lock."""

    def __init__(self, pipeline: Pipeline) -> None:
        self._pipeline = pipeline
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def lock(self) -> AsyncIterator[Pipeline]:
        """Hold exclusive access to the pipeline for the duration of the block."""
        async with self._lock:
            yield self._pipeline

    def locked(self) -> bool:
        return self._lock.locked()


class Loader(ABC):
    """Loads a base model with its adapters into a pipeline."""

    def __init__(self, model_id: str, adapter_ids: list[str]) -> None:
        self.model_id = model_id
        self.adapter_ids = list(adapter_ids)

    @property
    @abstractmethod
    def model_type(self) -> ModelType:
        """Modality this loader produces."""

    @abstractmethod
    async def load_model_from_hf(
        self,
        revision: str | None,
        token_source: TokenSource,
        dtype: ModelDType,
        device: Device,
        silent: bool,
        mapper: DeviceMapSetting,
        isq: IsqType | None,
        paged_attn_cfg: PagedAttentionConfig | None,
    ) -> SharedPipeline:
        """Fetch weights from the hub (or a local directory) and load them.

        Args:
            revision: Hub revision (branch, tag or commit), None for the default
            token_source: Where to read the hub access token
            dtype: Precision to load the weights in
            device: Device to bind the pipeline to
            silent: Suppress progress output
            mapper: Device mapping strategy
            isq: In-situ quantization applied after loading
            paged_attn_cfg: Paged attention request, None to disable

        Returns:
            The loaded pipeline behind its lock

        Raises:
            ModelLoadError: If the model or an adapter cannot be loaded
        """
