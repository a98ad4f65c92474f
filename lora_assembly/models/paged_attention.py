"""Paged attention request and resolved cache configuration.

A descriptor carries an optional ``PagedAttentionConfig`` (what the caller
asks for). The loader turns it into a ``CacheConfig`` (what the pipeline can
actually provide) or reports ``None`` when paged attention is unavailable
for the loaded model on the chosen device.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from lora_assembly.config import get_settings
from lora_assembly.models.types import Device, ModelDType


class MbAmount(BaseModel):
    """Fixed KV cache budget in megabytes."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["mb"] = "mb"
    mb: int = Field(gt=0)


class Utilization(BaseModel):
    """Fraction of device memory left after the weights are loaded."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["utilization"] = "utilization"
    fraction: float = Field(gt=0.0, le=1.0)


class ContextSize(BaseModel):
    """Enough blocks to hold this many tokens."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["context_size"] = "context_size"
    tokens: int = Field(gt=0)


MemoryGpuConfig = MbAmount | Utilization | ContextSize


def _default_budget() -> MemoryGpuConfig:
    return Utilization(fraction=get_settings().gpu_memory_utilization)


class PagedAttentionConfig(BaseModel):
    """Caller's request for a paged KV cache."""

    model_config = ConfigDict(frozen=True)

    block_size: int | None = Field(default=None, gt=0)
    mem_gpu: MemoryGpuConfig = Field(default_factory=_default_budget, discriminator="kind")
    cache_type: Literal["auto", "f8e4m3"] = "auto"


@dataclass(frozen=True)
class CacheConfig:
    """Resolved paged KV cache geometry reported by a pipeline."""

    block_size: int
    num_gpu_blocks: int
    num_cpu_blocks: int = 0
    cache_type: str = "auto"


def _get(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def attention_geometry(model_args: Any) -> tuple[int, int, int] | None:
    """Extract (num_layers, num_kv_heads, head_dim) from a model config.

    Returns None when the config does not expose enough to size KV blocks.
    """
    if model_args is None:
        return None
    num_layers = _get(model_args, "num_hidden_layers")
    num_heads = _get(model_args, "num_attention_heads")
    if not num_layers or not num_heads:
        return None
    num_kv_heads = _get(model_args, "num_key_value_heads") or num_heads
    head_dim = _get(model_args, "head_dim")
    if not head_dim:
        hidden_size = _get(model_args, "hidden_size")
        if not hidden_size:
            return None
        head_dim = hidden_size // num_heads
    return int(num_layers), int(num_kv_heads), int(head_dim)


def kv_bytes_per_block(
    geometry: tuple[int, int, int], block_size: int, dtype_bytes: int
) -> int:
    """Bytes needed to hold keys and values for one block across all layers."""
    num_layers, num_kv_heads, head_dim = geometry
    return 2 * num_layers * num_kv_heads * head_dim * block_size * dtype_bytes


def resolve_cache_config(
    paged_cfg: PagedAttentionConfig | None,
    device: Device,
    model_args: Any,
    dtype: ModelDType,
    device_memory_gb: float,
    model_size_gb: float,
) -> CacheConfig | None:
    """Size the paged KV cache for a loaded model.

    Args:
        paged_cfg: The caller's request, or None when not requested
        device: Device the pipeline is bound to (paged attention needs a GPU)
        model_args: Model config exposing the attention geometry
        dtype: Precision of the loaded weights
        device_memory_gb: Total device memory
        model_size_gb: Memory taken by the loaded weights

    Returns:
        CacheConfig, or None if paged attention is unavailable
    """
    if paged_cfg is None:
        return None
    if device.is_cpu:
        logger.info("Paged attention is not available on CPU, disabling it")
        return None

    geometry = attention_geometry(model_args)
    if geometry is None:
        logger.info("Model config does not expose attention geometry, paged attention disabled")
        return None

    block_size = paged_cfg.block_size or get_settings().default_block_size
    dtype_bytes = 1 if paged_cfg.cache_type == "f8e4m3" else dtype.num_bytes
    per_block = kv_bytes_per_block(geometry, block_size, dtype_bytes)

    budget = paged_cfg.mem_gpu
    if isinstance(budget, ContextSize):
        num_blocks = math.ceil(budget.tokens / block_size)
    elif isinstance(budget, MbAmount):
        num_blocks = (budget.mb * 1024**2) // per_block
    else:
        available_gb = budget.fraction * device_memory_gb - model_size_gb
        num_blocks = max(0, int(available_gb * 1024**3) // per_block)

    if num_blocks <= 0:
        logger.warning(
            f"KV cache budget leaves no room for a single {block_size}-token block, "
            "paged attention disabled"
        )
        return None

    logger.debug(
        f"Paged KV cache: {num_blocks} blocks of {block_size} tokens "
        f"({per_block / 1024**2:.2f}MB per block)"
    )
    return CacheConfig(
        block_size=block_size,
        num_gpu_blocks=num_blocks,
        cache_type=paged_cfg.cache_type,
    )
