"""Assembly configuration.

Environment Variables:
    LORA_ASSEMBLY_DEFAULT_MAX_NUM_SEQS: Default concurrent sequence count (default: 32)
    LORA_ASSEMBLY_DEFAULT_PREFIX_CACHE_N: Default prefix cache depth (default: 16)
    LORA_ASSEMBLY_HF_CACHE_PATH: HuggingFace cache directory override
    LORA_ASSEMBLY_DEFAULT_BLOCK_SIZE: Paged attention tokens per block (default: 32)
    LORA_ASSEMBLY_GPU_MEMORY_UTILIZATION: Fraction of device memory for the KV cache
        when paged attention is requested without an explicit budget (default: 0.9)

Logging is configured separately via LORA_ASSEMBLY_LOG_LEVEL and
LORA_ASSEMBLY_LOG_DIR (see logging_config.py).
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AssemblySettings(BaseSettings):
    """Defaults applied when a model descriptor leaves a field unset.

    All settings can be configured via environment variables with the
    LORA_ASSEMBLY_ prefix. Example: LORA_ASSEMBLY_DEFAULT_MAX_NUM_SEQS=64
    """

    model_config = SettingsConfigDict(
        env_prefix="LORA_ASSEMBLY_",
        env_file=".env",
        extra="ignore",
    )

    default_max_num_seqs: int = Field(
        default=32,
        description="Maximum concurrent sequences served by a built model",
    )
    default_prefix_cache_n: int | None = Field(
        default=16,
        description="Number of sequences kept in the prefix cache (None disables it)",
    )
    hf_cache_path: Path | None = Field(
        default=None,
        description="HuggingFace cache directory (None uses the hub default)",
    )
    default_block_size: int = Field(
        default=32,
        ge=1,
        description="Tokens per paged attention block",
    )
    gpu_memory_utilization: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        description="Fraction of device memory used for the paged KV cache by default",
    )


@lru_cache
def get_settings() -> AssemblySettings:
    """Get cached settings instance."""
    return AssemblySettings()
