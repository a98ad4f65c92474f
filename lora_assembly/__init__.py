"""LoRA Assembly - build servable MLX models from a base model plus LoRA adapters."""

from lora_assembly.builder import LoraModelBuilder
from lora_assembly.errors import (
    AdapterError,
    AssemblyError,
    BuilderConsumedError,
    DeviceSelectionError,
    LoaderConfigError,
    MissingCacheConfigError,
    ModelLoadError,
    SlotCountConversionError,
)
from lora_assembly.models import (
    Device,
    ModelDType,
    ModelType,
    TextModelDescriptor,
    TokenSource,
    VisionModelDescriptor,
)
from lora_assembly.models.paged_attention import PagedAttentionConfig
from lora_assembly.runtime import Model

__version__ = "0.1.0"

__all__ = [
    "AdapterError",
    "AssemblyError",
    "BuilderConsumedError",
    "Device",
    "DeviceSelectionError",
    "LoaderConfigError",
    "LoraModelBuilder",
    "MissingCacheConfigError",
    "Model",
    "ModelDType",
    "ModelLoadError",
    "ModelType",
    "PagedAttentionConfig",
    "SlotCountConversionError",
    "TextModelDescriptor",
    "TokenSource",
    "VisionModelDescriptor",
]
