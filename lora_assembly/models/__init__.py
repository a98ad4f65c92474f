"""Descriptors, load configs and shared model types."""

from lora_assembly.models.descriptors import (
    ModelDescriptor,
    TextModelDescriptor,
    VisionModelDescriptor,
)
from lora_assembly.models.types import AdapterInfo, Device, ModelDType, ModelType, TokenSource

__all__ = [
    "AdapterInfo",
    "Device",
    "ModelDType",
    "ModelDescriptor",
    "ModelType",
    "TextModelDescriptor",
    "TokenSource",
    "VisionModelDescriptor",
]
