"""Core model types shared by descriptors, loaders and the runtime."""

import os
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict


class ModelType(StrEnum):
    """Modality of the base model.

    The modality fixes which load config, loader and scheduler fallback
    rule apply to a build:
    - TEXT: text-only causal LMs (loaded with mlx-lm)
    - VISION: vision-language models (loaded with mlx-vlm)
    """

    TEXT = "text"
    VISION = "vision"


class ModelDType(StrEnum):
    """Numeric precision requested for the loaded weights."""

    AUTO = "auto"
    BF16 = "bf16"
    F16 = "f16"
    F32 = "f32"

    @property
    def num_bytes(self) -> int:
        """Bytes per element; AUTO assumes half precision."""
        return 4 if self is ModelDType.F32 else 2


class IsqType(StrEnum):
    """In-situ affine quantization applied after loading."""

    AFQ2 = "afq2"
    AFQ3 = "afq3"
    AFQ4 = "afq4"
    AFQ6 = "afq6"
    AFQ8 = "afq8"

    @property
    def bits(self) -> int:
        return int(self.value[3:])


class IsqOrganization(StrEnum):
    """Which layers in-situ quantization targets (text models only)."""

    DEFAULT = "default"
    MOQE = "moqe"  # experts only


class TokenSource(BaseModel):
    """Where the HuggingFace access token comes from.

    Parsed from the usual string forms::

        TokenSource.from_string("cache")          # token saved by `huggingface-cli login`
        TokenSource.from_string("env:HF_TOKEN")   # environment variable
        TokenSource.from_string("path:/run/tok")  # file containing the token
        TokenSource.from_string("literal:hf_x")   # the token itself
        TokenSource.from_string("none")           # anonymous access
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["cache", "env_var", "path", "literal", "none"] = "cache"
    value: str | None = None

    @classmethod
    def from_string(cls, raw: str) -> "TokenSource":
        raw = raw.strip()
        if raw in ("cache", "none"):
            return cls(kind=raw)
        prefix, sep, value = raw.partition(":")
        kinds = {"env": "env_var", "path": "path", "literal": "literal"}
        if not sep or prefix not in kinds or not value:
            raise ValueError(
                f"Invalid token source {raw!r}; expected one of "
                "'cache', 'none', 'env:<VAR>', 'path:<file>', 'literal:<token>'"
            )
        return cls(kind=kinds[prefix], value=value)

    def resolve(self) -> str | None:
        """Return the token, or None for anonymous access."""
        if self.kind == "none":
            return None
        if self.kind == "literal":
            return self.value
        if self.kind == "env_var":
            return os.environ.get(self.value or "") or None
        if self.kind == "path":
            path = Path(self.value or "").expanduser()
            if not path.is_file():
                return None
            return path.read_text(encoding="utf-8").strip() or None

        from huggingface_hub import get_token

        return get_token()


@dataclass(frozen=True)
class Device:
    """A compute device the pipeline is bound to."""

    kind: Literal["cpu", "gpu"]
    index: int = 0

    @classmethod
    def cpu(cls) -> "Device":
        return cls(kind="cpu")

    @property
    def is_cpu(self) -> bool:
        return self.kind == "cpu"

    def __str__(self) -> str:
        return f"{self.kind}:{self.index}"


@dataclass
class AdapterInfo:
    """Information about a resolved LoRA adapter."""

    adapter_id: str
    adapter_path: str
    base_model: str | None = None  # From adapter_config.json if available
    description: str | None = None
