"""Loader builders: attach adapters and pick the loader for a modality."""

from __future__ import annotations

from collections.abc import Iterable

from lora_assembly.errors import LoaderConfigError
from lora_assembly.loaders.base import Loader
from lora_assembly.loaders.mlx import MlxTextLoader, MlxVisionLoader
from lora_assembly.models.load_config import NormalSpecificConfig, VisionSpecificConfig


class NormalLoaderBuilder:
    """Builds a loader for a text model."""

    def __init__(
        self,
        config: NormalSpecificConfig,
        chat_template: str | None,
        tokenizer_json: str | None,
        model_id: str,
        no_kv_cache: bool,
        jinja_explicit: str | None,
    ) -> None:
        self.config = config
        self.chat_template = chat_template
        self.tokenizer_json = tokenizer_json
        self.model_id = model_id
        self.no_kv_cache = no_kv_cache
        self.jinja_explicit = jinja_explicit
        self.adapter_ids: list[str] = []

    def with_lora(self, adapter_ids: Iterable[str]) -> NormalLoaderBuilder:
        """Attach LoRA adapters; an empty list leaves the loader adapter-free."""
        self.adapter_ids = list(adapter_ids)
        return self

    def build(self, loader_type: str | None) -> Loader:
        """Create the loader.

        Args:
            loader_type: Model architecture, or None to detect it from the checkpoint

        Raises:
            LoaderConfigError: If the configuration cannot be loaded
        """
        if self.config.write_uqff is not None and self.config.from_uqff:
            raise LoaderConfigError("Cannot both write UQFF and load from UQFF files")
        if loader_type is not None and not loader_type.strip():
            raise LoaderConfigError("loader_type must be a non-empty architecture name")

        return MlxTextLoader(
            model_id=self.model_id,
            adapter_ids=self.adapter_ids,
            config=self.config,
            chat_template=self.chat_template,
            tokenizer_json=self.tokenizer_json,
            no_kv_cache=self.no_kv_cache,
            jinja_explicit=self.jinja_explicit,
            loader_type=loader_type,
        )


class VisionLoaderBuilder:
    """Builds a loader for a vision-language model."""

    def __init__(
        self,
        config: VisionSpecificConfig,
        chat_template: str | None,
        tokenizer_json: str | None,
        model_id: str,
        jinja_explicit: str | None,
    ) -> None:
        self.config = config
        self.chat_template = chat_template
        self.tokenizer_json = tokenizer_json
        self.model_id = model_id
        self.jinja_explicit = jinja_explicit
        self.adapter_ids: list[str] = []

    def with_lora(self, adapter_ids: Iterable[str]) -> VisionLoaderBuilder:
        """Attach LoRA adapters; an empty list leaves the loader adapter-free."""
        self.adapter_ids = list(adapter_ids)
        return self

    def build(self, loader_type: str | None) -> Loader:
        return MlxVisionLoader(
            model_id=self.model_id,
            adapter_ids=self.adapter_ids,
            config=self.config,
            chat_template=self.chat_template,
            tokenizer_json=self.tokenizer_json,
            jinja_explicit=self.jinja_explicit,
            loader_type=loader_type,
        )
