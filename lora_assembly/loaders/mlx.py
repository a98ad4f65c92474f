"""MLX-backed loaders for text (mlx-lm) and vision (mlx-vlm) models.

Weights are fetched with huggingface_hub and loaded in a worker thread so the
event loop stays responsive. The first adapter is applied by the library's
``load`` call; any further adapters are layered on afterwards.
"""

from __future__ import annotations

import asyncio
import time
from abc import abstractmethod
from pathlib import Path
from typing import Any

from loguru import logger

from lora_assembly.errors import ModelLoadError
from lora_assembly.loaders.base import Loader, Pipeline, PipelineMetadata, SharedPipeline
from lora_assembly.loaders.hub import read_chat_template, resolve_adapter, resolve_model_path
from lora_assembly.models.device_map import DeviceMapSetting, MapDevices
from lora_assembly.models.load_config import LoadConfig, NormalSpecificConfig, VisionSpecificConfig
from lora_assembly.models.paged_attention import PagedAttentionConfig, resolve_cache_config
from lora_assembly.models.types import (
    AdapterInfo,
    Device,
    IsqOrganization,
    IsqType,
    ModelDType,
    ModelType,
    TokenSource,
)
from lora_assembly.utils.memory import _get_mx, get_active_memory_gb, get_device_memory_gb

# Load config fields the MLX backend has no equivalent for
_UNSUPPORTED_FIELDS = (
    "topology",
    "write_uqff",
    "from_uqff",
    "imatrix",
    "calibration_file",
    "matformer_config_path",
    "matformer_slice_name",
)

ISQ_GROUP_SIZE = 64


class MlxPipeline(Pipeline):
    """A loaded MLX model with its tokenizer or processor."""

    def __init__(self, model: Any, processor: Any, metadata: PipelineMetadata) -> None:
        self.model = model
        self.processor = processor
        self._metadata = metadata

    def get_metadata(self) -> PipelineMetadata:
        return self._metadata


class _MlxLoader(Loader):
    """Shared loading flow; subclasses provide the library-specific calls."""

    def __init__(
        self,
        model_id: str,
        adapter_ids: list[str],
        config: LoadConfig,
        chat_template: str | None,
        tokenizer_json: str | None,
        jinja_explicit: str | None,
        loader_type: str | None,
    ) -> None:
        super().__init__(model_id, adapter_ids)
        self.config = config
        self.chat_template = chat_template
        self.tokenizer_json = tokenizer_json
        self.jinja_explicit = jinja_explicit
        self.loader_type = loader_type

    @abstractmethod
    def _load_weights(self, model_path: Path, adapters: list[AdapterInfo]) -> tuple[Any, Any]:
        """Load (model, tokenizer or processor) with the adapters applied in order."""

    @abstractmethod
    def _model_args(self, model: Any) -> Any:
        """Return the config exposing the model's attention geometry."""

    def _metadata_extra(self) -> dict[str, Any]:
        return {}

    @property
    def no_kv_cache(self) -> bool:
        return False

    def _ignored_settings(self, mapper: DeviceMapSetting) -> list[str]:
        ignored = [name for name in _UNSUPPORTED_FIELDS if getattr(self.config, name) is not None]
        if isinstance(mapper, MapDevices):
            ignored.append("device_mapping")
        return ignored

    def _apply_dtype(self, model: Any, dtype: ModelDType) -> None:
        if dtype == ModelDType.AUTO:
            return
        mx = _get_mx()
        target = {
            ModelDType.BF16: mx.bfloat16,
            ModelDType.F16: mx.float16,
            ModelDType.F32: mx.float32,
        }[dtype]
        model.set_dtype(target)

    def _apply_isq(self, model: Any, isq: IsqType) -> None:
        import mlx.nn as nn

        nn.quantize(model, group_size=ISQ_GROUP_SIZE, bits=isq.bits)

    def _apply_chat_template(self, processor: Any) -> str | None:
        source = self.jinja_explicit or self.chat_template
        if source is None:
            return getattr(processor, "chat_template", None)
        template = read_chat_template(source)
        processor.chat_template = template
        return template

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
        log = logger.debug if silent else logger.info

        ignored = self._ignored_settings(mapper)
        if ignored:
            logger.warning(
                f"Ignoring settings unsupported by the MLX backend: {', '.join(ignored)}"
            )

        token = token_source.resolve()
        cache_dir = self.config.hf_cache_path
        log(
            f"Loading {self.model_type.value} model: {self.model_id} "
            f"(adapters={len(self.adapter_ids)}, device={device})"
        )
        start_time = time.time()

        model_path = await asyncio.to_thread(
            resolve_model_path, self.model_id, revision, token, cache_dir, silent
        )
        adapters: list[AdapterInfo] = []
        for adapter_id in self.adapter_ids:
            adapters.append(
                await asyncio.to_thread(resolve_adapter, adapter_id, token, cache_dir, silent)
            )

        try:
            model, processor = await asyncio.to_thread(self._load_weights, model_path, adapters)
            self._apply_dtype(model, dtype)
            if isq is not None:
                self._apply_isq(model, isq)
            chat_template = self._apply_chat_template(processor)
        except ModelLoadError:
            raise
        except Exception as e:
            logger.exception(f"Failed to load model {self.model_id}: {e}")
            raise ModelLoadError(f"Failed to load model {self.model_id}: {e}") from e

        cache_config = resolve_cache_config(
            paged_attn_cfg,
            device,
            self._model_args(model),
            dtype,
            get_device_memory_gb(),
            get_active_memory_gb(),
        )

        metadata = PipelineMetadata(
            model_id=self.model_id,
            model_type=self.model_type,
            device=device,
            dtype=dtype,
            adapters=adapters,
            cache_config=cache_config,
            no_kv_cache=self.no_kv_cache,
            chat_template=chat_template,
            loader_type=self.loader_type,
            extra=self._metadata_extra(),
        )

        elapsed = time.time() - start_time
        log(
            f"Model loaded: {self.model_id} (type={self.model_type.value}, "
            f"adapters={metadata.adapter_ids}, paged={cache_config is not None}, {elapsed:.1f}s)"
        )
        return SharedPipeline(MlxPipeline(model, processor, metadata))


class MlxTextLoader(_MlxLoader):
    """Loads text models with mlx-lm."""

    config: NormalSpecificConfig

    def __init__(
        self,
        model_id: str,
        adapter_ids: list[str],
        config: NormalSpecificConfig,
        chat_template: str | None,
        tokenizer_json: str | None,
        no_kv_cache: bool,
        jinja_explicit: str | None,
        loader_type: str | None,
    ) -> None:
        super().__init__(
            model_id,
            adapter_ids,
            config,
            chat_template,
            tokenizer_json,
            jinja_explicit,
            loader_type,
        )
        self._no_kv_cache = no_kv_cache

    @property
    def model_type(self) -> ModelType:
        return ModelType.TEXT

    @property
    def no_kv_cache(self) -> bool:
        return self._no_kv_cache

    def _ignored_settings(self, mapper: DeviceMapSetting) -> list[str]:
        ignored = super()._ignored_settings(mapper)
        if self.config.organization != IsqOrganization.DEFAULT:
            ignored.append("organization")
        return ignored

    def _load_weights(self, model_path: Path, adapters: list[AdapterInfo]) -> tuple[Any, Any]:
        from mlx_lm import load

        tokenizer_config = {"tokenizer_file": self.tokenizer_json} if self.tokenizer_json else {}
        first = adapters[0].adapter_path if adapters else None
        model, tokenizer = load(
            str(model_path), tokenizer_config=tokenizer_config, adapter_path=first
        )[:2]

        if len(adapters) > 1:
            from mlx_lm.tuner.utils import load_adapters

            for adapter in adapters[1:]:
                model = load_adapters(model, adapter.adapter_path)
        return model, tokenizer

    def _model_args(self, model: Any) -> Any:
        return getattr(model, "args", None)


class MlxVisionLoader(_MlxLoader):
    """Loads vision-language models with mlx-vlm."""

    config: VisionSpecificConfig

    @property
    def model_type(self) -> ModelType:
        return ModelType.VISION

    def _ignored_settings(self, mapper: DeviceMapSetting) -> list[str]:
        ignored = super()._ignored_settings(mapper)
        if self.tokenizer_json is not None:
            ignored.append("tokenizer_json")
        return ignored

    def _load_weights(self, model_path: Path, adapters: list[AdapterInfo]) -> tuple[Any, Any]:
        from mlx_vlm import load  # type: ignore[import-untyped]

        kwargs: dict[str, Any] = {}
        if adapters:
            kwargs["adapter_path"] = adapters[0].adapter_path
        model, processor = load(str(model_path), **kwargs)[:2]

        if len(adapters) > 1:
            from mlx_vlm.trainer.utils import apply_lora_layers  # type: ignore[import-untyped]

            for adapter in adapters[1:]:
                model = apply_lora_layers(model, adapter.adapter_path)
        return model, processor

    def _model_args(self, model: Any) -> Any:
        return getattr(getattr(model, "config", None), "text_config", None)

    def _metadata_extra(self) -> dict[str, Any]:
        return {"max_edge": self.config.max_edge}
