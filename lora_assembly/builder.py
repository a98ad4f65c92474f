"""Adapter-aware model builder.

Combines a base model descriptor with an ordered list of LoRA adapters and
assembles a ready-to-serve ``Model``: project the load config, build the
loader, load the pipeline, pick the scheduler and wire up the runner.

Example::

    builder = LoraModelBuilder.from_text_model_builder(
        TextModelDescriptor(model_id="mlx-community/Qwen2.5-0.5B-Instruct-4bit"),
        ["./adapters/customer-support"],
    )
    model = await builder.build()
"""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from lora_assembly.errors import BuilderConsumedError
from lora_assembly.loaders.base import Loader, SharedPipeline
from lora_assembly.loaders.builders import NormalLoaderBuilder, VisionLoaderBuilder
from lora_assembly.logging_config import initialize_logging
from lora_assembly.models.descriptors import (
    ModelDescriptor,
    TextModelDescriptor,
    VisionModelDescriptor,
)
from lora_assembly.models.device_map import AutoDeviceMapParams, AutoMap, DeviceMapSetting
from lora_assembly.models.load_config import project_text_config, project_vision_config
from lora_assembly.models.types import ModelType
from lora_assembly.runtime.model import Model
from lora_assembly.runtime.runner import RunnerBuilder
from lora_assembly.runtime.scheduler import (
    MissingCacheConfigPolicy,
    SchedulerConfig,
    select_scheduler,
)
from lora_assembly.utils.device import best_device

_DESCRIPTOR_TYPES: dict[ModelType, type] = {
    ModelType.TEXT: TextModelDescriptor,
    ModelType.VISION: VisionModelDescriptor,
}


class LoraModelBuilder:
    """Builds a model from a base descriptor plus LoRA adapters.

    A builder is single-use: ``build`` consumes it, whether or not the
    build succeeds. Construction raises TypeError when the descriptor does
    not match the modality or the adapters are given as a single string.
    """

    def __init__(
        self,
        model_type: ModelType,
        descriptor: ModelDescriptor,
        adapter_ids: Iterable[str],
    ) -> None:
        expected = _DESCRIPTOR_TYPES[model_type]
        if not isinstance(descriptor, expected):
            raise TypeError(
                f"A {model_type.value} build needs a {expected.__name__}, "
                f"got {type(descriptor).__name__}"
            )
        if isinstance(adapter_ids, str):
            raise TypeError(
                "adapter_ids must be an iterable of adapter ids, not a single string"
            )

        self.model_type = model_type
        self.descriptor = descriptor
        self.adapter_ids = [str(adapter_id) for adapter_id in adapter_ids]
        self._consumed = False

    @classmethod
    def from_text_model_builder(
        cls, descriptor: TextModelDescriptor, adapter_ids: Iterable[str]
    ) -> LoraModelBuilder:
        """Build on a text model descriptor. Adapters are applied in order."""
        return cls(ModelType.TEXT, descriptor, adapter_ids)

    @classmethod
    def from_vision_model_builder(
        cls, descriptor: VisionModelDescriptor, adapter_ids: Iterable[str]
    ) -> LoraModelBuilder:
        """Build on a vision model descriptor. Adapters are applied in order."""
        return cls(ModelType.VISION, descriptor, adapter_ids)

    from_text_descriptor = from_text_model_builder
    from_vision_descriptor = from_vision_model_builder

    @property
    def consumed(self) -> bool:
        return self._consumed

    async def build(self) -> Model:
        """Load the pipeline and assemble the model.

        Raises:
            BuilderConsumedError: If the builder was already built
            LoaderConfigError: If the text loader rejects its configuration
            DeviceSelectionError: If device detection fails
            ModelLoadError: If weights, tokenizer or adapters fail to load
            SlotCountConversionError: If max_num_seqs is not a valid slot count
            MissingCacheConfigError: If a text pipeline has no cache config
                although paged attention was requested
        """
        if self._consumed:
            raise BuilderConsumedError("LoraModelBuilder.build() can only be called once")
        self._consumed = True

        if self.model_type == ModelType.TEXT:
            return await self._build_text(self.descriptor)
        return await self._build_vision(self.descriptor)

    async def _build_text(self, desc: TextModelDescriptor) -> Model:
        config = project_text_config(desc)
        if desc.with_logging:
            initialize_logging()

        loader = (
            NormalLoaderBuilder(
                config,
                desc.chat_template,
                desc.tokenizer_json,
                desc.model_id,
                desc.no_kv_cache,
                desc.jinja_explicit,
            )
            .with_lora(self.adapter_ids)
            .build(desc.loader_type)
        )

        pipeline = await self._load(loader, desc, AutoDeviceMapParams.default_text())
        scheduler = await select_scheduler(
            pipeline,
            desc.paged_attn_cfg is not None,
            desc.max_num_seqs,
            MissingCacheConfigPolicy.FAIL,
        )

        runner = self._runner_builder(pipeline, scheduler, desc).with_no_kv_cache(desc.no_kv_cache)
        return await self._finish(runner, desc)

    async def _build_vision(self, desc: VisionModelDescriptor) -> Model:
        config = project_vision_config(desc)
        if desc.with_logging:
            initialize_logging()

        loader = (
            VisionLoaderBuilder(
                config,
                desc.chat_template,
                desc.tokenizer_json,
                desc.model_id,
                desc.jinja_explicit,
            )
            .with_lora(self.adapter_ids)
            .build(desc.loader_type)
        )

        pipeline = await self._load(loader, desc, AutoDeviceMapParams.default_vision())
        scheduler = await select_scheduler(
            pipeline,
            desc.paged_attn_cfg is not None,
            desc.max_num_seqs,
            MissingCacheConfigPolicy.FALLBACK,
        )

        runner = self._runner_builder(pipeline, scheduler, desc)
        for name, bound in desc.tool_callbacks_with_tools.items():
            runner = runner.with_tool_callback_and_tool(name, bound.callback, bound.tool)
        # Vision models always keep the KV cache
        runner = runner.with_no_kv_cache(False)
        return await self._finish(runner, desc)

    async def _load(
        self,
        loader: Loader,
        desc: ModelDescriptor,
        default_params: AutoDeviceMapParams,
    ) -> SharedPipeline:
        device = desc.device if desc.device is not None else best_device(desc.force_cpu)
        mapper: DeviceMapSetting = (
            desc.device_mapping
            if desc.device_mapping is not None
            else AutoMap(params=default_params)
        )
        logger.debug(
            f"Assembling {self.model_type.value} model {desc.model_id} "
            f"with {len(self.adapter_ids)} adapter(s) on {device}"
        )
        return await loader.load_model_from_hf(
            desc.hf_revision,
            desc.token_source,
            desc.dtype,
            device,
            not desc.with_logging,
            mapper,
            desc.isq,
            desc.paged_attn_cfg,
        )

    def _runner_builder(
        self,
        pipeline: SharedPipeline,
        scheduler: SchedulerConfig,
        desc: ModelDescriptor,
    ) -> RunnerBuilder:
        runner = RunnerBuilder(
            pipeline, scheduler, desc.throughput_logging, desc.search_bert_model
        )
        if desc.search_callback is not None:
            runner = runner.with_search_callback(desc.search_callback)
        for name, callback in desc.tool_callbacks.items():
            runner = runner.with_tool_callback(name, callback)
        return runner

    async def _finish(self, runner: RunnerBuilder, desc: ModelDescriptor) -> Model:
        runner = runner.with_no_prefix_cache(desc.prefix_cache_n is None)
        if desc.prefix_cache_n is not None:
            runner = runner.with_prefix_cache_n(desc.prefix_cache_n)
        return Model(await runner.build())
