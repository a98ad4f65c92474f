"""End-to-end tests for LoraModelBuilder with the loaders patched out."""

from pathlib import Path
from unittest.mock import patch

import pytest

from lora_assembly.builder import LoraModelBuilder
from lora_assembly.errors import (
    BuilderConsumedError,
    LoaderConfigError,
    MissingCacheConfigError,
    SlotCountConversionError,
)
from lora_assembly.loaders.mlx import MlxTextLoader, MlxVisionLoader
from lora_assembly.models.descriptors import TextModelDescriptor, VisionModelDescriptor
from lora_assembly.models.device_map import AutoDeviceMapParams, AutoMap
from lora_assembly.models.paged_attention import PagedAttentionConfig
from lora_assembly.models.tools import Function, Tool
from lora_assembly.models.types import Device, ModelType
from lora_assembly.runtime.model import Model
from lora_assembly.runtime.scheduler import DefaultScheduler, FixedSlots, PagedAttentionMeta

GPU = Device(kind="gpu", index=0)


def lookup(call):
    return "result"


class LoadRecorder:
    """Stands in for load_model_from_hf and records each call."""

    def __init__(self, pipeline):
        self.pipeline = pipeline
        self.calls = []

    def install(self, loader_cls):
        recorder = self

        async def load_model_from_hf(
            loader, revision, token_source, dtype, device, silent, mapper, isq, paged_attn_cfg
        ):
            recorder.calls.append(
                {
                    "loader": loader,
                    "revision": revision,
                    "device": device,
                    "silent": silent,
                    "mapper": mapper,
                    "paged_attn_cfg": paged_attn_cfg,
                }
            )
            return recorder.pipeline

        return patch.object(loader_cls, "load_model_from_hf", load_model_from_hf)


@pytest.fixture
def mock_device():
    with patch("lora_assembly.builder.best_device", return_value=GPU) as mock:
        yield mock


@pytest.fixture
def mock_logging():
    with patch("lora_assembly.builder.initialize_logging") as mock:
        yield mock


class TestTextBuild:
    """Tests for building text models."""

    @pytest.mark.asyncio
    async def test_fixed_slots_without_paged_attention(self, text_pipeline, mock_device):
        recorder = LoadRecorder(text_pipeline)
        desc = TextModelDescriptor(model_id="org/base").with_max_num_seqs(16)

        with recorder.install(MlxTextLoader):
            model = await LoraModelBuilder.from_text_model_builder(desc, ["org/a"]).build()

        assert isinstance(model, Model)
        assert model.scheduler_config == DefaultScheduler(method=FixedSlots(count=16))
        call = recorder.calls[0]
        assert call["loader"].adapter_ids == ["org/a"]
        assert call["device"] == GPU
        assert call["silent"] is True
        assert call["mapper"] == AutoMap(params=AutoDeviceMapParams.default_text())
        mock_device.assert_called_once_with(False)

    @pytest.mark.asyncio
    async def test_paged_attention(self, paged_text_pipeline, cache_config, mock_device):
        recorder = LoadRecorder(paged_text_pipeline)
        paged = PagedAttentionConfig()
        desc = TextModelDescriptor(model_id="org/base").with_paged_attn(paged).with_max_num_seqs(4)

        with recorder.install(MlxTextLoader):
            model = await LoraModelBuilder.from_text_model_builder(desc, []).build()

        assert model.scheduler_config == PagedAttentionMeta(max_num_seqs=4, config=cache_config)
        assert recorder.calls[0]["paged_attn_cfg"] == paged
        assert model.runner.block_manager.num_blocks == cache_config.num_gpu_blocks

    @pytest.mark.asyncio
    async def test_missing_cache_config_fails(self, text_pipeline, mock_device):
        recorder = LoadRecorder(text_pipeline)
        desc = TextModelDescriptor(model_id="org/base").with_paged_attn(PagedAttentionConfig())

        with recorder.install(MlxTextLoader):
            with pytest.raises(MissingCacheConfigError):
                await LoraModelBuilder.from_text_model_builder(desc, []).build()

    @pytest.mark.asyncio
    async def test_no_kv_cache_forwarded(self, text_pipeline, mock_device):
        recorder = LoadRecorder(text_pipeline)
        desc = TextModelDescriptor(model_id="org/base").with_no_kv_cache()

        with recorder.install(MlxTextLoader):
            model = await LoraModelBuilder.from_text_model_builder(desc, []).build()

        assert model.runner.no_kv_cache is True
        assert recorder.calls[0]["loader"].no_kv_cache is True

    @pytest.mark.asyncio
    async def test_invalid_slot_count(self, text_pipeline, mock_device):
        recorder = LoadRecorder(text_pipeline)
        desc = TextModelDescriptor(model_id="org/base").with_max_num_seqs(0)

        with recorder.install(MlxTextLoader):
            with pytest.raises(SlotCountConversionError):
                await LoraModelBuilder.from_text_model_builder(desc, []).build()

    @pytest.mark.asyncio
    async def test_loader_config_error_stops_before_loading(self, text_pipeline, mock_device):
        recorder = LoadRecorder(text_pipeline)
        desc = (
            TextModelDescriptor(model_id="org/base")
            .with_write_uqff(Path("out.uqff"))
            .with_from_uqff([Path("in.uqff")])
        )

        with recorder.install(MlxTextLoader):
            with pytest.raises(LoaderConfigError):
                await LoraModelBuilder.from_text_model_builder(desc, []).build()

        assert recorder.calls == []
        mock_device.assert_not_called()

    @pytest.mark.asyncio
    async def test_explicit_device_skips_detection(self, text_pipeline, mock_device):
        recorder = LoadRecorder(text_pipeline)
        desc = TextModelDescriptor(model_id="org/base").with_device(Device.cpu())

        with recorder.install(MlxTextLoader):
            await LoraModelBuilder.from_text_model_builder(desc, []).build()

        assert recorder.calls[0]["device"] == Device.cpu()
        mock_device.assert_not_called()

    @pytest.mark.asyncio
    async def test_prefix_cache_toggle(self, text_pipeline, mock_device):
        recorder = LoadRecorder(text_pipeline)
        disabled = TextModelDescriptor(model_id="org/base").with_prefix_cache_n(None)
        enabled = TextModelDescriptor(model_id="org/base").with_prefix_cache_n(4)

        with recorder.install(MlxTextLoader):
            without_cache = await LoraModelBuilder.from_text_model_builder(disabled, []).build()
            with_cache = await LoraModelBuilder.from_text_model_builder(enabled, []).build()

        assert without_cache.prefix_cache_enabled is False
        assert without_cache.runner.no_prefix_cache is True
        assert with_cache.runner.prefix_cache.max_entries == 4

    @pytest.mark.asyncio
    async def test_callbacks_registered(self, text_pipeline, mock_device):
        recorder = LoadRecorder(text_pipeline)

        def search(params):
            return []

        desc = (
            TextModelDescriptor(model_id="org/base")
            .with_search()
            .with_search_callback(search)
            .with_tool_callback("lookup", lookup)
        )

        with recorder.install(MlxTextLoader):
            model = await LoraModelBuilder.from_text_model_builder(desc, []).build()

        assert model.get_tool_callback("lookup") is lookup
        assert model.runner.search_callback is search
        assert model.runner.search_embedding_model == desc.search_bert_model

    @pytest.mark.asyncio
    async def test_named_tools_resolvable(self, text_pipeline, mock_device):
        recorder = LoadRecorder(text_pipeline)

        def calc(call):
            return "42"

        desc = (
            TextModelDescriptor(model_id="org/base")
            .with_tool_callback("search", lookup)
            .with_tool_callback("calc", calc)
        )

        with recorder.install(MlxTextLoader):
            model = await LoraModelBuilder.from_text_model_builder(desc, []).build()

        assert model.get_tool_callback("search") is lookup
        assert model.get_tool_callback("calc") is calc
        assert set(model.tool_names()) == {"search", "calc"}


class TestVisionBuild:
    """Tests for building vision models."""

    @pytest.mark.asyncio
    async def test_missing_cache_config_falls_back(self, make_pipeline, mock_device):
        recorder = LoadRecorder(make_pipeline(model_type=ModelType.VISION))
        desc = (
            VisionModelDescriptor(model_id="org/vlm")
            .with_paged_attn(PagedAttentionConfig())
            .with_max_num_seqs(8)
        )

        with recorder.install(MlxVisionLoader):
            model = await LoraModelBuilder.from_vision_model_builder(desc, ["org/a"]).build()

        assert model.scheduler_config == DefaultScheduler(method=FixedSlots(count=8))
        assert recorder.calls[0]["mapper"] == AutoMap(params=AutoDeviceMapParams.default_vision())

    @pytest.mark.asyncio
    async def test_paged_attention(self, make_pipeline, cache_config, mock_device):
        recorder = LoadRecorder(make_pipeline(cache_config, ModelType.VISION))
        desc = (
            VisionModelDescriptor(model_id="org/vlm")
            .with_paged_attn(PagedAttentionConfig())
            .with_max_num_seqs(8)
        )

        with recorder.install(MlxVisionLoader):
            model = await LoraModelBuilder.from_vision_model_builder(desc, []).build()

        assert model.scheduler_config == PagedAttentionMeta(max_num_seqs=8, config=cache_config)

    @pytest.mark.asyncio
    async def test_kv_cache_always_enabled(self, make_pipeline, mock_device):
        recorder = LoadRecorder(make_pipeline(model_type=ModelType.VISION))

        with recorder.install(MlxVisionLoader):
            model = await LoraModelBuilder.from_vision_model_builder(
                VisionModelDescriptor(model_id="org/vlm"), []
            ).build()

        assert model.runner.no_kv_cache is False

    @pytest.mark.asyncio
    async def test_tool_callbacks_with_tools(self, make_pipeline, mock_device):
        recorder = LoadRecorder(make_pipeline(model_type=ModelType.VISION))
        tool = Tool(function=Function(name="describe"))
        desc = (
            VisionModelDescriptor(model_id="org/vlm")
            .with_tool_callback("lookup", lookup)
            .with_tool_callback_and_tool("describe", lookup, tool)
        )

        with recorder.install(MlxVisionLoader):
            model = await LoraModelBuilder.from_vision_descriptor(desc, []).build()

        assert model.tool_names() == ["describe", "lookup"]
        assert model.runner.tool_callbacks_with_tools["describe"].tool == tool


class TestBuilderLifecycle:
    """Tests for single-use builds, logging and adapter handling."""

    @pytest.mark.asyncio
    async def test_second_build_rejected(self, text_pipeline, mock_device):
        recorder = LoadRecorder(text_pipeline)
        builder = LoraModelBuilder.from_text_descriptor(
            TextModelDescriptor(model_id="org/base"), []
        )

        with recorder.install(MlxTextLoader):
            await builder.build()
            with pytest.raises(BuilderConsumedError):
                await builder.build()

        assert len(recorder.calls) == 1

    @pytest.mark.asyncio
    async def test_failed_build_consumes_builder(self, text_pipeline, mock_device):
        recorder = LoadRecorder(text_pipeline)
        builder = LoraModelBuilder.from_text_model_builder(
            TextModelDescriptor(model_id="org/base").with_max_num_seqs(0), []
        )

        with recorder.install(MlxTextLoader):
            with pytest.raises(SlotCountConversionError):
                await builder.build()
            with pytest.raises(BuilderConsumedError):
                await builder.build()

        assert builder.consumed is True

    @pytest.mark.asyncio
    async def test_logging_initialized_before_loader(self, text_pipeline, mock_logging):
        """Logging is set up even when the loader then rejects its config."""
        desc = (
            TextModelDescriptor(model_id="org/base")
            .enable_logging()
            .with_write_uqff(Path("out.uqff"))
            .with_from_uqff([Path("in.uqff")])
        )

        with pytest.raises(LoaderConfigError):
            await LoraModelBuilder.from_text_model_builder(desc, []).build()

        mock_logging.assert_called_once()

    @pytest.mark.asyncio
    async def test_logging_enables_progress(self, text_pipeline, mock_device, mock_logging):
        recorder = LoadRecorder(text_pipeline)
        desc = TextModelDescriptor(model_id="org/base").enable_logging()

        with recorder.install(MlxTextLoader):
            await LoraModelBuilder.from_text_model_builder(desc, []).build()

        assert recorder.calls[0]["silent"] is False

    @pytest.mark.asyncio
    async def test_logging_not_initialized_by_default(
        self, text_pipeline, mock_device, mock_logging
    ):
        recorder = LoadRecorder(text_pipeline)

        with recorder.install(MlxTextLoader):
            await LoraModelBuilder.from_text_model_builder(
                TextModelDescriptor(model_id="org/base"), []
            ).build()

        mock_logging.assert_not_called()

    def test_adapter_ids_stringified_in_order(self, tmp_path):
        builder = LoraModelBuilder.from_text_model_builder(
            TextModelDescriptor(model_id="org/base"), [tmp_path / "b", "org/a"]
        )
        assert builder.adapter_ids == [str(tmp_path / "b"), "org/a"]
        assert builder.model_type == ModelType.TEXT
        assert builder.consumed is False

    def test_text_builder_rejects_vision_descriptor(self):
        with pytest.raises(TypeError, match="TextModelDescriptor"):
            LoraModelBuilder.from_text_model_builder(
                VisionModelDescriptor(model_id="org/vlm"), []
            )

    def test_vision_builder_rejects_text_descriptor(self):
        with pytest.raises(TypeError, match="VisionModelDescriptor"):
            LoraModelBuilder.from_vision_model_builder(
                TextModelDescriptor(model_id="org/base"), []
            )

    def test_single_string_adapter_rejected(self):
        """A bare adapter id would otherwise be split into characters."""
        with pytest.raises(TypeError, match="single string"):
            LoraModelBuilder.from_text_model_builder(
                TextModelDescriptor(model_id="org/base"), "org/a"
            )
