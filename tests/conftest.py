"""Pytest fixtures for lora_assembly tests."""

import pytest

from lora_assembly.config import get_settings
from lora_assembly.loaders.base import Pipeline, PipelineMetadata, SharedPipeline
from lora_assembly.models.paged_attention import CacheConfig
from lora_assembly.models.types import Device, ModelDType, ModelType


class FakePipeline(Pipeline):
    """Pipeline stand-in that only carries metadata."""

    def __init__(self, metadata: PipelineMetadata) -> None:
        self.metadata = metadata
        self.metadata_reads = 0

    def get_metadata(self) -> PipelineMetadata:
        self.metadata_reads += 1
        return self.metadata


def make_metadata(
    cache_config: CacheConfig | None = None,
    model_type: ModelType = ModelType.TEXT,
    model_id: str = "test/base-model",
) -> PipelineMetadata:
    return PipelineMetadata(
        model_id=model_id,
        model_type=model_type,
        device=Device(kind="gpu", index=0),
        dtype=ModelDType.AUTO,
        cache_config=cache_config,
    )


def make_shared_pipeline(
    cache_config: CacheConfig | None = None,
    model_type: ModelType = ModelType.TEXT,
) -> SharedPipeline:
    return SharedPipeline(FakePipeline(make_metadata(cache_config, model_type)))


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached; make each test see its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def cache_config():
    """A resolved paged KV cache config."""
    return CacheConfig(block_size=32, num_gpu_blocks=64)


@pytest.fixture
def text_pipeline():
    """A text pipeline without a paged KV cache."""
    return make_shared_pipeline()


@pytest.fixture
def paged_text_pipeline(cache_config):
    """A text pipeline reporting a paged KV cache."""
    return make_shared_pipeline(cache_config)


@pytest.fixture
def make_pipeline():
    """Factory for shared fake pipelines."""
    return make_shared_pipeline
