"""Declarative descriptions of the base model to assemble.

Descriptors are immutable. Every ``with_*`` helper returns a modified copy,
so a descriptor can be built up fluently and shared safely::

    desc = (
        TextModelDescriptor(model_id="mlx-community/Llama-3.2-3B-Instruct-4bit")
        .enable_logging()
        .with_paged_attn(PagedAttentionConfig())
        .with_max_num_seqs(16)
    )
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lora_assembly.config import get_settings
from lora_assembly.models.device_map import DeviceMapSetting
from lora_assembly.models.paged_attention import PagedAttentionConfig
from lora_assembly.models.tools import SearchCallback, Tool, ToolCallback, ToolCallbackWithTool
from lora_assembly.models.types import (
    Device,
    IsqOrganization,
    IsqType,
    ModelDType,
    ModelType,
    TokenSource,
)

DEFAULT_SEARCH_EMBEDDING_MODEL = "Snowflake/snowflake-arctic-embed-l-v2.0"


class _ModelDescriptor(BaseModel):
    """Fields and helpers shared by text and vision descriptors."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, protected_namespaces=())

    model_id: str

    # Hub access
    hf_revision: str | None = None
    token_source: TokenSource = Field(default_factory=TokenSource)
    hf_cache_path: Path | None = Field(default_factory=lambda: get_settings().hf_cache_path)

    # Tokenizer and chat template
    chat_template: str | None = None
    tokenizer_json: str | None = None
    jinja_explicit: str | None = None

    # Loading
    loader_type: str | None = None
    dtype: ModelDType = ModelDType.AUTO
    force_cpu: bool = False
    device: Device | None = None
    device_mapping: DeviceMapSetting | None = None
    isq: IsqType | None = None
    paged_attn_cfg: PagedAttentionConfig | None = None
    topology: str | None = None
    write_uqff: Path | None = None
    from_uqff: tuple[Path, ...] | None = None

    # Logging
    with_logging: bool = False
    throughput_logging: bool = False

    # Callbacks
    search_bert_model: str | None = None
    search_callback: SearchCallback | None = None
    tool_callbacks: dict[str, ToolCallback] = Field(default_factory=dict)

    # Runtime
    prefix_cache_n: int | None = Field(
        default_factory=lambda: get_settings().default_prefix_cache_n
    )
    max_num_seqs: int = Field(default_factory=lambda: get_settings().default_max_num_seqs, ge=0)

    @property
    @abstractmethod
    def model_type(self) -> ModelType:
        """The modality this descriptor builds."""

    def _with(self, **update: Any) -> Any:
        return self.model_copy(update=update)

    def enable_logging(self) -> Any:
        """Initialize logging before loading and show loader progress."""
        return self._with(with_logging=True)

    def with_throughput_logging(self) -> Any:
        return self._with(throughput_logging=True)

    def with_paged_attn(self, config: PagedAttentionConfig) -> Any:
        return self._with(paged_attn_cfg=config)

    def with_max_num_seqs(self, max_num_seqs: int) -> Any:
        if isinstance(max_num_seqs, bool) or not isinstance(max_num_seqs, int) or max_num_seqs < 0:
            raise ValueError(f"max_num_seqs must be a non-negative integer, got {max_num_seqs!r}")
        return self._with(max_num_seqs=max_num_seqs)

    def with_prefix_cache_n(self, n: int | None) -> Any:
        """Set the prefix cache depth; None disables prefix caching."""
        return self._with(prefix_cache_n=n)

    def with_isq(self, isq: IsqType) -> Any:
        return self._with(isq=isq)

    def with_dtype(self, dtype: ModelDType) -> Any:
        return self._with(dtype=dtype)

    def with_force_cpu(self) -> Any:
        return self._with(force_cpu=True)

    def with_device(self, device: Device) -> Any:
        return self._with(device=device)

    def with_device_mapping(self, mapping: DeviceMapSetting) -> Any:
        return self._with(device_mapping=mapping)

    def with_hf_revision(self, revision: str) -> Any:
        return self._with(hf_revision=revision)

    def with_token_source(self, token_source: TokenSource) -> Any:
        return self._with(token_source=token_source)

    def with_hf_cache_path(self, path: Path) -> Any:
        return self._with(hf_cache_path=path)

    def with_chat_template(self, chat_template: str) -> Any:
        return self._with(chat_template=chat_template)

    def with_tokenizer_json(self, tokenizer_json: str) -> Any:
        return self._with(tokenizer_json=tokenizer_json)

    def with_jinja_explicit(self, template: str) -> Any:
        return self._with(jinja_explicit=template)

    def with_loader_type(self, loader_type: str) -> Any:
        return self._with(loader_type=loader_type)

    def with_topology(self, topology: str) -> Any:
        return self._with(topology=topology)

    def with_write_uqff(self, path: Path) -> Any:
        return self._with(write_uqff=path)

    def with_from_uqff(self, paths: list[Path]) -> Any:
        return self._with(from_uqff=tuple(paths))

    def with_search(self, embedding_model: str | None = None) -> Any:
        """Enable web search, optionally with a custom reranking embedding model."""
        return self._with(search_bert_model=embedding_model or DEFAULT_SEARCH_EMBEDDING_MODEL)

    def with_search_callback(self, callback: SearchCallback) -> Any:
        return self._with(search_callback=callback)

    def with_tool_callback(self, name: str, callback: ToolCallback) -> Any:
        return self._with(tool_callbacks={**self.tool_callbacks, name: callback})


class TextModelDescriptor(_ModelDescriptor):
    """Descriptor of a text-only base model."""

    organization: IsqOrganization = IsqOrganization.DEFAULT
    no_kv_cache: bool = False

    @property
    def model_type(self) -> ModelType:
        return ModelType.TEXT

    def with_organization(self, organization: IsqOrganization) -> TextModelDescriptor:
        return self._with(organization=organization)

    def with_no_kv_cache(self) -> TextModelDescriptor:
        """Recompute attention for every token instead of caching keys and values."""
        return self._with(no_kv_cache=True)


class VisionModelDescriptor(_ModelDescriptor):
    """Descriptor of a vision-language base model."""

    max_edge: int | None = None
    calibration_file: Path | None = None
    imatrix: Path | None = None
    matformer_config_path: Path | None = None
    matformer_slice_name: str | None = None
    tool_callbacks_with_tools: dict[str, ToolCallbackWithTool] = Field(default_factory=dict)

    @property
    def model_type(self) -> ModelType:
        return ModelType.VISION

    def with_max_edge(self, max_edge: int) -> VisionModelDescriptor:
        """Resize input images so their longest edge is at most max_edge pixels."""
        return self._with(max_edge=max_edge)

    def with_calibration_file(self, path: Path) -> VisionModelDescriptor:
        return self._with(calibration_file=path)

    def with_imatrix(self, path: Path) -> VisionModelDescriptor:
        return self._with(imatrix=path)

    def with_matformer(self, config_path: Path, slice_name: str) -> VisionModelDescriptor:
        return self._with(matformer_config_path=config_path, matformer_slice_name=slice_name)

    def with_tool_callback_and_tool(
        self, name: str, callback: ToolCallback, tool: Tool
    ) -> VisionModelDescriptor:
        return self._with(
            tool_callbacks_with_tools={
                **self.tool_callbacks_with_tools,
                name: ToolCallbackWithTool(callback=callback, tool=tool),
            }
        )


ModelDescriptor = TextModelDescriptor | VisionModelDescriptor
