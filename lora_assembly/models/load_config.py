"""Projection of a model descriptor onto the loader's configuration.

Each modality has its own load config shape. Projection is a pure copy of the
loading-relevant descriptor fields; text configs always carry ``None`` for the
vision-only calibration, imatrix and matformer fields.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from lora_assembly.models.descriptors import (
    ModelDescriptor,
    TextModelDescriptor,
    VisionModelDescriptor,
)
from lora_assembly.models.types import IsqOrganization


@dataclass(frozen=True)
class NormalSpecificConfig:
    """Load configuration for text models."""

    topology: str | None
    organization: IsqOrganization
    write_uqff: Path | None
    from_uqff: tuple[Path, ...] | None
    imatrix: Path | None
    calibration_file: Path | None
    hf_cache_path: Path | None
    matformer_config_path: Path | None
    matformer_slice_name: str | None


@dataclass(frozen=True)
class VisionSpecificConfig:
    """Load configuration for vision models."""

    topology: str | None
    write_uqff: Path | None
    from_uqff: tuple[Path, ...] | None
    max_edge: int | None
    calibration_file: Path | None
    imatrix: Path | None
    hf_cache_path: Path | None
    matformer_config_path: Path | None
    matformer_slice_name: str | None


LoadConfig = NormalSpecificConfig | VisionSpecificConfig


def project_text_config(desc: TextModelDescriptor) -> NormalSpecificConfig:
    return NormalSpecificConfig(
        topology=desc.topology,
        organization=desc.organization,
        write_uqff=desc.write_uqff,
        from_uqff=desc.from_uqff,
        imatrix=None,
        calibration_file=None,
        hf_cache_path=desc.hf_cache_path,
        matformer_config_path=None,
        matformer_slice_name=None,
    )


def project_vision_config(desc: VisionModelDescriptor) -> VisionSpecificConfig:
    return VisionSpecificConfig(
        topology=desc.topology,
        write_uqff=desc.write_uqff,
        from_uqff=desc.from_uqff,
        max_edge=desc.max_edge,
        calibration_file=desc.calibration_file,
        imatrix=desc.imatrix,
        hf_cache_path=desc.hf_cache_path,
        matformer_config_path=desc.matformer_config_path,
        matformer_slice_name=desc.matformer_slice_name,
    )


def project_load_config(desc: ModelDescriptor) -> LoadConfig:
    """Project either descriptor onto its modality's load config."""
    if isinstance(desc, VisionModelDescriptor):
        return project_vision_config(desc)
    return project_text_config(desc)
