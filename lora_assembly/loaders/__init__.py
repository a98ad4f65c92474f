# Loaders
#
# Turn a projected load config plus adapter ids into a device-bound pipeline:
#   - base.py      Loader / Pipeline interfaces and the locked SharedPipeline
#   - builders.py  Per-modality loader builders (adapter attachment)
#   - hub.py       HuggingFace Hub resolution of models, adapters, templates
#   - mlx.py       mlx-lm / mlx-vlm backed loaders

from .base import Loader, Pipeline, PipelineMetadata, SharedPipeline
from .builders import NormalLoaderBuilder, VisionLoaderBuilder

__all__ = [
    "Loader",
    "NormalLoaderBuilder",
    "Pipeline",
    "PipelineMetadata",
    "SharedPipeline",
    "VisionLoaderBuilder",
]
