"""Best-available compute device detection."""

from loguru import logger

from lora_assembly.errors import DeviceSelectionError
from lora_assembly.models.types import Device
from lora_assembly.utils.memory import _get_mx


def best_device(force_cpu: bool) -> Device:
    """Pick the device a pipeline should be bound to.

    Args:
        force_cpu: Skip accelerator probing and return the CPU

    Returns:
        The GPU when MLX reports one as its default device, otherwise the CPU

    Raises:
        DeviceSelectionError: If MLX is installed but the device query fails
    """
    if force_cpu:
        return Device.cpu()

    try:
        mx = _get_mx()
    except ImportError:
        logger.debug("mlx is not installed, using CPU")
        return Device.cpu()

    try:
        default = mx.default_device()
    except Exception as e:
        raise DeviceSelectionError(f"Failed to query the default MLX device: {e}") from e

    if default.type == mx.gpu:
        return Device(kind="gpu", index=0)
    return Device.cpu()
