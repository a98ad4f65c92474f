"""MLX memory introspection used to size the paged KV cache."""

from typing import Any

from loguru import logger


# Lazy import to allow testing without MLX
def _get_mx() -> Any:
    """Lazy import mlx.core."""
    import mlx.core as mx

    return mx


def get_active_memory_gb() -> float:
    """Memory currently allocated by MLX, in GB (0.0 if unavailable)."""
    try:
        mx = _get_mx()
        return mx.get_active_memory() / (1024**3)
    except Exception as e:
        logger.warning(f"Failed to get memory usage: {e}")
        return 0.0


def get_device_memory_gb() -> float:
    """Get total device (GPU) memory in GB.

    On Apple Silicon this returns unified memory size via mx.device_info().
    Falls back to psutil system memory if MLX is unavailable.
    """
    try:
        mx = _get_mx()
        info = mx.device_info()
        return float(info["memory_size"]) / (1024**3)
    except Exception:
        import psutil

        return psutil.virtual_memory().total / (1024**3)
