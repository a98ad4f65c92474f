"""Device and memory helpers backed by MLX."""
