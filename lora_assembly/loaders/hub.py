"""HuggingFace Hub resolution for base models, adapters and templates."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from huggingface_hub import snapshot_download
from loguru import logger
from tqdm.auto import tqdm  # type: ignore[import-untyped]

from lora_assembly.errors import AdapterError, ModelLoadError
from lora_assembly.models.types import AdapterInfo


class SilentProgress(tqdm):
    """tqdm subclass that suppresses console output."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs["disable"] = True
        super().__init__(*args, **kwargs)


def _download(
    repo_id: str,
    revision: str | None,
    token: str | None,
    cache_dir: Path | None,
    silent: bool,
) -> Path:
    kwargs: dict[str, Any] = {
        "repo_id": repo_id,
        "revision": revision,
        "token": token,
        "cache_dir": str(cache_dir) if cache_dir is not None else None,
    }
    if silent:
        kwargs["tqdm_class"] = SilentProgress
    return Path(snapshot_download(**kwargs))


def resolve_model_path(
    model_id: str,
    revision: str | None,
    token: str | None,
    cache_dir: Path | None,
    silent: bool = False,
) -> Path:
    """Return a local directory holding the model, downloading it if needed.

    Raises:
        ModelLoadError: If the model cannot be found locally or on the hub
    """
    local = Path(model_id).expanduser()
    if local.is_dir():
        logger.debug(f"Using local model directory: {local}")
        return local

    try:
        return _download(model_id, revision, token, cache_dir, silent)
    except Exception as e:
        raise ModelLoadError(f"Failed to fetch model {model_id}: {e}") from e


def resolve_adapter(
    adapter_id: str,
    token: str | None,
    cache_dir: Path | None,
    silent: bool = False,
) -> AdapterInfo:
    """Resolve an adapter identifier and parse its configuration.

    The identifier is either a local directory or a hub repository. Either
    way the resolved directory must contain ``adapter_config.json``.

    Raises:
        AdapterError: If the adapter cannot be fetched or is malformed
    """
    path = Path(adapter_id).expanduser()
    if not path.exists():
        try:
            path = _download(adapter_id, None, token, cache_dir, silent)
        except Exception as e:
            raise AdapterError(f"Failed to fetch adapter {adapter_id}: {e}") from e

    if not path.is_dir():
        raise AdapterError(f"Adapter path is not a directory: {adapter_id}")

    config_path = path / "adapter_config.json"
    if not config_path.exists():
        raise AdapterError(f"adapter_config.json not found in adapter directory: {adapter_id}")

    try:
        with open(config_path, encoding="utf-8") as f:
            config = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise AdapterError(f"Invalid adapter_config.json in {adapter_id}: {e}") from e
    if not isinstance(config, dict):
        raise AdapterError(f"adapter_config.json in {adapter_id} must contain a JSON object")

    return AdapterInfo(
        adapter_id=adapter_id,
        adapter_path=str(path),
        base_model=config.get("base_model_name_or_path"),
        description=config.get("description"),
    )


def _is_template_file(source: str) -> bool:
    # Long literal templates can exceed the OS filename limit
    try:
        return Path(source).expanduser().is_file()
    except OSError:
        return False


def read_chat_template(source: str) -> str:
    """Load a chat template from a file, or return the source as a literal template.

    JSON files are expected to hold the template under ``chat_template``
    (the tokenizer_config.json layout).

    Raises:
        ModelLoadError: If a template file cannot be read or has no chat_template entry
    """
    if not _is_template_file(source):
        return source

    path = Path(source).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ModelLoadError(f"Cannot read chat template file {source}: {e}") from e
    if path.suffix != ".json":
        return text

    try:
        config = json.loads(text)
    except json.JSONDecodeError as e:
        raise ModelLoadError(f"Invalid chat template file {source}: {e}") from e
    template = config.get("chat_template") if isinstance(config, dict) else None
    if not template:
        raise ModelLoadError(f"No chat_template entry in {source}")
    return template
