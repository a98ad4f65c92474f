"""Exceptions raised while assembling a model.

Everything a caller of ``LoraModelBuilder.build`` is expected to handle
derives from ``AssemblyError``. ``MissingCacheConfigError`` and
``BuilderConsumedError`` signal programming or loader contract errors and
sit outside that hierarchy.
"""


class AssemblyError(Exception):
    """Base class for recoverable assembly failures."""


class SlotCountConversionError(AssemblyError, ValueError):
    """The configured max_num_seqs does not fit the scheduler's slot type."""

    def __init__(self, value: object) -> None:
        super().__init__(
            f"max_num_seqs must be a positive integer below 2**64 to be used as "
            f"a fixed scheduler slot count, got {value!r}"
        )
        self.value = value


class LoaderConfigError(AssemblyError, ValueError):
    """The loader rejected its load configuration."""


class DeviceSelectionError(AssemblyError, RuntimeError):
    """The best-available device lookup failed."""


class ModelLoadError(AssemblyError, RuntimeError):
    """Loading weights, tokenizer or adapters failed."""


class AdapterError(ModelLoadError):
    """A LoRA adapter identifier could not be resolved."""


class MissingCacheConfigError(RuntimeError):
    """Paged attention was requested but the pipeline reports no cache config.

    Raised on the text path only. The loader is expected to always produce a
    cache configuration when paged attention is requested.
    """


class BuilderConsumedError(RuntimeError):
    """A LoraModelBuilder was built more than once."""
