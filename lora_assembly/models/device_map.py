"""Device mapping settings for splitting a model across devices."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MAX_SEQ_LEN = 4 * 1024
DEFAULT_MAX_BATCH_SIZE = 1
DEFAULT_MAX_NUM_IMAGES = 1
DEFAULT_MAX_IMAGE_LENGTH = 1024


class AutoDeviceMapParams(BaseModel):
    """Workload hints used to place layers automatically.

    Vision params additionally bound the number and size of input images.
    """

    model_config = ConfigDict(frozen=True)

    modality: Literal["text", "vision"] = "text"
    max_seq_len: int = DEFAULT_MAX_SEQ_LEN
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    max_num_images: int | None = None
    max_image_length: int | None = None

    @classmethod
    def default_text(cls) -> "AutoDeviceMapParams":
        return cls(modality="text")

    @classmethod
    def default_vision(cls) -> "AutoDeviceMapParams":
        return cls(
            modality="vision",
            max_num_images=DEFAULT_MAX_NUM_IMAGES,
            max_image_length=DEFAULT_MAX_IMAGE_LENGTH,
        )


class DeviceLayerMapping(BaseModel):
    """Number of layers placed on a given device ordinal."""

    model_config = ConfigDict(frozen=True)

    ordinal: int = Field(ge=0)
    layers: int = Field(gt=0)


class MapDevices(BaseModel):
    """Explicit layer placement."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["map"] = "map"
    devices: tuple[DeviceLayerMapping, ...] = ()


class AutoMap(BaseModel):
    """Automatic placement driven by workload hints."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["auto"] = "auto"
    params: AutoDeviceMapParams = Field(default_factory=AutoDeviceMapParams.default_text)


DeviceMapSetting = MapDevices | AutoMap
