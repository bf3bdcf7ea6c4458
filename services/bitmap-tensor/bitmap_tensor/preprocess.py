from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

MAX_RGB_VALUE = 255.0
MEAN_RGB_VALUE = MAX_RGB_VALUE / 2.0
STD_RGB_VALUE = MAX_RGB_VALUE / 2.0

# Pillow band layouts a Bitmap can carry
SUPPORTED_MODES = ("L", "LA", "RGB", "RGBA")

# The drawing surface is always 8-bit RGBA
SURFACE_MODE = "RGBA"
SURFACE_COMPONENTS = 4
SURFACE_BITS_PER_COMPONENT = 8

# Largest drawing buffer (bytes) a single call may allocate
MAX_SURFACE_BYTES = 1 << 28


@dataclass(frozen=True)
class Bitmap:
    """
    Raw pixel rows plus the geometry needed to read them.

    `bytes_per_row` may include padding; `components_count` is derived from it
    (bytes_per_row // width), so padding bytes count as extra channels.
    """

    data: bytes
    width: int
    height: int
    bytes_per_row: int
    bits_per_component: int = 8
    mode: str = "RGBA"

    def __post_init__(self):
        if self.mode not in SUPPORTED_MODES:
            raise ValueError(f"Unsupported bitmap mode {self.mode!r}, expected one of {SUPPORTED_MODES}")
        if self.bits_per_component <= 0 or self.bits_per_component % 8:
            raise ValueError(f"bits_per_component must be a positive multiple of 8, got {self.bits_per_component}")
        if self.height < 0:
            raise ValueError(f"height must be >= 0, got {self.height}")
        if self.width <= 0:
            # nothing to read; scaling reports it
            return
        min_stride = self.width * len(self.mode) * self.bits_per_component // 8
        if self.bytes_per_row < min_stride:
            raise ValueError(
                f"bytes_per_row={self.bytes_per_row} is shorter than one row of "
                f"{self.width} {self.mode} pixels ({min_stride} bytes)"
            )
        need = self.bytes_per_row * self.height
        if len(self.data) < need:
            raise ValueError(f"Bitmap buffer holds {len(self.data)} bytes, need {need}")

    @property
    def components_count(self) -> int:
        if self.width <= 0:
            return 0
        return self.bytes_per_row // self.width

    @classmethod
    def from_image(cls, image: Image.Image) -> "Bitmap":
        # decoded images are handed out as 32-bit RGBA rows
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        w, h = image.size
        return cls(
            data=image.tobytes(),
            width=w,
            height=h,
            bytes_per_row=w * 4,
            mode="RGBA",
        )

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Bitmap":
        arr = np.asarray(array)
        if arr.dtype != np.uint8:
            raise ValueError(f"Expected a uint8 array, got {arr.dtype}")
        if arr.ndim == 3 and arr.shape[2] == 1:
            arr = arr[:, :, 0]
        if arr.ndim not in (2, 3) or (arr.ndim == 3 and not 2 <= arr.shape[2] <= 4):
            raise ValueError(f"Expected an (H, W) or (H, W, C<=4) array, got shape {arr.shape}")
        return cls.from_image(Image.fromarray(np.ascontiguousarray(arr)))

    def to_image(self) -> Image.Image:
        if self.bits_per_component != 8:
            raise ValueError(f"Only 8-bit bitmaps can be viewed as images, got {self.bits_per_component}")
        return Image.frombytes(
            self.mode,
            (self.width, self.height),
            self.data,
            "raw",
            self.mode,
            self.bytes_per_row,
            1,
        )


class TensorKind(str, enum.Enum):
    UINT8 = "uint8"
    FLOAT32 = "float32"


@dataclass(frozen=True)
class ImageTensor:
    """Flat buffer of one numeric type, laid out [batch][row][column][channel]."""

    data: np.ndarray
    shape: Tuple[int, int, int, int]

    @property
    def kind(self) -> TensorKind:
        return TensorKind(self.data.dtype.name)

    @property
    def strides(self) -> Tuple[int, int, int, int]:
        _, h, w, c = self.shape
        return (h * w * c, w * c, c, 1)

    def at(self, batch: int, y: int, x: int, component: int):
        sb, sy, sx, sc = self.strides
        return self.data[batch * sb + y * sy + x * sx + component * sc]

    def as_array(self) -> np.ndarray:
        return self.data.reshape(self.shape)

    def tolist(self) -> List[Any]:
        return self.as_array().tolist()


class ScaleError(str, enum.Enum):
    INVALID_WIDTH = "invalid_width"
    TOO_MANY_COMPONENTS = "too_many_components"
    SURFACE_UNAVAILABLE = "surface_unavailable"

    @property
    def message(self) -> str:
        return _ERROR_MESSAGES[self]


_ERROR_MESSAGES = {
    ScaleError.INVALID_WIDTH: "source image has no columns",
    ScaleError.TOO_MANY_COMPONENTS: "requested more components than the source pixels carry",
    ScaleError.SURFACE_UNAVAILABLE: "cannot build an RGBA drawing surface for these parameters",
}


class ScaleFailed(Exception):
    def __init__(self, error: ScaleError):
        super().__init__(f"{error.value}: {error.message}")
        self.error = error


@dataclass(frozen=True)
class ScaleResult:
    tensor: Optional[ImageTensor] = None
    error: Optional[ScaleError] = None

    def __post_init__(self):
        if (self.tensor is None) == (self.error is None):
            raise ValueError("ScaleResult needs exactly one of tensor or error")

    @property
    def ok(self) -> bool:
        return self.tensor is not None

    def unwrap(self) -> ImageTensor:
        if self.tensor is None:
            raise ScaleFailed(self.error)
        return self.tensor


SourceImage = Union[Bitmap, Image.Image, np.ndarray]


def as_bitmap(source: SourceImage) -> Bitmap:
    if isinstance(source, Bitmap):
        return source
    if isinstance(source, Image.Image):
        return Bitmap.from_image(source)
    if isinstance(source, np.ndarray):
        return Bitmap.from_array(source)
    raise TypeError(f"Expected Bitmap, PIL.Image.Image or numpy array, got {type(source).__name__}")


def normalize_pixels(values: np.ndarray, mean: float = MEAN_RGB_VALUE, std: float = STD_RGB_VALUE) -> np.ndarray:
    # [0, 255] -> [-1, 1] with the default constants
    return (values.astype(np.float32) - np.float32(mean)) / np.float32(std)


def _target_dim(value: float) -> int:
    # NaN and infinities make no surface
    if not math.isfinite(value):
        return 0
    return int(value)


def _surface_fits(bitmap: Bitmap, new_width: int, new_height: int, batch_size: int) -> bool:
    if new_width < 1 or new_height < 1 or batch_size < 1:
        return False
    if bitmap.bits_per_component != SURFACE_BITS_PER_COMPONENT:
        return False
    # row stride is old_components * new_width and must hold new_width RGBA pixels
    if bitmap.components_count < SURFACE_COMPONENTS:
        return False
    return new_width * new_height * bitmap.components_count * batch_size <= MAX_SURFACE_BYTES


def _draw(bitmap: Bitmap, new_width: int, new_height: int, batch_size: int) -> np.ndarray:
    old = bitmap.components_count
    row_stride = old * new_width
    buf = np.zeros(new_width * new_height * old * batch_size, dtype=np.uint8)

    if bitmap.height == 0:
        # empty source draws nothing
        return buf

    img = bitmap.to_image().convert(SURFACE_MODE)
    img = img.resize((new_width, new_height), Image.Resampling.BILINEAR)
    rgba = np.asarray(img, dtype=np.uint8).reshape(new_height, new_width * SURFACE_COMPONENTS)

    rows = buf[: new_height * row_stride].reshape(new_height, row_stride)
    rows[:, : new_width * SURFACE_COMPONENTS] = rgba
    return buf


def scale_image(
    source: SourceImage,
    size: Tuple[float, float],
    components_count: int,
    batch_size: int = 1,
    is_quantized: bool = False,
    mean: float = MEAN_RGB_VALUE,
    std: float = STD_RGB_VALUE,
) -> ScaleResult:
    """
    Resize `source` to `size` (width, height) and pack it as a model input tensor.

    Returns a ScaleResult holding either a [1, H, W, components_count] tensor or
    the reason no tensor could be produced:
      - INVALID_WIDTH:       source width <= 0
      - TOO_MANY_COMPONENTS: components_count > source components
      - SURFACE_UNAVAILABLE: the RGBA drawing surface can't be built

    Quantized models get the raw bytes (uint8); otherwise each byte becomes
    (byte - mean) / std as float32.
    """
    if components_count < 0:
        raise ValueError(f"components_count must be >= 0, got {components_count}")

    bitmap = as_bitmap(source)
    new_width, new_height = _target_dim(size[0]), _target_dim(size[1])

    if bitmap.width <= 0:
        error = ScaleError.INVALID_WIDTH
    elif components_count > bitmap.components_count:
        error = ScaleError.TOO_MANY_COMPONENTS
    elif not _surface_fits(bitmap, new_width, new_height, batch_size):
        error = ScaleError.SURFACE_UNAVAILABLE
    else:
        error = None

    if error is None:
        try:
            buf = _draw(bitmap, new_width, new_height, batch_size)
        except (MemoryError, OverflowError):
            error = ScaleError.SURFACE_UNAVAILABLE

    if error is not None:
        logger.debug(
            "scale %dx%d (%d comps) -> %dx%d (%d comps, batch %d) failed: %s",
            bitmap.width, bitmap.height, bitmap.components_count,
            new_width, new_height, components_count, batch_size, error.value,
        )
        return ScaleResult(error=error)

    old = bitmap.components_count
    pixels = buf[: new_height * new_width * old].reshape(new_height, new_width, old)
    pixels = pixels[:, :, :components_count]

    if is_quantized:
        values = np.ascontiguousarray(pixels, dtype=np.uint8)
    else:
        values = normalize_pixels(pixels, mean, std)

    shape = (1, new_height, new_width, components_count)
    return ScaleResult(tensor=ImageTensor(data=values.reshape(-1), shape=shape))


def scaled_image_data(
    source: SourceImage,
    size: Tuple[float, float],
    components_count: int,
    batch_size: int = 1,
    is_quantized: bool = False,
) -> Optional[List[Any]]:
    """Nested [1][H][W][C] list, or None if the image could not be scaled."""
    result = scale_image(source, size, components_count, batch_size, is_quantized)
    if not result.ok:
        return None
    return result.tensor.tolist()
