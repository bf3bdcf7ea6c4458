import base64
import binascii
import logging
import os
from typing import Tuple

from .preprocess import Bitmap, ScaleResult, scale_image, MEAN_RGB_VALUE, STD_RGB_VALUE
from .schemas import ScaleRequest

logger = logging.getLogger(__name__)


def decode_bitmap(req: ScaleRequest) -> Bitmap:
    try:
        raw = base64.b64decode(req.pixels_b64, validate=True)
    except binascii.Error as e:
        raise ValueError(f"pixels_b64 is not valid base64: {e}") from e

    bytes_per_row = req.bytes_per_row
    if bytes_per_row is None:
        bytes_per_row = max(req.width, 0) * len(req.mode) * req.bits_per_component // 8

    return Bitmap(
        data=raw,
        width=req.width,
        height=req.height,
        bytes_per_row=bytes_per_row,
        bits_per_component=req.bits_per_component,
        mode=req.mode,
    )


class ImageScaler:
    def __init__(
        self,
        target_size: Tuple[int, int],
        components: int,
        batch_size: int,
        quantized: bool,
        mean: float = MEAN_RGB_VALUE,
        std: float = STD_RGB_VALUE,
    ):
        if target_size[0] < 1 or target_size[1] < 1:
            raise ValueError(f"target size must be positive, got {target_size}")
        if components < 0:
            raise ValueError(f"components must be >= 0, got {components}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if std == 0:
            raise ValueError("std must be non-zero")

        self.target_size = target_size
        self.components = components
        self.batch_size = batch_size
        self.quantized = quantized
        self.mean = mean
        self.std = std

    @classmethod
    def from_env(cls) -> "ImageScaler":
        width = int(os.getenv("TARGET_WIDTH", "224"))
        height = int(os.getenv("TARGET_HEIGHT", "224"))
        components = int(os.getenv("COMPONENTS", "3"))
        batch_size = int(os.getenv("BATCH_SIZE", "1"))
        quantized = os.getenv("QUANTIZED", "0") == "1"
        mean = float(os.getenv("MEAN_RGB", str(MEAN_RGB_VALUE)))
        std = float(os.getenv("STD_RGB", str(STD_RGB_VALUE)))

        return cls(
            target_size=(width, height),
            components=components,
            batch_size=batch_size,
            quantized=quantized,
            mean=mean,
            std=std,
        )

    def scale(self, req: ScaleRequest) -> ScaleResult:
        bitmap = decode_bitmap(req)

        width = self.target_size[0] if req.target_width is None else req.target_width
        height = self.target_size[1] if req.target_height is None else req.target_height
        components = self.components if req.components is None else req.components
        batch_size = self.batch_size if req.batch_size is None else req.batch_size
        quantized = self.quantized if req.quantized is None else bool(req.quantized)

        result = scale_image(
            bitmap,
            (width, height),
            components,
            batch_size=batch_size,
            is_quantized=quantized,
            mean=self.mean,
            std=self.std,
        )
        if not result.ok:
            logger.debug("request produced no tensor: %s", result.error.value)
        return result
