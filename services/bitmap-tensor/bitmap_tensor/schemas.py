from pydantic import BaseModel, Field
from typing import Any, List, Optional, Literal


class ScaleRequest(BaseModel):
    # Base64 of raw pixel rows (no compressed formats, no data URL prefix)
    pixels_b64: str = Field(..., description="base64 of raw pixel bytes")

    # Source geometry
    width: int
    height: int
    bytes_per_row: Optional[int] = None  # if None -> width * len(mode) * bits_per_component // 8
    bits_per_component: int = 8
    mode: Literal["L", "LA", "RGB", "RGBA"] = "RGBA"

    # Output control (overrides server default if provided)
    target_width: Optional[float] = None
    target_height: Optional[float] = None
    components: Optional[int] = Field(default=None, ge=0)
    batch_size: Optional[int] = None
    quantized: Optional[bool] = None


class ScaleResponse(BaseModel):
    model: str
    kind: Literal["uint8", "float32"]

    # [1, H, W, C]
    shape: List[int]
    data: Any


class HealthzResponse(BaseModel):
    ok: bool
    model: str
    target_width: int
    target_height: int
    components: int
    batch_size: int
    quantized: bool
