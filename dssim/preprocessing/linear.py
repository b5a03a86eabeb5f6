# dssim/preprocessing/linear.py
from __future__ import annotations
import enum
import logging
from typing import Optional, Sequence, Union
import numpy as np

logger = logging.getLogger(__name__)


class PixelFormat(enum.Enum):
    """Known input pixel layouts. Packed formats are sRGB-encoded."""
    RGB8 = "rgb8"
    RGB16 = "rgb16"
    RGBA8 = "rgba8"      # straight alpha
    RGBA16 = "rgba16"    # straight alpha
    GRAY_LINEAR = "gray_linear"                              # float, 0..1
    RGB_LINEAR = "rgb_linear"                                # float, 0..1
    RGBA_LINEAR_PREMULTIPLIED = "rgba_linear_premultiplied"  # float, 0..1

    @property
    def channels(self) -> int:
        return _CHANNELS[self]

    @property
    def max_value(self) -> Optional[float]:
        """Integer full-scale value, or None for float formats."""
        return _MAX_VALUE.get(self)


_CHANNELS = {
    PixelFormat.RGB8: 3,
    PixelFormat.RGB16: 3,
    PixelFormat.RGBA8: 4,
    PixelFormat.RGBA16: 4,
    PixelFormat.GRAY_LINEAR: 1,
    PixelFormat.RGB_LINEAR: 3,
    PixelFormat.RGBA_LINEAR_PREMULTIPLIED: 4,
}

_MAX_VALUE = {
    PixelFormat.RGB8: 255.0,
    PixelFormat.RGBA8: 255.0,
    PixelFormat.RGB16: 65535.0,
    PixelFormat.RGBA16: 65535.0,
}

PixelsLike = Union[np.ndarray, Sequence]


def srgb_to_linear(v: np.ndarray) -> np.ndarray:
    """sRGB transfer curve, input and output scaled to 0..1."""
    v = np.asarray(v, dtype=np.float32)
    return np.where(
        v <= 0.04045,
        v / np.float32(12.92),
        np.power((v + np.float32(0.055)) / np.float32(1.055), np.float32(2.4)),
    ).astype(np.float32)


def _gamma_lut(max_value: int) -> np.ndarray:
    return srgb_to_linear(np.arange(max_value + 1, dtype=np.float64) / max_value)


_LUT8 = _gamma_lut(255)
_LUT16 = _gamma_lut(65535)


def as_pixel_array(
    pixels: PixelsLike, width: int, height: int, fmt: PixelFormat
) -> Optional[np.ndarray]:
    """
    Shape `pixels` as (H, W, C) (or (H, W) for gray) without copying when possible.
    Returns None if the buffer does not hold exactly width*height pixels.
    Raises ValueError if the data cannot be in `fmt` at all.
    """
    if width <= 0 or height <= 0:
        logger.warning("Rejecting image with non-positive size %dx%d", width, height)
        return None

    arr = np.asarray(pixels)
    c = fmt.channels

    # Already laid out as an image (possibly a strided sub-region view).
    # A 2-D color array is a (count, C) pixel list, not an image.
    shaped = arr.ndim == 3 or (arr.ndim == 2 and c == 1)
    if shaped and arr.shape[:2] == (height, width):
        if c == 1 and arr.ndim == 3 and arr.shape[2] == 1:
            arr = arr[..., 0]
        if (c == 1 and arr.ndim != 2) or (c > 1 and (arr.ndim != 3 or arr.shape[2] != c)):
            raise ValueError(f"Array of shape {arr.shape} is not {fmt.value} pixels")
        return arr

    if c > 1:
        if arr.ndim == 2 and arr.shape[1] == c:
            count = arr.shape[0]
        elif arr.ndim == 1:
            if arr.size % c != 0:
                raise ValueError(f"Flat buffer of {arr.size} values is not a multiple of {c} channels")
            count = arr.size // c
        else:
            raise ValueError(f"Array of shape {arr.shape} is not {fmt.value} pixels")
    else:
        count = arr.size

    if count != width * height:
        logger.warning(
            "Rejecting %s buffer: %d pixels for a %dx%d image", fmt.value, count, width, height
        )
        return None

    if c == 1:
        return arr.reshape(height, width)
    return arr.reshape(height, width, c)


def sanitize(arr: np.ndarray) -> np.ndarray:
    """Replace NaN/inf float samples and clip to 0..1."""
    arr = np.asarray(arr, dtype=np.float32)
    finite = np.isfinite(arr)
    if not finite.all():
        logger.warning("Replacing %d non-finite input samples", int(arr.size - finite.sum()))
        arr = np.nan_to_num(arr, nan=0.0, posinf=1.0, neginf=0.0)
    return np.clip(arr, 0.0, 1.0).astype(np.float32, copy=False)


def to_linear(img: np.ndarray, fmt: PixelFormat) -> np.ndarray:
    """
    Convert an (H, W[, C]) array in `fmt` to linear light float32:
      - gray:  (H, W)
      - color: (H, W, 3) RGB, or (H, W, 4) premultiplied RGBA
    Always returns a fresh contiguous array; the caller's buffer is not touched.
    """
    if fmt.max_value is None:
        return np.ascontiguousarray(sanitize(img))

    img = np.asarray(img)
    if img.size and (img.min() < 0 or img.max() > fmt.max_value):
        raise ValueError(f"{fmt.value} samples must be within 0..{int(fmt.max_value)}")
    if fmt.max_value == 255.0:
        lut = _LUT8
        raw = img.astype(np.uint8, copy=False)
    else:
        lut = _LUT16
        raw = img.astype(np.uint16, copy=False)

    rgb = lut[raw[..., :3]]
    if fmt.channels == 3:
        return np.ascontiguousarray(rgb)

    # alpha is linear already; premultiply
    a = (raw[..., 3].astype(np.float32) / np.float32(fmt.max_value))[..., None]
    return np.ascontiguousarray(np.concatenate([rgb * a, a], axis=2), dtype=np.float32)


def composite_rgb(img: np.ndarray, noise: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Flatten premultiplied RGBA to RGB, i.e. composite over black.
    `noise` is the per-pixel coordinate term from the conversion callback; unused.
    """
    if img.shape[-1] == 3:
        return img
    return img[..., :3]
