from typing import Optional, Tuple
import numpy as np
from PIL import Image

from dssim.metrics.dssim import Dssim, DssimImage
from dssim.preprocessing.linear import PixelFormat

# Pillow mode -> (mode to convert to, pixel format). Nothing here decodes files;
# callers hand over images they have already opened.
_MODES = {
    "RGB": ("RGB", PixelFormat.RGB8),
    "RGBA": ("RGBA", PixelFormat.RGBA8),
    "LA": ("RGBA", PixelFormat.RGBA8),
    "P": ("RGBA", PixelFormat.RGBA8),
    "PA": ("RGBA", PixelFormat.RGBA8),
    "L": ("RGB", PixelFormat.RGB8),
    "1": ("RGB", PixelFormat.RGB8),
    "CMYK": ("RGB", PixelFormat.RGB8),
    "YCbCr": ("RGB", PixelFormat.RGB8),
    "I;16": ("I;16", PixelFormat.RGB16),
    "F": ("F", PixelFormat.GRAY_LINEAR),
}


def pil_to_pixels(img: Image.Image) -> Tuple[np.ndarray, PixelFormat]:
    """Turn a Pillow image into an (H, W[, C]) array and its pixel format."""
    if img.mode not in _MODES:
        raise ValueError(f"Unsupported image mode: {img.mode}")
    target, fmt = _MODES[img.mode]
    if img.mode != target:
        img = img.convert(target)
    arr = np.asarray(img)
    if img.mode == "I;16":
        # 16-bit gray is sRGB-encoded like the rest; spread it over RGB
        arr = np.repeat(arr.astype(np.uint16)[..., None], 3, axis=2)
    return arr, fmt


def image_from_pil(d: Dssim, img: Image.Image) -> Optional[DssimImage]:
    arr, fmt = pil_to_pixels(img)
    h, w = arr.shape[:2]
    return d.create_image(arr, w, h, fmt)


def ssim_map_to_pil(ssim_map: np.ndarray) -> Image.Image:
    """
    Visualise a per-pixel SSIM map: black where identical, brighter where different.
    """
    diff = 1.0 - np.clip(ssim_map, 0.0, 1.0)
    return Image.fromarray((diff * 255.0 + 0.5).astype(np.uint8))
