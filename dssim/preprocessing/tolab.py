# dssim/preprocessing/tolab.py
from __future__ import annotations
import logging
from typing import Callable, List, Optional, Tuple
import numpy as np

from ..config import (
    D65_X, D65_Z, LAB_EPSILON, LAB_KAPPA,
    LAB_L_SCALE_COLOR, LAB_L_SCALE_GRAY,
    LAB_A_SCALE, LAB_A_BIAS, LAB_B_SCALE, LAB_B_BIAS,
)
from .linear import composite_rgb

logger = logging.getLogger(__name__)

Planes = Tuple[np.ndarray, np.ndarray, np.ndarray]
# (linear pixels (H,W,C), coordinate noise (H,W)) -> (L, a, b)
LabCallback = Callable[[np.ndarray, np.ndarray], Planes]

# Linear sRGB -> XYZ, rows are X, Y, Z
RGB_TO_XYZ = np.array([
    [0.4124, 0.3576, 0.1805],
    [0.2126, 0.7152, 0.0722],
    [0.0193, 0.1192, 0.9505],
], dtype=np.float32)


def coordinate_noise(width: int, height: int) -> np.ndarray:
    """Deterministic per-pixel term (x+11) ^ (y+11), shape (H, W)."""
    x = np.arange(width, dtype=np.int64) + 11
    y = np.arange(height, dtype=np.int64) + 11
    return np.bitwise_xor(y[:, None], x[None, :])


def _lab_f(t: np.ndarray) -> np.ndarray:
    # cube root above the breakpoint, linear segment below
    return np.where(
        t > LAB_EPSILON,
        np.cbrt(t) - np.float32(16.0 / 116.0),
        np.float32(LAB_KAPPA) * t,
    ).astype(np.float32)


def rgb_planes_to_lab(rgb: np.ndarray) -> Planes:
    """
    Linear RGB (H, W, 3) -> L, a, b planes.

    L is scaled into 0..1; a and b are shifted by fixed biases so natural
    images land in 0..1 as well. Out-of-range results are kept as they are.
    """
    rgb = np.asarray(rgb, dtype=np.float32)
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    m = RGB_TO_XYZ
    fx = (r * m[0, 0] + g * m[0, 1] + b * m[0, 2]) / np.float32(D65_X)
    fy = r * m[1, 0] + g * m[1, 1] + b * m[1, 2]
    fz = (r * m[2, 0] + g * m[2, 1] + b * m[2, 2]) / np.float32(D65_Z)

    X = _lab_f(fx)
    Y = _lab_f(fy)
    Z = _lab_f(fz)

    l_plane = Y * np.float32(LAB_L_SCALE_COLOR)
    a_plane = np.float32(LAB_A_SCALE) * (X - Y) + np.float32(LAB_A_BIAS)
    b_plane = np.float32(LAB_B_SCALE) * (Y - Z) + np.float32(LAB_B_BIAS)
    return l_plane, a_plane, b_plane


def default_lab_callback(pixels: np.ndarray, noise: np.ndarray) -> Planes:
    return rgb_planes_to_lab(composite_rgb(pixels, noise))


def gray_to_lab(img: np.ndarray) -> List[np.ndarray]:
    """Linear gray (H, W) -> [L]. No chroma to balance against, so the canonical 1.16."""
    img = np.asarray(img, dtype=np.float32)
    assert img.ndim == 2 and img.shape[1] > 0
    return [np.ascontiguousarray(_lab_f(img) * np.float32(LAB_L_SCALE_GRAY))]


def rgb_to_lab(img: np.ndarray, cb: Optional[LabCallback] = None) -> List[np.ndarray]:
    """Linear RGB or premultiplied RGBA (H, W, C) -> [L, a, b] via `cb`."""
    h, w = img.shape[:2]
    assert w > 0
    cb = cb or default_lab_callback
    planes = list(cb(img, coordinate_noise(w, h)))
    if len(planes) != 3:
        raise ValueError(f"Colour conversion must produce 3 planes, got {len(planes)}")
    return [np.ascontiguousarray(p, dtype=np.float32) for p in planes]


def to_lab(img: np.ndarray, cb: Optional[LabCallback] = None) -> List[np.ndarray]:
    """
    Convert a linear image to 1 (gray) or 3 (colour) planes and check that
    every value is finite.
    """
    planes = gray_to_lab(img) if img.ndim == 2 else rgb_to_lab(img, cb)
    for n, p in enumerate(planes):
        if not np.isfinite(p).all():
            raise FloatingPointError(f"Non-finite values in L*a*b* plane {n}")
        if logger.isEnabledFor(logging.DEBUG):
            outside = int(np.count_nonzero((p < 0.0) | (p > 1.0)))
            if outside:
                logger.debug("Plane %d has %d values outside 0..1", n, outside)
    return planes
