# dssim/preprocessing/downsample.py
from __future__ import annotations
from typing import Optional
import numpy as np

from ..config import MIN_DOWNSAMPLE_SIZE


def downsample(img: np.ndarray, min_size: int = MIN_DOWNSAMPLE_SIZE) -> Optional[np.ndarray]:
    """
    Halve a linear image (H, W[, C]) by averaging 2x2 blocks.
    An odd last row/column is dropped. Returns None when the image is too
    small to be downsampled again.
    """
    h, w = img.shape[:2]
    if w < min_size or h < min_size:
        return None
    hh, hw = h // 2, w // 2
    even = img[: hh * 2, : hw * 2]
    # (hh, 2, hw, 2[, C]) block view, same trick as a tile grid
    if img.ndim == 3:
        blocks = even.reshape(hh, 2, hw, 2, img.shape[2])
    else:
        blocks = even.reshape(hh, 2, hw, 2)
    return np.ascontiguousarray(blocks.mean(axis=(1, 3), dtype=np.float32))
