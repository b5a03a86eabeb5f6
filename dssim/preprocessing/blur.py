# dssim/preprocessing/blur.py
from __future__ import annotations
from typing import Optional
import numpy as np
import cv2

from ..config import BLUR_SIZE

# Edges are extended by repeating the border sample (no wrap, no zero padding)
_BORDER = cv2.BORDER_REPLICATE


def _scratch(shape, tmp: Optional[np.ndarray]) -> np.ndarray:
    if tmp is None or tmp.shape != shape or tmp.dtype != np.float32 or not tmp.flags.c_contiguous:
        return np.empty(shape, dtype=np.float32)
    return tmp


def blur(src: np.ndarray, tmp: Optional[np.ndarray] = None, size: int = BLUR_SIZE) -> np.ndarray:
    """
    Local mean over a size x size window, returned as a new float32 plane.

    Runs as a horizontal pass into `tmp` followed by a vertical pass.
    `tmp` is scratch space owned by the caller; it is allocated when missing
    or unsuitable. `src` may be a strided view.
    """
    assert size % 2 == 1, "blur window must be odd"
    src = np.ascontiguousarray(src, dtype=np.float32)
    assert src.ndim == 2
    tmp = _scratch(src.shape, tmp)
    out = np.empty_like(src)
    h_pass = cv2.blur(src, (size, 1), dst=tmp, borderType=_BORDER)
    return cv2.blur(h_pass, (1, size), dst=out, borderType=_BORDER)


def blur_in_place(plane: np.ndarray, tmp: Optional[np.ndarray] = None, size: int = BLUR_SIZE) -> np.ndarray:
    """Same as blur(), writing the result back into `plane` (which may be a sub-region view)."""
    plane[...] = blur(plane, tmp, size)
    return plane
