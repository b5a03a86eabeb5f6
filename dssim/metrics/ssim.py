# dssim/metrics/ssim.py
from __future__ import annotations
from typing import Callable, Union
import numpy as np

from ..config import SSIM_C1, SSIM_C2
from .channel import DssimChan, LabChan

Chan = Union[DssimChan, LabChan]


def _identity(v: np.ndarray) -> np.ndarray:
    return v


def _reducer(chan: Chan) -> Callable[[np.ndarray], np.ndarray]:
    return chan.reduce if isinstance(chan, LabChan) else _identity


def compare_scale(original: Chan, modified: Chan, img1_img2_blur: np.ndarray) -> np.ndarray:
    """
    Per-pixel SSIM map (H, W) float32.

    For L*a*b* statistics every product and difference is taken per channel
    and then reduced to one number, so luma and chroma give a single
    similarity per pixel.
    """
    if (original.width, original.height) != (modified.width, modified.height):
        raise ValueError(
            f"Scale size mismatch: {original.width}x{original.height} "
            f"vs {modified.width}x{modified.height}"
        )
    assert original.mu.shape == modified.mu.shape
    assert img1_img2_blur.shape == original.mu.shape
    assert original.img_sq_blur.shape == modified.img_sq_blur.shape

    reduce = _reducer(original)
    c1 = np.float32(SSIM_C1)
    c2 = np.float32(SSIM_C2)

    mu1, mu2 = original.mu, modified.mu
    mu1mu1 = mu1 * mu1
    mu1mu2 = mu1 * mu2
    mu2mu2 = mu2 * mu2

    mu1_sq = reduce(mu1mu1)
    mu2_sq = reduce(mu2mu2)
    mu1_mu2 = reduce(mu1mu2)
    sigma1_sq = reduce(original.img_sq_blur - mu1mu1)
    sigma2_sq = reduce(modified.img_sq_blur - mu2mu2)
    sigma12 = reduce(img1_img2_blur - mu1mu2)

    num = (2 * mu1_mu2 + c1) * (2 * sigma12 + c2)
    den = (mu1_sq + mu2_sq + c1) * (sigma1_sq + sigma2_sq + c2)
    ssim_map = (num / den).astype(np.float32, copy=False)
    return np.ascontiguousarray(ssim_map.reshape(original.height, original.width))


def scale_score(ssim_map: np.ndarray, scale_index: int) -> float:
    """
    1 - mean |avg - ssim(p)|, where avg is the mean SSIM floored at 0 and
    raised to 0.5**scale_index. Spatially uneven similarity costs as much as
    low similarity.
    """
    values = ssim_map.astype(np.float64).ravel()
    n = float(values.size)
    avg = max(float(values.sum()) / n, 0.0) ** (0.5 ** scale_index)
    return 1.0 - float(np.abs(avg - values).sum()) / n
