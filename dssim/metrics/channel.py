# dssim/metrics/channel.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import numpy as np

from ..config import LAB_CHANNEL_WEIGHTS
from ..preprocessing.blur import blur, blur_in_place


@dataclass
class DssimChan:
    """
    One plane of one scale, plus the local statistics SSIM needs.

    `img` holds the (chroma-smoothed) plane itself; it is kept after
    preprocessing because the cross term blur(img1 * img2) is computed per
    comparison.
    """
    width: int
    height: int
    img: Optional[np.ndarray]
    is_chroma: bool = False
    mu: Optional[np.ndarray] = None
    img_sq_blur: Optional[np.ndarray] = None

    @classmethod
    def new(cls, plane: np.ndarray, is_chroma: bool) -> "DssimChan":
        plane = np.ascontiguousarray(plane, dtype=np.float32)
        h, w = plane.shape
        return cls(width=w, height=h, img=plane, is_chroma=is_chroma)

    def preprocess(self, tmp: Optional[np.ndarray] = None) -> "DssimChan":
        """
        Fill `mu` and `img_sq_blur`. Chroma planes are smoothed in place first,
        since colour differences are perceived at a coarser resolution.
        """
        assert self.width > 0 and self.height > 0
        img = self.img
        assert img is not None and img.shape == (self.height, self.width)
        if not np.isfinite(img).all():
            raise FloatingPointError("Non-finite values in channel plane")

        if tmp is None:
            tmp = np.empty_like(img)
        if self.is_chroma:
            blur_in_place(img, tmp)
        self.mu = blur(img, tmp)
        self.img_sq_blur = blur_in_place(img * img, tmp)

        if not (np.isfinite(self.mu).all() and np.isfinite(self.img_sq_blur).all()):
            raise FloatingPointError("Non-finite values in channel statistics")
        self.img.setflags(write=False)
        self.mu.setflags(write=False)
        self.img_sq_blur.setflags(write=False)
        return self

    def img1_img2_blur(self, modified: "DssimChan", tmp: Optional[np.ndarray] = None) -> np.ndarray:
        """blur(img1 * img2), the raw material for sigma12."""
        assert self.img is not None and modified.img is not None
        check_same_size(self, modified)
        return blur_in_place(self.img * modified.img, tmp)


def check_same_size(a: DssimChan, b: DssimChan) -> None:
    if (a.width, a.height) != (b.width, b.height):
        raise ValueError(
            f"Cannot compare a {a.width}x{a.height} channel with a {b.width}x{b.height} one"
        )


@dataclass
class LabChan:
    """
    L, a and b statistics stacked on a trailing axis, shape (H, W, 3).
    Products and differences stay per channel; `reduce` turns one of them
    into a single value per pixel.
    """
    width: int
    height: int
    mu: np.ndarray
    img_sq_blur: np.ndarray
    weights: np.ndarray = field(
        default_factory=lambda: np.asarray(LAB_CHANNEL_WEIGHTS, dtype=np.float32)
    )

    def reduce(self, v: np.ndarray) -> np.ndarray:
        # weighted sum: 0.5*L + 0.25*a + 0.25*b
        w = self.weights
        return v[..., 0] * w[0] + v[..., 1] * w[1] + v[..., 2] * w[2]


def lab_chan(chans: Sequence[DssimChan]) -> LabChan:
    l, a, b = chans
    check_same_size(l, a)
    check_same_size(l, b)
    return LabChan(
        width=l.width,
        height=l.height,
        mu=np.stack([l.mu, a.mu, b.mu], axis=-1),
        img_sq_blur=np.stack([l.img_sq_blur, a.img_sq_blur, b.img_sq_blur], axis=-1),
    )


def lab_img1_img2_blur(original: Sequence[DssimChan], modified: Sequence[DssimChan],
                       tmp: Optional[np.ndarray] = None) -> np.ndarray:
    """Per-channel cross-term blurs fused to (H, W, 3)."""
    blurred: List[np.ndarray] = [o.img1_img2_blur(m, tmp) for o, m in zip(original, modified)]
    return np.stack(blurred, axis=-1)
