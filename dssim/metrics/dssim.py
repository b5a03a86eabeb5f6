# dssim/metrics/dssim.py
from __future__ import annotations
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import numpy as np

from ..config import DEFAULT_SAVE_MAPS_SCALES, DEFAULT_WEIGHTS
from ..parallel import TaskPool
from ..preprocessing.downsample import downsample
from ..preprocessing.linear import PixelFormat, PixelsLike, as_pixel_array, sanitize, to_linear
from ..preprocessing.tolab import LabCallback, to_lab
from .channel import DssimChan, lab_chan, lab_img1_img2_blur
from .ssim import compare_scale, scale_score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DssimChanScale:
    chan: Tuple[DssimChan, ...]


@dataclass(frozen=True)
class DssimImage:
    """
    A preprocessed image: one DssimChanScale per pyramid level, finest first.
    Read-only once built, so it can be shared between comparisons and threads.
    """
    scale: Tuple[DssimChanScale, ...]

    @property
    def width(self) -> int:
        return self.scale[0].chan[0].width

    @property
    def height(self) -> int:
        return self.scale[0].chan[0].height

    @property
    def num_scales(self) -> int:
        return len(self.scale)

    @property
    def is_color(self) -> bool:
        return len(self.scale[0].chan) == 3


@dataclass(frozen=True)
class SsimMap:
    """Detailed result for one scale."""
    map: np.ndarray   # per-pixel SSIM, (H, W) float32
    ssim: float       # the scale's score (SSIM, not DSSIM)


def to_dssim(ssim: float) -> float:
    return 1.0 / max(ssim, sys.float_info.epsilon) - 1.0


class Dssim:
    """
    Comparison context: scale weights and how many per-scale maps to keep.
    Holds no per-image state; one context can serve many comparisons.
    """

    def __init__(
        self,
        weights: Sequence[float] = DEFAULT_WEIGHTS,
        save_maps_scales: int = DEFAULT_SAVE_MAPS_SCALES,
        threads: Optional[int] = None,
        lab_callback: Optional[LabCallback] = None,
    ):
        self.scale_weights: Tuple[float, ...] = ()
        self.save_maps_scales = 0
        self.set_scales(weights)
        self.set_save_ssim_maps(save_maps_scales)
        self.pool = TaskPool(threads)
        self.lab_callback = lab_callback

    def __repr__(self) -> str:
        return (f"Dssim(weights={list(self.scale_weights)}, "
                f"save_maps_scales={self.save_maps_scales}, threads={self.pool.threads})")

    # ---------- configuration ----------
    def set_scales(self, weights: Sequence[float]) -> None:
        """Set how many scales are used, and the weight of each (finest first)."""
        weights = tuple(float(w) for w in weights)
        if not weights:
            raise ValueError("At least one scale weight is required")
        if any(not np.isfinite(w) or w < 0 for w in weights):
            raise ValueError(f"Scale weights must be finite and non-negative: {weights}")
        if sum(weights) <= 0:
            raise ValueError("Scale weights must not all be zero")
        self.scale_weights = weights

    def set_save_ssim_maps(self, num_scales: int) -> None:
        """Keep per-pixel SSIM maps for the `num_scales` finest scales."""
        num_scales = int(num_scales)
        if num_scales < 0:
            raise ValueError(f"Number of saved maps can't be negative: {num_scales}")
        self.save_maps_scales = num_scales

    def configure(self, weights: Sequence[float], retain_maps: int) -> "Dssim":
        self.set_scales(weights)
        self.set_save_ssim_maps(retain_maps)
        return self

    # ---------- ingestion ----------
    def create_image(
        self,
        pixels: PixelsLike,
        width: Optional[int] = None,
        height: Optional[int] = None,
        fmt: PixelFormat = PixelFormat.RGBA8,
    ) -> Optional[DssimImage]:
        """
        Preprocess an image for comparisons.

        `pixels` is an (H, W[, C]) array (sub-region views are fine) or a flat
        buffer of width*height pixels in `fmt`. Width and height default to the
        array's shape. Returns None if the buffer doesn't match the dimensions.
        """
        arr = np.asarray(pixels)
        if width is None or height is None:
            if arr.ndim < 2:
                raise ValueError("width and height are required for flat pixel buffers")
            height, width = arr.shape[:2]
        img = as_pixel_array(arr, int(width), int(height), fmt)
        if img is None:
            return None
        return self.create_image_linear(to_linear(img, fmt))

    def create_image_rgba(self, pixels: PixelsLike, width: int, height: int) -> Optional[DssimImage]:
        """8-bit sRGB RGBA, straight alpha."""
        return self.create_image(pixels, width, height, PixelFormat.RGBA8)

    def create_image_rgb(self, pixels: PixelsLike, width: int, height: int) -> Optional[DssimImage]:
        """8-bit sRGB RGB."""
        return self.create_image(pixels, width, height, PixelFormat.RGB8)

    def create_image_linear(self, img: np.ndarray) -> DssimImage:
        """
        Build the pyramid from a linear-light image: (H, W) gray, (H, W, 3) RGB
        or (H, W, 4) premultiplied RGBA, float32 in 0..1.
        """
        img = np.asarray(img)
        if img.ndim not in (2, 3) or (img.ndim == 3 and img.shape[2] not in (3, 4)):
            raise ValueError(f"Expected a (H, W), (H, W, 3) or (H, W, 4) image, got {img.shape}")
        if img.shape[0] == 0 or img.shape[1] == 0:
            raise ValueError(f"Empty image: {img.shape}")
        img = sanitize(img)

        num_scales = len(self.scale_weights)
        scales: List[DssimChanScale] = []
        box = [img]
        del img
        self._make_scales_recursive(num_scales, box, scales)
        scales.reverse()  # depth-first made the smallest scales first
        logger.debug("Built %d-level pyramid for %dx%d image",
                     len(scales), scales[0].chan[0].width, scales[0].chan[0].height)
        return DssimImage(scale=tuple(scales))

    def _make_scales_recursive(self, scales_left: int, box: List[np.ndarray],
                               scales: List[DssimChanScale]) -> None:
        # `box` hands over the only reference to this level's image. Each task
        # gets its own reference and drops it as soon as it is done with it.
        image = box.pop()
        convert_box, recurse_box = [image], [image]
        del image

        def convert() -> DssimChanScale:
            img = convert_box.pop()
            lab = to_lab(img, self.lab_callback)
            del img  # free the larger RGB image ASAP
            return DssimChanScale(chan=tuple(self.pool.map(_preprocess_chan, enumerate(lab))))

        def recurse() -> None:
            img = recurse_box.pop()
            if scales_left > 0:
                down = downsample(img)
                del img
                if down is not None:
                    next_box = [down]
                    del down
                    self._make_scales_recursive(scales_left - 1, next_box, scales)

        # to_lab of this level runs alongside downsampling for the next one
        chan, _ = self.pool.join(convert, recurse)
        scales.append(chan)

    # ---------- comparison ----------
    def compare(self, original: DssimImage, modified: DssimImage) -> Tuple[float, List[SsimMap]]:
        """
        Compare two preprocessed images. Returns (dssim, maps); maps are only
        filled for the scales requested with set_save_ssim_maps().
        """
        if original.is_color != modified.is_color:
            raise ValueError("Cannot compare a grayscale image with a colour one")
        if original.num_scales != modified.num_scales:
            raise ValueError(
                f"Pyramid depth mismatch: {original.num_scales} vs {modified.num_scales} scales"
            )

        jobs = list(enumerate(zip(self.scale_weights, original.scale, modified.scale)))

        def run(job):
            n, (weight, orig_scale, mod_scale) = job
            ssim_map = self._compare_scales(orig_scale, mod_scale)
            score = scale_score(ssim_map, n)
            logger.debug("Scale %d (%dx%d): score %.6f, weight %.3f",
                         n, ssim_map.shape[1], ssim_map.shape[0], score, weight)
            keep = SsimMap(map=ssim_map, ssim=score) if self.save_maps_scales > n else None
            return score, weight, keep

        ssim_sum = 0.0
        weight_sum = 0.0
        ssim_maps: List[SsimMap] = []
        # summed in scale order regardless of which scale finished first
        for score, weight, keep in self.pool.map(run, jobs):
            ssim_sum += score * weight
            weight_sum += weight
            if keep is not None:
                ssim_maps.append(keep)

        return to_dssim(ssim_sum / weight_sum), ssim_maps

    def _compare_scales(self, orig_scale: DssimChanScale, mod_scale: DssimChanScale) -> np.ndarray:
        o, m = orig_scale.chan, mod_scale.chan
        if len(o) != len(m):
            raise ValueError(f"Channel count mismatch: {len(o)} vs {len(m)}")
        width, height = o[0].width, o[0].height
        tmp = np.empty((height, width), dtype=np.float32)

        if len(o) == 3:
            original_lab, (img1_img2_blur, modified_lab) = self.pool.join(
                lambda: lab_chan(o),
                lambda: (lab_img1_img2_blur(o, m, tmp), lab_chan(m)),
            )
            return compare_scale(original_lab, modified_lab, img1_img2_blur)
        if len(o) == 1:
            img1_img2_blur = o[0].img1_img2_blur(m[0], tmp)
            return compare_scale(o[0], m[0], img1_img2_blur)
        raise ValueError(f"Unsupported channel count: {len(o)}")


def _preprocess_chan(item: Tuple[int, np.ndarray]) -> DssimChan:
    n, plane = item
    # channel 0 is luma, the rest are chroma
    return DssimChan.new(plane, is_chroma=n > 0).preprocess()


def new(**kwargs) -> Dssim:
    """Create a new comparison context."""
    return Dssim(**kwargs)


def compare(context: Dssim, image_a: DssimImage, image_b: DssimImage) -> Tuple[float, List[SsimMap]]:
    return context.compare(image_a, image_b)
