import logging
import os

logger = logging.getLogger(__name__)

# Scale weights, finest scale first.
# Weighed scales are inspired by IW-SSIM, but the weights themselves differ.
DEFAULT_WEIGHTS = (0.028, 0.197, 0.322, 0.298, 0.155)

# How many of the finest scales keep their per-pixel SSIM map (0 = none)
DEFAULT_SAVE_MAPS_SCALES = 0

# SSIM stabilisation constants, (0.01)^2 and (0.03)^2 for a [0,1] range
SSIM_C1 = 0.01 * 0.01
SSIM_C2 = 0.03 * 0.03

# Box blur window (width == height, odd)
BLUR_SIZE = 5

# Images narrower or shorter than this are not downsampled any further
MIN_DOWNSAMPLE_SIZE = 8

# D65 reference white (Y is 1.0)
D65_X = 0.9505
D65_Z = 1.089

# CIE L*a*b* nonlinearity, see http://www.brucelindbloom.com/LContinuity.html
LAB_EPSILON = 216.0 / 24389.0
LAB_KAPPA = 24389.0 / (27.0 * 116.0)

# 1.05 instead of 1.16 boosts colour importance without pushing L past 1.0
LAB_L_SCALE_COLOR = 1.05
LAB_L_SCALE_GRAY = 1.16

# Fudges that keep a* and b* positive for natural images
LAB_A_SCALE = 500.0 / 220.0
LAB_A_BIAS = 86.2 / 220.0
LAB_B_SCALE = 200.0 / 220.0
LAB_B_BIAS = 107.9 / 220.0

# How L, a and b contribute to one SSIM value per pixel
LAB_CHANNEL_WEIGHTS = (0.5, 0.25, 0.25)


def _threads_from_env(default: int) -> int:
    raw = os.environ.get("DSSIM_THREADS")
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring DSSIM_THREADS=%r, using %d threads", raw, default)
        return default


# Worker threads. 0 or 1 runs everything on the calling thread.
THREADS = _threads_from_env(os.cpu_count() or 1)
