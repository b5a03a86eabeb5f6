import numpy as np
import pytest
import cv2
from dssim.config import DEFAULT_WEIGHTS
from dssim.metrics.channel import DssimChan
from dssim.metrics.dssim import Dssim, DssimChanScale, DssimImage, compare, new, to_dssim
from dssim.preprocessing.linear import PixelFormat

def _noise_rgb(h, w, seed=0):
    rng = np.random.default_rng(seed)
    return (rng.random((h, w, 3)) * 255).astype(np.uint8)

def _smooth_rgb(h, w, seed=0):
    # blurred noise looks more like a photo than white noise does
    rng = np.random.default_rng(seed)
    img = (rng.random((h, w, 3)) * 255).astype(np.float32)
    img = cv2.GaussianBlur(img, (0, 0), 3)
    lo, hi = img.min(), img.max()
    return ((img - lo) / (hi - lo) * 255).astype(np.uint8)

def test_identical_images():
    d = new()
    px = _smooth_rgb(64, 80)
    a = d.create_image(px, 80, 64, PixelFormat.RGB8)
    b = d.create_image(px.copy(), 80, 64, PixelFormat.RGB8)
    val, maps = d.compare(a, b)
    assert val < 1e-13
    assert maps == []
    val, _ = d.compare(a, a)
    assert val < 1e-13

def test_different_images():
    d = Dssim()
    a = d.create_image(_smooth_rgb(48, 48, seed=1), 48, 48, PixelFormat.RGB8)
    b = d.create_image(_smooth_rgb(48, 48, seed=2), 48, 48, PixelFormat.RGB8)
    val, _ = d.compare(a, b)
    assert np.isfinite(val)
    assert val > 0.01

def test_symmetry():
    d = Dssim()
    a = d.create_image(_smooth_rgb(50, 40, seed=3), fmt=PixelFormat.RGB8)
    px = _smooth_rgb(50, 40, seed=3).astype(np.int32)
    px[10:30, 5:25] = np.clip(px[10:30, 5:25] + 40, 0, 255)
    b = d.create_image(px.astype(np.uint8), fmt=PixelFormat.RGB8)
    ab, _ = d.compare(a, b)
    ba, _ = compare(d, b, a)
    assert ab > 0
    assert abs(ab - ba) <= 1e-9 * max(ab, 1.0)

def test_larger_shift_scores_worse():
    d = Dssim()
    base = _smooth_rgb(120, 120, seed=4)
    ref = d.create_image(base[10:74, 10:74], fmt=PixelFormat.RGB8)
    small = d.create_image(base[11:75, 10:74], fmt=PixelFormat.RGB8)
    large = d.create_image(base[26:90, 10:74], fmt=PixelFormat.RGB8)
    same = d.create_image(base[10:74, 10:74].copy(), fmt=PixelFormat.RGB8)
    v_small, _ = d.compare(ref, small)
    v_large, _ = d.compare(ref, large)
    v_same, _ = d.compare(ref, same)
    assert v_same < 1e-13
    assert 0 < v_small <= v_large

def test_uniform_image():
    d = Dssim()
    grey = np.full((32, 32, 3), 128, dtype=np.uint8)
    a = d.create_image(grey, fmt=PixelFormat.RGB8)
    b = d.create_image(grey.copy(), fmt=PixelFormat.RGB8)
    val, _ = d.compare(a, b)
    assert val < 1e-13
    c = d.create_image(np.full((32, 32, 3), 30, dtype=np.uint8), fmt=PixelFormat.RGB8)
    val, _ = d.compare(a, c)
    assert val > 0

def test_non_finite_padding_outside_view():
    a = [1.0, 1.0, 1.0, 1.0]
    b = [0.0, 0.0, 0.0, 0.0]
    n = [np.inf] * 4
    buf = np.array([
        [b, a, a, b, n, n],
        [a, b, b, a, n, n],
        [b, a, a, b, n, n],
    ], dtype=np.float32)
    view = buf[:, :4]
    d = Dssim()
    img1 = d.create_image(view, 4, 3, PixelFormat.RGBA_LINEAR_PREMULTIPLIED)
    img2 = d.create_image(view, 4, 3, PixelFormat.RGBA_LINEAR_PREMULTIPLIED)
    val, _ = d.compare(img1, img2)
    assert val < 1e-6

def test_non_finite_samples_are_sanitized():
    d = Dssim()
    px = np.random.default_rng(5).random((24, 24)).astype(np.float32)
    bad = px.copy()
    bad[3, 4] = np.nan
    bad[10, 10] = np.inf
    a = d.create_image(px, fmt=PixelFormat.GRAY_LINEAR)
    b = d.create_image(bad, fmt=PixelFormat.GRAY_LINEAR)
    val, _ = d.compare(a, b)
    assert np.isfinite(val)
    assert val > 0

def test_weights_normalized_over_consumed_scales():
    d = Dssim(save_maps_scales=len(DEFAULT_WEIGHTS))
    a = d.create_image(_noise_rgb(10, 10, seed=6), fmt=PixelFormat.RGB8)
    b = d.create_image(_noise_rgb(10, 10, seed=7), fmt=PixelFormat.RGB8)
    # 10x10 -> 5x5, and 5x5 is too small to halve again
    assert a.num_scales == 2
    val, maps = d.compare(a, b)
    assert len(maps) == 2
    w = DEFAULT_WEIGHTS
    expected = to_dssim((maps[0].ssim * w[0] + maps[1].ssim * w[1]) / (w[0] + w[1]))
    assert abs(val - expected) < 1e-12

def test_pyramid_depth_and_order():
    d = Dssim(weights=[0.5, 0.3, 0.2])
    img = d.create_image(_noise_rgb(64, 48), fmt=PixelFormat.RGB8)
    # three downsamplings plus the original
    assert img.num_scales == 4
    sizes = [(s.chan[0].width, s.chan[0].height) for s in img.scale]
    assert sizes == [(48, 64), (24, 32), (12, 16), (6, 8)]
    assert img.width == 48 and img.height == 64
    assert img.is_color

def test_recolored_block_shows_in_finest_map():
    d = Dssim()
    d.set_save_ssim_maps(1)
    px = _noise_rgb(64, 64, seed=8)
    mod = px.copy()
    mod[20:30, 20:30] = (255, 0, 0)
    a = d.create_image(px, fmt=PixelFormat.RGB8)
    b = d.create_image(mod, fmt=PixelFormat.RGB8)
    val, maps = d.compare(a, b)
    assert np.isfinite(val) and val > 0
    assert len(maps) == 1
    m = maps[0].map
    assert m.shape == (64, 64)
    assert m[22:28, 22:28].mean() < 0.5
    far = np.ones_like(m, dtype=bool)
    far[14:36, 14:36] = False
    assert m[far].min() > 0.999
    assert maps[0].ssim < 1.0

def test_rgb_and_opaque_rgba_are_equivalent():
    d = Dssim()
    ref = d.create_image(_smooth_rgb(40, 40, seed=9), fmt=PixelFormat.RGB8)
    rgb = _smooth_rgb(40, 40, seed=10)
    rgba = np.concatenate([rgb, np.full((40, 40, 1), 255, dtype=np.uint8)], axis=2)
    v_rgb, _ = d.compare(ref, d.create_image_rgb(rgb.reshape(-1, 3), 40, 40))
    v_rgba, _ = d.compare(ref, d.create_image_rgba(rgba.reshape(-1), 40, 40))
    assert abs(v_rgb - v_rgba) < 1e-9

def test_16_bit_input_matches_8_bit():
    d = Dssim()
    ref = d.create_image(_smooth_rgb(32, 32, seed=11), fmt=PixelFormat.RGB8)
    px = _smooth_rgb(32, 32, seed=12)
    v8, _ = d.compare(ref, d.create_image(px, fmt=PixelFormat.RGB8))
    v16, _ = d.compare(ref, d.create_image(px.astype(np.uint16) * 257, fmt=PixelFormat.RGB16))
    assert abs(v8 - v16) < 1e-6

def test_grayscale_images():
    d = Dssim()
    rng = np.random.default_rng(13)
    px = rng.random((40, 40)).astype(np.float32)
    a = d.create_image(px, fmt=PixelFormat.GRAY_LINEAR)
    assert not a.is_color
    assert len(a.scale[0].chan) == 1
    val, _ = d.compare(a, d.create_image(px, fmt=PixelFormat.GRAY_LINEAR))
    assert val < 1e-13
    val, _ = d.compare(a, d.create_image(px * 0.5, fmt=PixelFormat.GRAY_LINEAR))
    assert val > 0

def test_sequential_mode_matches_threads():
    px1 = _smooth_rgb(72, 56, seed=14)
    px2 = _smooth_rgb(72, 56, seed=15)
    results = []
    for threads in (0, 4):
        d = Dssim(threads=threads, save_maps_scales=2)
        val, maps = d.compare(d.create_image(px1, fmt=PixelFormat.RGB8),
                              d.create_image(px2, fmt=PixelFormat.RGB8))
        results.append((val, maps))
    assert abs(results[0][0] - results[1][0]) < 1e-12
    for m0, m1 in zip(results[0][1], results[1][1]):
        np.testing.assert_allclose(m0.map, m1.map, atol=1e-7)

def test_compare_does_not_mutate_inputs():
    d = Dssim()
    a = d.create_image(_smooth_rgb(32, 32, seed=16), fmt=PixelFormat.RGB8)
    b = d.create_image(_smooth_rgb(32, 32, seed=17), fmt=PixelFormat.RGB8)
    before = [c.mu.copy() for s in a.scale for c in s.chan]
    first, _ = d.compare(a, b)
    second, _ = d.compare(a, b)
    assert first == second
    for old, c in zip(before, (c for s in a.scale for c in s.chan)):
        np.testing.assert_array_equal(old, c.mu)
        assert not c.mu.flags.writeable

def test_mismatched_sizes_raise():
    d = Dssim()
    a = d.create_image(_noise_rgb(32, 32), fmt=PixelFormat.RGB8)
    b = d.create_image(_noise_rgb(40, 32), fmt=PixelFormat.RGB8)
    with pytest.raises(ValueError):
        d.compare(a, b)

def test_gray_vs_color_raises():
    d = Dssim()
    a = d.create_image(_noise_rgb(16, 16), fmt=PixelFormat.RGB8)
    b = d.create_image(np.zeros((16, 16), dtype=np.float32), fmt=PixelFormat.GRAY_LINEAR)
    with pytest.raises(ValueError):
        d.compare(a, b)

def test_bad_buffer_is_rejected():
    d = Dssim()
    buf = np.zeros(10 * 10 * 3 + 3, dtype=np.uint8)
    assert d.create_image_rgb(buf, 10, 10) is None
    assert d.create_image_rgba(np.zeros(10 * 4, dtype=np.uint8), 10, 10) is None

def test_configuration_validation():
    d = Dssim()
    with pytest.raises(ValueError):
        d.set_scales([])
    with pytest.raises(ValueError):
        d.set_scales([0.5, -0.1])
    with pytest.raises(ValueError):
        d.set_scales([0.0, 0.0])
    with pytest.raises(ValueError):
        d.set_save_ssim_maps(-1)
    d.configure([1.0, 1.0], retain_maps=2)
    assert d.scale_weights == (1.0, 1.0)
    assert d.save_maps_scales == 2

def test_to_dssim_guards_zero():
    assert to_dssim(1.0) == 0.0
    assert np.isfinite(to_dssim(0.0))
    assert np.isfinite(to_dssim(-3.0))

def test_two_plane_conversion_is_rejected_at_ingestion():
    def two_planes(pixels, noise):
        z = np.zeros(pixels.shape[:2], dtype=np.float32)
        return z, z

    d = Dssim(lab_callback=two_planes)
    with pytest.raises(ValueError):
        d.create_image(_noise_rgb(6, 6), fmt=PixelFormat.RGB8)

def test_unsupported_channel_count_raises_in_compare():
    rng = np.random.default_rng(18)

    def two_chan_image():
        chans = tuple(DssimChan.new(rng.random((6, 6)), is_chroma=n > 0).preprocess() for n in range(2))
        return DssimImage(scale=(DssimChanScale(chan=chans),))

    with pytest.raises(ValueError, match="channel count"):
        Dssim().compare(two_chan_image(), two_chan_image())

def test_pyramid_depth_mismatch_raises():
    px = _noise_rgb(64, 64, seed=19)
    deep = Dssim().create_image(px, fmt=PixelFormat.RGB8)
    shallow = Dssim(weights=[0.5, 0.5]).create_image(px, fmt=PixelFormat.RGB8)
    assert deep.num_scales != shallow.num_scales
    with pytest.raises(ValueError):
        Dssim().compare(deep, shallow)
