"""Tests for the degradation effects."""

import numpy as np
import pytest
from PIL import Image

from synthetic_fax.effects import (
    apply_brightness, apply_dropout, apply_mirror, apply_raster, apply_rotate,
    apply_stripes, apply_stripes_white, apply_tileshift, apply_warp, apply_white_noise,
    tone,
)
from synthetic_fax.effects.brightness import brightness_operations
from synthetic_fax.effects.dropout import block_count, build_dropout_script
from synthetic_fax.effects.noise import build_speckle_script
from synthetic_fax.effects.stripes import smear_length, speckle_points
from synthetic_fax.effects.stripes_white import (
    build_noise_mask, build_stripe_mask, combine_masks,
)
from synthetic_fax.effects.tileshift import plan_tiles
from synthetic_fax.effects.warp import clamp_offset, corner_controls, warp_padding
from synthetic_fax.operations import (
    TRANSPARENT, CanvasLayer, Composite, EnsureAlpha, Extent, Level, Modulate, ShepardsDistort,
)


def pixels(path) -> np.ndarray:
    with Image.open(path) as im:
        return np.array(im.convert("L"))


# Each entry applies one gated effect with visible parameters.
GATED = {
    "warp": lambda cur, a, e, p, rng: apply_warp(cur, a, e, p, 10, 0.9, rng=rng),
    "rotate": lambda cur, a, e, p, rng: apply_rotate(cur, a, e, p, 3.0, rng=rng),
    "mirror": lambda cur, a, e, p, rng: apply_mirror(cur, a, e, p, ["vertical"], rng=rng),
    "stripes_white": lambda cur, a, e, p, rng: apply_stripes_white(
        cur, a, e, p, 3, 2, 4, 5, 10, "horizontal", 1.0, 0.0, rng=rng),
    "brightness": lambda cur, a, e, p, rng: apply_brightness(
        cur, a, e, p, "overlay", 10, 30, rng=rng),
    "stripes": lambda cur, a, e, p, rng: apply_stripes(
        cur, a, e, p, 2, 40, 40, 0.5, smear=True, smear_min=1, smear_max=3, rng=rng),
    "noise": lambda cur, a, e, p, rng: apply_white_noise(cur, a, e, p, 0.01, rng=rng),
    "raster": lambda cur, a, e, p, rng: apply_raster(cur, a, e, p, "o4x4", rng=rng),
    "dropout": lambda cur, a, e, p, rng: apply_dropout(cur, a, e, p, 0.1, 5, rng=rng),
    "tileshift": lambda cur, a, e, p, rng: apply_tileshift(
        cur, a, e, p, 3, 10, 0, 2, 2, 0, rng=rng),
}


class TestGating:
    """Test cases for the single batch-probability gate."""

    @pytest.mark.parametrize("name", sorted(GATED))
    def test_zero_probability_is_identity(self, name, arena, engine, page, rng) -> None:
        cur = page(color=(128, 128, 128))
        before = cur.read_bytes()
        out = GATED[name](cur, arena, engine, 0.0, rng)
        assert out == cur
        assert cur.read_bytes() == before
        assert arena.live == [cur]

    @pytest.mark.parametrize("name", sorted(GATED))
    def test_full_probability_replaces_input(self, name, arena, engine, page, rng) -> None:
        cur = page(color=(128, 128, 128))
        out = GATED[name](cur, arena, engine, 1.0, rng)
        assert out != cur
        assert out.exists()
        assert not cur.exists()
        assert arena.live == [out]

    @pytest.mark.parametrize("name", sorted(GATED))
    def test_size_is_preserved(self, name, arena, engine, page, rng) -> None:
        cur = page(width=90, height=70, color=(128, 128, 128))
        out = GATED[name](cur, arena, engine, 1.0, rng)
        assert engine.identify(out) == (90, 70)


class TestWarp:
    """Test cases for the corner warp."""

    def test_clamp_offset(self) -> None:
        assert clamp_offset(1000, 100, 60) == 29.0
        assert clamp_offset(-1000, 100, 60) == -29.0
        assert clamp_offset(5, 100, 60) == 5.0

    def test_padding_covers_displacement(self) -> None:
        assert warp_padding(0) == 2
        assert warp_padding(100) >= 100 * 2 ** 0.5

    def test_corner_controls_pinch_inward(self) -> None:
        controls = corner_controls(100, 50, 10, 5.0)
        assert controls[0] == ((10.0, 10.0), (15.0, 15.0))
        assert controls[3] == ((110.0, 60.0), (105.0, 55.0))

    @pytest.mark.parametrize("offset", [-30, 0, 30, 1000, (-20, 20)])
    def test_output_keeps_dimensions(self, offset, arena, engine, page, rng) -> None:
        cur = page(width=120, height=80)
        out = apply_warp(cur, arena, engine, 1.0, offset, 0.9, rng=rng)
        assert engine.identify(out) == (120, 80)

    def test_zero_offset_is_identity(self, arena, engine, noise_page, rng) -> None:
        cur = noise_page(width=100, height=100)
        before = pixels(cur)
        out = apply_warp(cur, arena, engine, 1.0, 0, 1.0, rng=rng)
        assert np.abs(pixels(out).astype(int) - before.astype(int)).max() <= 1

    @pytest.mark.parametrize("offset", [6.0, -6.0])
    def test_corner_moves_by_offset(self, offset, arena, engine, page) -> None:
        cur = page(width=60, height=40)
        with Image.open(cur) as im:
            marked = im.copy()
        marked.putpixel((0, 0), (0, 0, 0))
        marked.save(cur)
        pad = warp_padding(offset)
        out = engine.transform(cur, arena.path_for("pad"), [
            EnsureAlpha(),
            Extent(60 + 2 * pad, 40 + 2 * pad, TRANSPARENT),
            ShepardsDistort(corner_controls(60, 40, pad, offset)),
        ])
        with Image.open(out) as im:
            moved = im.getpixel((pad + int(offset), pad + int(offset)))
        assert moved == (0, 0, 0, 255)

    def test_intermediates_are_released(self, arena, engine, page, rng) -> None:
        cur = page()
        out = apply_warp(cur, arena, engine, 1.0, 15, rng=rng)
        assert arena.live == [out]
        assert out.name == "doc_warp.png"


class TestRotate:
    """Test cases for rotation and mirroring."""

    def test_zero_angle_is_identity(self, arena, engine, noise_page, rng) -> None:
        cur = noise_page()
        before = pixels(cur)
        out = apply_rotate(cur, arena, engine, 1.0, 0.0, rng=rng)
        assert np.array_equal(pixels(out), before)

    @pytest.mark.parametrize("angle", [-2.0, 5.0, 45.0, (-2, 5)])
    def test_keeps_dimensions(self, angle, arena, engine, page, rng) -> None:
        cur = page(width=101, height=67)
        out = apply_rotate(cur, arena, engine, 1.0, angle, rng=rng)
        assert engine.identify(out) == (101, 67)

    def test_uncovered_corners_are_white(self, arena, engine, page, rng) -> None:
        cur = page(color=(0, 0, 0))
        out = apply_rotate(cur, arena, engine, 1.0, 20.0, rng=rng)
        assert pixels(out)[0, 0] == 255

    def test_mirror_vertical(self, arena, engine, rng) -> None:
        cur = arena.path_for("base")
        img = Image.new("L", (20, 10), 255)
        img.paste(0, (0, 0, 20, 5))
        img.save(cur)
        out = apply_mirror(cur, arena, engine, 1.0, ["vertical"], rng=rng)
        arr = pixels(out)
        assert arr[0, 0] == 255 and arr[9, 0] == 0

    def test_mirror_180(self, arena, engine, rng) -> None:
        cur = arena.path_for("base")
        img = Image.new("L", (20, 10), 255)
        img.putpixel((0, 0), 0)
        img.save(cur)
        out = apply_mirror(cur, arena, engine, 1.0, ["180"], rng=rng)
        arr = pixels(out)
        assert arr[9, 19] == 0 and arr[0, 0] == 255

    def test_mirror_unknown_mode(self, arena, engine, page, rng) -> None:
        cur = page()
        with pytest.raises(ValueError):
            apply_mirror(cur, arena, engine, 1.0, ["sideways"], rng=rng)

    def test_mirror_without_modes_is_identity(self, arena, engine, page, rng) -> None:
        cur = page()
        assert apply_mirror(cur, arena, engine, 1.0, [], rng=rng) == cur


class TestDropout:
    """Test cases for white dropout blocks."""

    def test_block_count(self) -> None:
        assert block_count(100, 100, 0.1, 10) == 10
        assert block_count(10, 10, 0.001, 10) == 0

    def test_script_has_one_rectangle_per_block(self, rng) -> None:
        script = build_dropout_script(100, 100, 0.1, 10, rng)
        assert len(script.rectangles) == 10
        for x0, y0, x1, y1 in script.rectangles:
            assert x1 - x0 == 9 and y1 - y0 == 9
            assert 0 <= x0 and x1 < 100 and 0 <= y0 and y1 < 100

    def test_sub_pixel_size_uses_single_pixels(self, rng) -> None:
        script = build_dropout_script(10, 10, 0.5, 0.4, rng)
        assert len(script) == 50
        assert all(x0 == x1 and y0 == y1 for x0, y0, x1, y1 in script.rectangles)

    def test_nothing_fits(self, arena, engine, page, rng) -> None:
        cur = page(width=20, height=20)
        assert apply_dropout(cur, arena, engine, 1.0, 0.001, 10, rng=rng) == cur
        assert cur.exists()

    def test_blocks_on_black_page(self, arena, engine, page, rng) -> None:
        cur = page(width=100, height=100, color=(0, 0, 0))
        out = apply_dropout(cur, arena, engine, 1.0, 0.1, 10, rng=rng)
        white = int((pixels(out) == 255).sum())
        assert 100 <= white <= 1000
        assert out.name == "doc_rb.png"


class TestWhiteNoise:
    """Test cases for white speckle noise."""

    def test_exact_point_count(self, rng) -> None:
        script = build_speckle_script(50, 40, 0.01, rng)
        assert len(script.points) == 20

    def test_zero_density(self, rng) -> None:
        assert build_speckle_script(50, 40, 0.0, rng) is None

    def test_points_inside_page(self, rng) -> None:
        script = build_speckle_script(30, 20, 0.5, rng)
        assert all(0 <= x < 30 and 0 <= y < 20 for x, y in script.points)

    def test_speckles_on_black_page(self, arena, engine, page, rng) -> None:
        cur = page(width=100, height=80, color=(0, 0, 0))
        out = apply_white_noise(cur, arena, engine, 1.0, 0.01, rng=rng)
        white = int((pixels(out) == 255).sum())
        assert 0 < white <= 80


class TestStripesWhite:
    """Test cases for the white stripe masks."""

    def test_single_band_with_full_noise_mask(self) -> None:
        stripes = np.zeros((40, 30), dtype=np.uint8)
        stripes[10:13, :] = 255
        noise = np.full((40, 30), 255, dtype=np.uint8)
        assert np.array_equal(combine_masks(stripes, noise), stripes)

    def test_noise_mask_erases(self) -> None:
        stripes = np.full((10, 10), 255, dtype=np.uint8)
        noise = np.zeros((10, 10), dtype=np.uint8)
        assert not combine_masks(stripes, noise).any()

    def test_horizontal_band_spans_full_rows(self, rng) -> None:
        mask = build_stripe_mask(30, 40, 1, 3, 3, 1, 1, "horizontal", rng)
        rows = [int(r.all()) for r in (mask == 255)]
        assert sum(rows) == 3
        assert all(r.all() or not r.any() for r in mask)

    def test_vertical_band_spans_full_columns(self, rng) -> None:
        mask = build_stripe_mask(30, 40, 2, 2, 2, 3, 3, "vertical", rng)
        cols = mask.T
        assert all(c.all() or not c.any() for c in cols)
        assert 2 <= sum(int(c.all()) for c in cols) <= 4

    def test_unknown_direction(self, rng) -> None:
        with pytest.raises(ValueError):
            build_stripe_mask(10, 10, 1, 1, 1, 1, 1, "diagonal", rng)

    def test_noise_mask_extremes(self, rng) -> None:
        assert build_noise_mask(20, 20, 5, 0.0, rng).all()
        assert not build_noise_mask(20, 20, 5, 1.0, rng).any()

    def test_stripes_turn_black_page_white(self, arena, engine, page, rng) -> None:
        cur = page(width=60, height=60, color=(0, 0, 0))
        out = apply_stripes_white(cur, arena, engine, 1.0, 2, 3, 3, 5, 5,
                                  "horizontal", 1.0, 0.0, rng=rng)
        arr = pixels(out)
        full_rows = int((arr == 255).all(axis=1).sum())
        assert full_rows >= 3

    def test_fully_eroded_mask_is_identity(self, arena, engine, page, rng) -> None:
        cur = page()
        out = apply_stripes_white(cur, arena, engine, 1.0, 2, 3, 3, 5, 5,
                                  "vertical", 1.0, 1.0, rng=rng)
        assert out == cur


class TestStripesBlack:
    """Test cases for black speckle clusters."""

    def test_points_stay_in_box(self, rng) -> None:
        pts = speckle_points(40, 30, 0.8, 1, rng)
        assert len(pts) > 0
        assert pts[:, 0].min() >= 0 and pts[:, 0].max() < 40
        assert pts[:, 1].min() >= 0 and pts[:, 1].max() < 30

    def test_line_spacing_keeps_every_nth_row(self, rng) -> None:
        pts = speckle_points(40, 40, 1.0, 3, rng)
        assert len(pts) > 0
        assert (pts[:, 1] % 3 == 0).all()

    def test_empty_cloud(self, rng) -> None:
        assert len(speckle_points(2, 2, 0.0, 1, rng)) == 0

    def test_smear_is_longest_at_center(self) -> None:
        assert smear_length(50, 50, 100, 100, 1, 15) == 15
        assert smear_length(0, 0, 100, 100, 1, 15) == 1

    def test_clusters_darken_white_page(self, arena, engine, page, rng) -> None:
        cur = page(width=80, height=80)
        out = apply_stripes(cur, arena, engine, 1.0, 3, 30, 30, 0.9,
                            smear=False, rng=rng)
        assert (pixels(out) < 255).any()
        assert out.name.startswith("doc_stripes_blob")

    def test_oversized_area_is_clamped(self, arena, engine, page, rng) -> None:
        cur = page(width=50, height=40)
        out = apply_stripes(cur, arena, engine, 1.0, 2, 500, 2000, 0.5,
                            smear=True, smear_min=1, smear_max=5, direction=90, rng=rng)
        assert engine.identify(out) == (50, 40)

    def test_empty_clusters_keep_input(self, arena, engine, page, rng) -> None:
        cur = page()
        assert apply_stripes(cur, arena, engine, 1.0, 3, 20, 20, 0.0, rng=rng) == cur


class TestBrightness:
    """Test cases for the brightness options."""

    def test_modulate(self, rng) -> None:
        assert brightness_operations("modulate", 10, 20, 5, 5, rng) == [Modulate(110.0)]

    def test_level(self, rng) -> None:
        assert brightness_operations("level", 10, 90, 5, 5, rng) == [Level(10.0, 90.0)]

    def test_overlay_opacity(self, rng) -> None:
        (op,) = brightness_operations("overlay", 50, 50, 8, 6, rng)
        assert isinstance(op, Composite)
        assert op.layer == CanvasLayer(8, 6, (255, 255, 255, 128))

    def test_unknown_option(self, rng) -> None:
        with pytest.raises(ValueError):
            brightness_operations("gamma", 0, 0, 5, 5, rng)

    def test_overlay_lightens_black_page(self, arena, engine, page, rng) -> None:
        cur = page(color=(0, 0, 0))
        out = apply_brightness(cur, arena, engine, 1.0, "overlay", 50, 50, rng=rng)
        value = int(pixels(out)[10, 10])
        assert 110 <= value <= 145


class TestRaster:
    def test_output_is_two_level(self, arena, engine, page, rng) -> None:
        cur = page(color=(128, 128, 128), mode="RGB")
        out = apply_raster(cur, arena, engine, 1.0, "o4x4", rng=rng)
        assert set(np.unique(pixels(out))) == {0, 255}

    def test_unknown_map(self, arena, engine, page, rng) -> None:
        cur = page()
        with pytest.raises(ValueError):
            apply_raster(cur, arena, engine, 1.0, "o5x5", rng=rng)


class TestTileShift:
    """Test cases for tile planning and pasting."""

    def test_tiles_clamped_to_page(self, rng) -> None:
        ops = plan_tiles(50, 30, 5, 100, 10, 0, 0, 0, rng)
        assert len(ops) == 5
        for op in ops:
            x0, y0, x1, y1 = op.layer.box
            size = x1 - x0
            assert size == y1 - y0 <= 30
            assert op.x + size <= 50 and op.y + size <= 30

    def test_paste_pulled_back_inside(self, rng) -> None:
        for op in plan_tiles(40, 40, 20, 10, 0, 35, 35, 5, rng):
            assert op.x + 10 <= 40 and op.y + 10 <= 40

    def test_negative_offset_pulled_back_inside(self, rng) -> None:
        for op in plan_tiles(40, 40, 20, 10, 0, -35, -35, 5, rng):
            assert op.x >= 0 and op.y >= 0

    def test_zero_tiles_is_identity(self, arena, engine, page, rng) -> None:
        cur = page()
        assert apply_tileshift(cur, arena, engine, 1.0, 0, 10, 0, 1, 1, 0, rng=rng) == cur


class TestTone:
    """Test cases for the always-on tone stages."""

    def test_flatten_alpha_onto_white(self, arena, engine, page) -> None:
        cur = page(color=(0, 0, 0, 0), mode="RGBA")
        out = tone.flatten_alpha(cur, arena, engine)
        with Image.open(out) as im:
            assert im.mode == "RGB"
            assert im.getpixel((0, 0)) == (255, 255, 255)

    def test_grayscale(self, arena, engine, page) -> None:
        cur = page(color=(200, 10, 10))
        out = tone.to_grayscale(cur, arena, engine)
        with Image.open(out) as im:
            assert im.mode == "L"
        assert out.name == "doc_gray.png"

    @pytest.mark.parametrize("level,expected", [(200, 255), (100, 0)])
    def test_threshold(self, level, expected, arena, engine, page) -> None:
        cur = page(color=level, mode="L")
        out = tone.threshold(cur, arena, engine, 50)
        assert set(np.unique(pixels(out))) == {expected}

    def test_diffuse_two_colors(self, arena, engine, page) -> None:
        cur = page(color=100, mode="L")
        out = tone.diffuse(cur, arena, engine, "FloydSteinberg", 2)
        assert set(np.unique(pixels(out))) <= {0, 255}

    def test_diffuse_unknown_method(self, arena, engine, page) -> None:
        cur = page(mode="L", color=255)
        with pytest.raises(ValueError):
            tone.diffuse(cur, arena, engine, "Atkinson")

    def test_rasterize_suffix(self, arena, engine, page) -> None:
        cur = page(mode="L", color=128)
        out = tone.rasterize(cur, arena, engine, "o8x8")
        assert out.name == "doc_rasterized.png"

    def test_blur_zero_keeps_pixels(self, arena, engine, noise_page) -> None:
        cur = noise_page()
        before = pixels(cur)
        out = tone.blur(cur, arena, engine, 0.0)
        assert np.array_equal(pixels(out), before)
