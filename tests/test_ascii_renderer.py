import math

import numpy as np
import pytest
from PIL import Image

from imageclassifier.ascii.renderer import (
    DEFAULT_RAMP,
    DecodeFailure,
    InvalidBrightness,
    InvalidDimensions,
    brightness_at,
    glyph_for,
    glyph_index,
    image_to_ascii,
    render_frame,
)


def solid(width, height, color):
    return Image.new('RGB', (width, height), color)


def test_brightness_is_hsl_lightness():
    img = solid(1, 1, (255, 0, 0))
    assert brightness_at(img, 0, 0) == pytest.approx(0.5)
    assert brightness_at(solid(1, 1, (0, 0, 0)), 0, 0) == 0.0
    assert brightness_at(solid(1, 1, (255, 255, 255)), 0, 0) == 1.0


def test_brightness_reads_grayscale_arrays():
    pixels = np.full((2, 2), 51, dtype=np.uint8)
    assert brightness_at(pixels, 1, 1) == pytest.approx(0.2)


@pytest.mark.parametrize('n', [2, 3, 6, 10, 70])
def test_glyph_index_stays_in_range(n):
    for b in np.linspace(0.0, 1.0, 101):
        assert 0 <= glyph_index(float(b), n) <= n - 1


def test_glyph_index_clamps_out_of_range_values():
    assert glyph_index(-0.5, 6) == 0
    assert glyph_index(1.7, 6) == 5


def test_glyph_index_is_monotonic():
    values = np.linspace(0.0, 1.0, 257)
    indices = [glyph_index(float(b), 6) for b in values]
    assert indices == sorted(indices)


def test_glyph_index_rejects_nan():
    with pytest.raises(InvalidBrightness):
        glyph_index(math.nan, 6)


def test_glyph_index_rejects_short_ramp():
    with pytest.raises(ValueError):
        glyph_index(0.5, 1)


def test_glyph_for_default_ramp_ends():
    assert glyph_for(0.0) == DEFAULT_RAMP[0]
    assert glyph_for(1.0) == DEFAULT_RAMP[-1]


def test_mid_gray_scenario():
    # (128 + 128) / 510 ~= 0.502 -> floor(0.502 * 5) = 2 -> ':'
    img = solid(6, 12, (128, 128, 128))
    assert render_frame(img, ramp=' .:-=+', step_x=3, step_y=6) == '::\n::\n'


def test_black_and_white_use_ramp_ends():
    black = render_frame(solid(9, 12, (0, 0, 0)))
    white = render_frame(solid(9, 12, (255, 255, 255)))
    assert set(black.replace('\n', '')) == {DEFAULT_RAMP[0]}
    assert set(white.replace('\n', '')) == {DEFAULT_RAMP[-1]}


@pytest.mark.parametrize('width,height', [(1, 1), (7, 13), (10, 6), (31, 17)])
def test_frame_shape(width, height):
    frame = render_frame(solid(width, height, (40, 90, 200)), step_x=3, step_y=6)
    rows = frame.split('\n')
    assert rows[-1] == ''
    rows = rows[:-1]
    assert len(rows) == math.ceil(height / 6)
    assert all(len(r) == math.ceil(width / 3) for r in rows)


def test_render_samples_top_left_of_each_block():
    img = solid(6, 6, (0, 0, 0))
    img.putpixel((3, 0), (255, 255, 255))
    img.putpixel((4, 0), (255, 255, 255))
    assert render_frame(img, ramp='01', step_x=3, step_y=6) == '01\n'


def test_render_accepts_arrays_and_is_idempotent():
    rng = np.random.default_rng(0)
    pixels = rng.integers(0, 256, size=(24, 30, 3), dtype=np.uint8)
    first = render_frame(pixels)
    assert first == render_frame(pixels)
    assert first == render_frame(Image.fromarray(pixels))


def test_render_rejects_empty_image():
    with pytest.raises(InvalidDimensions):
        render_frame(np.zeros((0, 5, 3), dtype=np.uint8))
    with pytest.raises(InvalidDimensions):
        render_frame(np.zeros((5, 0, 3), dtype=np.uint8))


def test_render_rejects_bad_strides():
    with pytest.raises(InvalidDimensions):
        render_frame(solid(4, 4, (0, 0, 0)), step_x=0)


def test_render_rejects_nan_pixels():
    pixels = np.full((6, 6, 3), np.nan)
    with pytest.raises(InvalidBrightness):
        render_frame(pixels)


def test_image_to_ascii_resizes_to_target(tmp_path):
    path = tmp_path / 'gray.png'
    solid(50, 40, (128, 128, 128)).save(path)
    art = image_to_ascii(str(path), width=6, height=12)
    assert art == '::\n::\n'


def test_image_to_ascii_defaults_to_terminal_size(tmp_path, mocker):
    path = tmp_path / 'white.png'
    solid(10, 10, (255, 255, 255)).save(path)
    mocker.patch('imageclassifier.ascii.renderer.terminal_size', return_value=(9, 12))
    assert image_to_ascii(str(path)) == '+++\n+++\n'


def test_image_to_ascii_decode_failure(tmp_path):
    bad = tmp_path / 'not_an_image.jpg'
    bad.write_text('definitely not a jpeg')
    with pytest.raises(DecodeFailure):
        image_to_ascii(str(bad), width=10, height=10)
    with pytest.raises(DecodeFailure):
        image_to_ascii(str(tmp_path / 'missing.jpg'), width=10, height=10)


def test_image_to_ascii_rejects_non_positive_target(tmp_path):
    path = tmp_path / 'img.png'
    solid(4, 4, (0, 0, 0)).save(path)
    with pytest.raises(InvalidDimensions):
        image_to_ascii(str(path), width=0, height=10)


def test_normalized_float_grid_reads_in_unit_range():
    assert render_frame(np.ones((6, 6, 3))) == '++\n'
    assert render_frame(np.zeros((6, 6, 3), dtype=np.float32)) == '  \n'
    assert brightness_at(np.full((1, 1, 3), 0.5), 0, 0) == pytest.approx(0.5)


def test_out_of_range_pixels_are_rejected():
    with pytest.raises(InvalidBrightness):
        render_frame(np.full((6, 6, 3), 255.0))
    with pytest.raises(InvalidBrightness):
        brightness_at(np.full((1, 1, 3), -0.2), 0, 0)


def test_unsupported_pixel_dtype_is_rejected():
    with pytest.raises(InvalidBrightness):
        brightness_at(np.full((1, 1, 3), 1000, dtype=np.int32), 0, 0)


def test_image_to_ascii_decompression_bomb(tmp_path, monkeypatch):
    path = tmp_path / 'big.png'
    solid(40, 40, (0, 0, 0)).save(path)
    monkeypatch.setattr(Image, 'MAX_IMAGE_PIXELS', 10)
    with pytest.raises(DecodeFailure):
        image_to_ascii(str(path), width=6, height=6)
