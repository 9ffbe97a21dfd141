"""
Render images as ASCII art for terminal previews.

Pixels are point-sampled on a fixed stride (3 columns, 6 rows by default, which
roughly matches a terminal cell's aspect ratio) and each sample's brightness is
bucketed into a glyph ramp ordered from darkest to brightest.
"""

import math
import shutil
from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

# dark -> bright
DEFAULT_RAMP = ' .:-=+'
DEFAULT_STEP_X = 3
DEFAULT_STEP_Y = 6


class AsciiArtError(Exception):
    """Base class for ASCII rendering failures."""


class DecodeFailure(AsciiArtError):
    """The source image could not be opened or decoded."""


class InvalidDimensions(AsciiArtError, ValueError):
    """Target size or sampling strides are not positive."""


class InvalidBrightness(AsciiArtError, ValueError):
    """Malformed pixel data: NaN, out of range, or an unsupported dtype."""


def _as_pixels(image: Union[Image.Image, np.ndarray]) -> np.ndarray:
    if isinstance(image, Image.Image):
        if image.mode not in ('RGB', 'L'):
            image = image.convert('RGB')
        return np.asarray(image)
    return np.asarray(image)


def _channel_scale(dtype) -> float:
    if dtype == np.uint8:
        return 255.0
    if np.issubdtype(dtype, np.floating):
        return 1.0
    raise InvalidBrightness(f'unsupported pixel dtype {dtype} (expected uint8 or floating point)')


def brightness_at(pixels: Union[Image.Image, np.ndarray], x: int, y: int) -> float:
    """Return the HSL lightness of the pixel at column ``x``, row ``y`` in [0, 1].

    Lightness is ``(max(R, G, B) + min(R, G, B)) / 2``. uint8 channels are read
    in [0, 255], floating point channels in [0, 1]. Grayscale arrays are read as
    R = G = B.

    Raises:
        InvalidBrightness: unsupported dtype or a channel outside its range
    """
    if isinstance(pixels, Image.Image):
        pixels = _as_pixels(pixels)
    scale = _channel_scale(pixels.dtype)
    px = pixels[y, x]
    if np.ndim(px) == 0:
        value = float(px) / scale
    else:
        rgb = np.asarray(px[:3], dtype=np.float64)
        value = float(rgb.max() + rgb.min()) / (2 * scale)
    if not math.isnan(value) and not 0.0 <= value <= 1.0:
        raise InvalidBrightness(f'pixel ({x}, {y}) is outside the {pixels.dtype} range: {px!r}')
    return value


def glyph_index(brightness: float, n: int) -> int:
    """Bucket a brightness value into an index of an ``n`` glyph ramp."""
    if n < 2:
        raise ValueError(f'glyph ramp needs at least 2 entries, got {n}')
    if math.isnan(brightness):
        raise InvalidBrightness('brightness is NaN (malformed pixel data)')
    idx = math.floor(brightness * (n - 1))
    return min(max(idx, 0), n - 1)


def glyph_for(brightness: float, ramp: str = DEFAULT_RAMP) -> str:
    return ramp[glyph_index(brightness, len(ramp))]


def render_frame(image: Union[Image.Image, np.ndarray], ramp: str = DEFAULT_RAMP,
                 step_x: int = DEFAULT_STEP_X, step_y: int = DEFAULT_STEP_Y) -> str:
    """Convert an already resized image into newline-terminated rows of glyphs.

    Args:
        image: PIL image or HxW(x3) array, uint8 in [0, 255] or float in [0, 1]
        ramp: glyphs ordered from darkest to brightest
        step_x: column stride between samples
        step_y: row stride between samples

    Returns:
        ceil(H / step_y) rows of ceil(W / step_x) glyphs, each ending in a newline.

    Raises:
        InvalidDimensions: empty image or non-positive stride
        InvalidBrightness: a sampled pixel is NaN or outside its dtype range
    """
    if len(ramp) < 2:
        raise ValueError(f'glyph ramp needs at least 2 entries, got {len(ramp)!r}')
    if step_x < 1 or step_y < 1:
        raise InvalidDimensions(f'sampling strides must be >= 1, got {step_x}x{step_y}')

    pixels = _as_pixels(image)
    height, width = pixels.shape[:2]
    if width <= 0 or height <= 0:
        raise InvalidDimensions(f'cannot render a {width}x{height} image')

    rows = []
    for y in range(0, height, step_y):
        row = []
        for x in range(0, width, step_x):
            row.append(glyph_for(brightness_at(pixels, x, y), ramp))
        rows.append(''.join(row) + '\n')
    return ''.join(rows)


def terminal_size() -> Tuple[int, int]:
    """Return (columns, rows) of the active terminal, minus one of each."""
    size = shutil.get_terminal_size()
    return size.columns - 1, size.lines - 1


def image_to_ascii(path: str, width: Optional[int] = None, height: Optional[int] = None,
                   ramp: str = DEFAULT_RAMP, step_x: int = DEFAULT_STEP_X,
                   step_y: int = DEFAULT_STEP_Y) -> str:
    """Decode an image file, resize it to the target surface and render it.

    ``width`` and ``height`` default to the terminal size.
    """
    if width is None or height is None:
        cols, lines = terminal_size()
        width = cols if width is None else width
        height = lines if height is None else height
    if width <= 0 or height <= 0:
        raise InvalidDimensions(f'target size must be positive, got {width}x{height}')

    try:
        with Image.open(path) as img:
            img = img.convert('RGB')
    except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise DecodeFailure(f'could not decode {path}: {e}') from e

    resized = img.resize((width, height))
    return render_frame(resized, ramp=ramp, step_x=step_x, step_y=step_y)
