"""
Sprite sheet to animated GIF transcoder.

A sprite sheet is a single image holding an N x N grid of equally sized
animation frames, read left-to-right, top-to-bottom. Each frame is cut out,
scaled with nearest-neighbour sampling, its anti-aliased alpha fringe is
eroded away, transparent pixels are painted with a sentinel colour, and the
result is quantized and written as one frame of a looping GIF whose
sentinel palette entry is flagged transparent.
"""

import io
import logging
from dataclasses import dataclass
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError

from .errors import TranscodingError

logger = logging.getLogger(__name__)

# Grid configuration
MIN_GRID_SIZE = 2
MAX_GRID_SIZE = 6
DEFAULT_GRID_SIZE = 4

# Edge cleanup
ALPHA_THRESHOLD = 200
EROSION_PASSES = 2

# Colour written into transparent pixels (bright magenta)
SENTINEL_COLOR = (255, 0, 255)

DEFAULT_FRAME_SIZE = 200
DEFAULT_FPS = 16
MAX_PALETTE_COLORS = 256

AlphaMask = list[bool]


@dataclass(frozen=True)
class Frame:
    """One cell of the sprite sheet grid."""
    index: int
    column: int
    row: int
    width: int
    height: int

    @property
    def box(self) -> tuple[int, int, int, int]:
        left = self.column * self.width
        top = self.row * self.height
        return (left, top, left + self.width, top + self.height)


def clamp_grid_size(value: Union[int, str, None], default: int = DEFAULT_GRID_SIZE) -> int:
    try:
        size = int(value)
    except (TypeError, ValueError):
        size = default
    return max(MIN_GRID_SIZE, min(MAX_GRID_SIZE, size))


def decompose_grid(image: Union[Image.Image, tuple[int, int]], grid_size: int) -> list[Frame]:
    """
    Slice an image's raster into grid frames in row-major order.

    Frame dimensions are floor(width / N) x floor(height / N); remainder
    pixels on the right and bottom edges are dropped.

    Args:
        image: PIL image or a (width, height) tuple.
        grid_size: N, clamped to [2, 6].

    Raises:
        TranscodingError: the computed frame size is zero.
    """
    width, height = image if isinstance(image, tuple) else image.size
    grid = clamp_grid_size(grid_size)
    frame_width = width // grid
    frame_height = height // grid
    if frame_width <= 0 or frame_height <= 0:
        raise TranscodingError(f"Image {width}x{height} is too small for a {grid}x{grid} grid")

    return [
        Frame(index=i, column=i % grid, row=i // grid, width=frame_width, height=frame_height)
        for i in range(grid * grid)
    ]


# ============================================================================
# MASKING
# ============================================================================

def erode_mask(mask: AlphaMask, width: int, height: int) -> AlphaMask:
    """
    One 4-connected erosion pass: an opaque pixel touching a transparent
    pixel above, below, left or right becomes transparent.
    """
    result = list(mask)
    for y in range(height):
        row_start = y * width
        for x in range(width):
            idx = row_start + x
            if mask[idx]:
                continue
            if ((x > 0 and mask[idx - 1]) or
                    (x < width - 1 and mask[idx + 1]) or
                    (y > 0 and mask[idx - width]) or
                    (y < height - 1 and mask[idx + width])):
                result[idx] = True
    return result


def clean_frame_alpha(
    rgba: bytes,
    width: int,
    height: int,
    threshold: int = ALPHA_THRESHOLD,
    passes: int = EROSION_PASSES,
) -> AlphaMask:
    """
    Build the transparency mask for one RGBA frame.

    Pixels with alpha below `threshold` are transparent; `passes` erosion
    passes then strip the semi-transparent fringe left by background removal.
    """
    if len(rgba) != width * height * 4:
        raise TranscodingError(f"Expected {width * height * 4} RGBA bytes, got {len(rgba)}")

    mask = [rgba[p + 3] < threshold for p in range(0, len(rgba), 4)]
    for _ in range(passes):
        mask = erode_mask(mask, width, height)
    return mask


def composite_with_sentinel(
    rgba: bytes,
    mask: AlphaMask,
    sentinel: tuple[int, int, int] = SENTINEL_COLOR,
) -> bytes:
    """Paint masked pixels with the sentinel colour; force alpha to 255 everywhere."""
    pixels = bytearray(len(rgba))
    sr, sg, sb = sentinel
    for i, transparent in enumerate(mask):
        p = i * 4
        if transparent:
            pixels[p] = sr
            pixels[p + 1] = sg
            pixels[p + 2] = sb
        else:
            pixels[p] = rgba[p]
            pixels[p + 1] = rgba[p + 1]
            pixels[p + 2] = rgba[p + 2]
        pixels[p + 3] = 255
    return bytes(pixels)


# ============================================================================
# PALETTE
# ============================================================================

def find_palette_index(image: Image.Image, color: tuple[int, int, int]) -> Optional[int]:
    """Index of the first palette entry exactly equal to `color`, if any."""
    palette = image.getpalette() or []
    target = list(color)
    for i in range(0, len(palette) - 2, 3):
        if palette[i:i + 3] == target:
            return i // 3
    return None


def quantize_frame(
    pixels: bytes,
    size: int,
    sentinel: tuple[int, int, int] = SENTINEL_COLOR,
) -> Image.Image:
    """
    Quantize a composited RGBA buffer to a paletted frame.

    The sentinel's palette index, when present, is stored as the frame's
    transparency index. A frame with no masked pixels has no sentinel entry
    and gets no transparency.
    """
    rgb = Image.frombytes("RGBA", (size, size), pixels).convert("RGB")
    frame = rgb.quantize(colors=MAX_PALETTE_COLORS)
    transparent_index = find_palette_index(frame, sentinel)
    if transparent_index is not None:
        frame.info["transparency"] = transparent_index
    else:
        frame.info.pop("transparency", None)
    return frame


# ============================================================================
# ENCODING
# ============================================================================

def frame_delay_ms(fps: float) -> int:
    if fps <= 0:
        raise TranscodingError(f"fps must be positive, got {fps}")
    return round(1000 / fps)


def render_frame(
    sheet: Image.Image,
    frame: Frame,
    frame_size: int,
    threshold: int = ALPHA_THRESHOLD,
    passes: int = EROSION_PASSES,
    sentinel: tuple[int, int, int] = SENTINEL_COLOR,
) -> Image.Image:
    """Crop, scale, clean and quantize one grid cell."""
    cell = sheet.crop(frame.box).resize((frame_size, frame_size), Image.Resampling.NEAREST)
    rgba = cell.convert("RGBA").tobytes()
    mask = clean_frame_alpha(rgba, frame_size, frame_size, threshold=threshold, passes=passes)
    pixels = composite_with_sentinel(rgba, mask, sentinel)
    return quantize_frame(pixels, frame_size, sentinel)


def encode_loop(
    sheet: Image.Image,
    frame_size: int = DEFAULT_FRAME_SIZE,
    fps: float = DEFAULT_FPS,
    grid_size: int = DEFAULT_GRID_SIZE,
    threshold: int = ALPHA_THRESHOLD,
    passes: int = EROSION_PASSES,
    sentinel: tuple[int, int, int] = SENTINEL_COLOR,
) -> bytes:
    """
    Encode every grid frame, in index order, into an endlessly looping GIF.

    Args:
        sheet: Sprite sheet image (any mode; alpha is honoured when present).
        frame_size: Output edge length in pixels for every frame.
        fps: Playback rate; per-frame delay is round(1000 / fps) ms.
        grid_size: N for the N x N grid.

    Returns:
        GIF bytes.
    """
    if frame_size <= 0:
        raise TranscodingError(f"frame_size must be positive, got {frame_size}")
    delay = frame_delay_ms(fps)

    frames = [
        render_frame(sheet, frame, frame_size, threshold=threshold, passes=passes, sentinel=sentinel)
        for frame in decompose_grid(sheet, grid_size)
    ]

    buffer = io.BytesIO()
    frames[0].save(
        buffer,
        format="GIF",
        save_all=True,
        append_images=frames[1:],
        duration=delay,
        loop=0,
        disposal=2,
        optimize=False,
    )
    return buffer.getvalue()


def load_image(image_bytes: bytes) -> Image.Image:
    """Decode image bytes, raising TranscodingError for unreadable input."""
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise TranscodingError(f"Unreadable image: {e}") from e
    return image


def transcode_sprite_sheet(
    image_bytes: bytes,
    grid_size: int = DEFAULT_GRID_SIZE,
    frame_size: int = DEFAULT_FRAME_SIZE,
    fps: float = DEFAULT_FPS,
) -> bytes:
    """
    Transcoding entry point: sprite sheet bytes in, GIF bytes out.

    Raises:
        TranscodingError: unreadable image, zero-sized frames or bad parameters.
    """
    sheet = load_image(image_bytes)
    grid = clamp_grid_size(grid_size)
    gif = encode_loop(sheet, frame_size=frame_size, fps=fps, grid_size=grid)
    logger.debug(f"Encoded {grid * grid} frames at {frame_size}px, {len(gif)} bytes")
    return gif
