"""Render external glyph bitmaps as inline PNG images."""

from __future__ import annotations

import base64
import io

from PIL import Image

NARROW_GLYPH_SIZE = (8, 16)
WIDE_GLYPH_SIZE = (16, 16)


def bitmap_row_bytes(width: int) -> int:
    return (width + 7) // 8


def bitmap_to_png(bitmap: bytes, size: tuple[int, int]) -> bytes:
    """
    Convert a packed 1-bit glyph bitmap to PNG bytes.

    Rows are stored MSB first and padded to whole bytes; a set bit is an
    inked (black) pixel. Pillow's ``1`` mode treats a set bit as white, so
    the data is inverted before decoding.
    """
    width, height = size
    expected = bitmap_row_bytes(width) * height
    if len(bitmap) != expected:
        raise ValueError(
            f"Glyph bitmap for {width}x{height} needs {expected} bytes, got {len(bitmap)}"
        )
    inverted = bytes(byte ^ 0xFF for byte in bitmap)
    image = Image.frombytes("1", (width, height), inverted)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def inline_image_markup(bitmap: bytes, size: tuple[int, int]) -> str:
    """Return an ``<img>`` fragment embedding the glyph as a base64 data URI."""
    width, height = size
    payload = base64.b64encode(bitmap_to_png(bitmap, size)).decode("ascii")
    return (
        f'<img class="gaiji" src="data:image/png;base64,{payload}" '
        f'width="{width}" height="{height}" alt="">'
    )


__all__ = [
    "NARROW_GLYPH_SIZE",
    "WIDE_GLYPH_SIZE",
    "bitmap_row_bytes",
    "bitmap_to_png",
    "inline_image_markup",
]
