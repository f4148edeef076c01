"""
  ==============================================================================

   This file is part of the YUP library.
   Copyright (c) 2025 - kunitoki@gmail.com

   YUP is an open source library subject to open-source licensing.

   The code included in this file is provided under the terms of the ISC license
   http://www.isc.org/downloads/software-support-policy/isc-license. Permission
   to use, copy, modify, and/or distribute this software for any purpose with or
   without fee is hereby granted provided that the above copyright notice and
   this permission notice appear in all copies.

   YUP IS PROVIDED "AS IS" WITHOUT ANY WARRANTY, AND ALL WARRANTIES, WHETHER
   EXPRESSED OR IMPLIED, INCLUDING MERCHANTABILITY AND FITNESS FOR PURPOSE, ARE
   DISCLAIMED.

  ==============================================================================

Turns the PNG screenshots produced by the renderer into raw RGBA pixels.

Browser screenshots taken with a transparent background carry an alpha
channel; everything else (palette, greyscale, RGB) is expanded to RGBA so the
sender always receives four bytes per pixel.
"""

from __future__ import annotations

from dataclasses import dataclass
import io
import struct
from typing import Union
import zlib

from PIL import Image

from .errors import DecodeError

__all__ = ["BYTES_PER_PIXEL", "DecodedImage", "decode_png"]

BYTES_PER_PIXEL = 4

_DECODE_FAILURES = (OSError, ValueError, SyntaxError, EOFError, struct.error, zlib.error)


@dataclass(frozen=True, slots=True)
class DecodedImage:
    pixels: bytes
    width: int
    height: int


def decode_png (data: Union[bytes, bytearray, memoryview]) -> DecodedImage:
    """Decode ``data`` into an RGBA :class:`DecodedImage`.

    Raises :class:`~ndi_companion.errors.DecodeError` when the buffer is empty,
    truncated, not an image, or decodes to a payload whose length disagrees
    with the dimensions declared in its header.
    """

    if not data:
        raise DecodeError("Empty image buffer")

    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            width, height = image.size
            rgba = image if image.mode == "RGBA" else image.convert("RGBA")
            pixels = rgba.tobytes()
    except _DECODE_FAILURES as exc:
        raise DecodeError(f"Unable to decode image: {exc}") from exc

    expected = width * height * BYTES_PER_PIXEL
    if width <= 0 or height <= 0 or len(pixels) != expected:
        raise DecodeError(
            f"Decoded payload is {len(pixels)} bytes; {width}x{height} RGBA requires {expected}"
        )

    return DecodedImage(pixels=pixels, width=width, height=height)
