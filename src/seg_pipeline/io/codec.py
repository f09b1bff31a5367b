"""PIL-backed image codec: decode, encode, resize and channel coercion.

Images move through this module as HWC numpy arrays.  Resizing uses bilinear
interpolation; label grids are never resized here (see
``seg_pipeline.transforms.labels``).
"""

from __future__ import annotations

import io

import numpy as np
from PIL import Image

# JPEG quality for encoded records (95 is visually lossless)
_JPEG_QUALITY = 95


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes into an HWC uint8 array.

    Grayscale images keep a single channel; every other mode becomes RGB.
    """
    img = Image.open(io.BytesIO(data))
    if img.mode != "L":
        img = img.convert("RGB")
    arr = np.asarray(img, dtype=np.uint8)
    if arr.ndim == 2:
        arr = arr[:, :, np.newaxis]
    return arr


def encode_image(image: np.ndarray, fmt: str = "JPEG") -> bytes:
    """Encode an HWC uint8 array (1 or 3 channels) as JPEG or PNG bytes."""
    img = _to_pil(image)
    buf = io.BytesIO()
    if fmt.upper() == "JPEG":
        img.save(buf, format="JPEG", quality=_JPEG_QUALITY)
    else:
        img.save(buf, format=fmt.upper())
    return buf.getvalue()


def resize_image(image: np.ndarray, height: int, width: int) -> np.ndarray:
    """Bilinear resize of an HWC array to ``(height, width)``.

    uint8 images with 1 or 3 channels are resized natively; anything else is
    resized channel by channel in PIL's 32-bit float mode and returned as
    float32.
    """
    if image.shape[0] == height and image.shape[1] == width:
        return image
    if image.dtype == np.uint8 and image.shape[2] in (1, 3):
        resized = _to_pil(image).resize((width, height), Image.BILINEAR)
        arr = np.asarray(resized, dtype=np.uint8)
        return arr[:, :, np.newaxis] if arr.ndim == 2 else arr

    planes = [
        np.asarray(
            Image.fromarray(
                np.ascontiguousarray(image[:, :, c], dtype=np.float32)
            ).resize((width, height), Image.BILINEAR),
            dtype=np.float32,
        )
        for c in range(image.shape[2])
    ]
    return np.stack(planes, axis=2)


def coerce_channels(image: np.ndarray, channels: int) -> np.ndarray:
    """Convert an HWC uint8 image between grayscale and RGB.

    Raises:
        ValueError: If no conversion between the channel counts exists.
    """
    current = image.shape[2]
    if current == channels:
        return image
    if (current, channels) not in ((1, 3), (3, 1)):
        raise ValueError(f"Cannot convert a {current}-channel image to {channels}")
    mode = "RGB" if channels == 3 else "L"
    arr = np.asarray(_to_pil(image).convert(mode), dtype=np.uint8)
    return arr[:, :, np.newaxis] if arr.ndim == 2 else arr


def _to_pil(image: np.ndarray) -> Image.Image:
    if image.ndim == 3 and image.shape[2] == 1:
        return Image.fromarray(np.ascontiguousarray(image[:, :, 0], dtype=np.uint8))
    return Image.fromarray(np.ascontiguousarray(image, dtype=np.uint8))
