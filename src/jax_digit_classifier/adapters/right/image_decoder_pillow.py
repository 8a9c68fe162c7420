from __future__ import annotations

import numpy as np
from PIL import Image, UnidentifiedImageError

from jax_digit_classifier.core.domain.errors.training import ImageDecodeError
from jax_digit_classifier.core.ports.image_decoder import ImageDecoderPort


class PillowImageDecoder(ImageDecoderPort):
    """Pillow-backed grayscale decoding, bilinear resizing and binary thresholding."""

    def decode_grayscale(self, path: str) -> np.ndarray:
        try:
            with Image.open(path) as img:
                return np.asarray(img.convert("L"), dtype=np.uint8).copy()
        except (OSError, UnidentifiedImageError) as exc:
            raise ImageDecodeError(f"cannot decode image {path}: {exc}") from exc

    def resize(self, pixels: np.ndarray, width: int, height: int) -> np.ndarray:
        pixels = np.asarray(pixels, dtype=np.uint8)
        if pixels.shape == (height, width):
            return pixels
        img = Image.fromarray(pixels).resize((width, height), Image.Resampling.BILINEAR)
        return np.asarray(img, dtype=np.uint8)

    def binarize_threshold(self, pixels: np.ndarray, threshold: int) -> np.ndarray:
        # Strictly above the threshold -> 255, everything else -> 0.
        pixels = np.asarray(pixels, dtype=np.uint8)
        return np.where(pixels > threshold, 255, 0).astype(np.uint8)
