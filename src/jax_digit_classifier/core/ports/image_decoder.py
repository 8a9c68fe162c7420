from __future__ import annotations

from typing import Protocol

import numpy as np


class ImageDecoderPort(Protocol):
    """Port for reading image files as uint8 pixel arrays of shape (height, width).

    `decode_grayscale` raises ImageDecodeError when a file cannot be read.
    """

    def decode_grayscale(self, path: str) -> np.ndarray: ...

    def resize(self, pixels: np.ndarray, width: int, height: int) -> np.ndarray: ...

    def binarize_threshold(self, pixels: np.ndarray, threshold: int) -> np.ndarray: ...
