from __future__ import annotations

import os

from jax_digit_classifier.core.domain.entities.dataset import SampleImage, SampleSet
from jax_digit_classifier.core.domain.errors.training import ConfigurationError
from jax_digit_classifier.core.ports.image_decoder import ImageDecoderPort
from jax_digit_classifier.core.ports.sample_source import SampleSourcePort

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".gif", ".tif", ".tiff", ".pgm")


def list_image_files(dir_path: str) -> list[str]:
    """Image files directly under `dir_path`, sorted by name."""

    return sorted(
        os.path.join(dir_path, name)
        for name in os.listdir(dir_path)
        if name.lower().endswith(IMAGE_EXTENSIONS) and os.path.isfile(os.path.join(dir_path, name))
    )


class ImageDirectorySampleSource(SampleSourcePort):
    """Loads `root/<class index>/<image>` trees as grayscale samples.

    Sub-directories whose name is not a non-negative integer are ignored.
    Samples are ordered by class index, then file name. When `width` and
    `height` are given every image is resized to that size; otherwise all images
    must already share one size.
    """

    def __init__(
        self,
        *,
        root: str,
        image_decoder: ImageDecoderPort,
        width: int | None = None,
        height: int | None = None,
    ) -> None:
        if (width is None) != (height is None):
            raise ConfigurationError("width and height must be given together")
        self._root = root
        self._decoder = image_decoder
        self._size = (width, height) if width is not None and height is not None else None

    @property
    def description(self) -> str:
        return self._root

    def _class_dirs(self) -> list[tuple[int, str]]:
        if not os.path.isdir(self._root):
            raise ConfigurationError(f"sample directory not found: {self._root}")
        dirs = []
        for name in os.listdir(self._root):
            path = os.path.join(self._root, name)
            if name.isdigit() and os.path.isdir(path):
                dirs.append((int(name), path))
        return sorted(dirs)

    def load(self) -> SampleSet:
        images: list[SampleImage] = []
        labels: list[int] = []
        for label, dir_path in self._class_dirs():
            for path in list_image_files(dir_path):
                pixels = self._decoder.decode_grayscale(path)
                if self._size is not None:
                    pixels = self._decoder.resize(pixels, *self._size)
                images.append(SampleImage.from_array(pixels))
                labels.append(label)
        return SampleSet(images, labels)
