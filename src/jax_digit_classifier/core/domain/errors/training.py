from __future__ import annotations


class DigitClassifierError(Exception):
    """Base class for every error raised by the core."""


class ConfigurationError(DigitClassifierError):
    """Malformed input or settings detected before any batch is processed."""


class EncodingError(ConfigurationError):
    """A sample cannot be encoded (e.g. class index out of range)."""


class ModelIOError(DigitClassifierError):
    """A model file could not be written or read."""


class ImageDecodeError(ModelIOError):
    """An image file could not be decoded."""


class DegenerateAccuracyError(DigitClassifierError):
    """Accuracy was requested over zero samples."""
