
from .training import (
	ConfigurationError,
	DegenerateAccuracyError,
	DigitClassifierError,
	EncodingError,
	ImageDecodeError,
	ModelIOError,
)

__all__ = [
	"ConfigurationError",
	"DegenerateAccuracyError",
	"DigitClassifierError",
	"EncodingError",
	"ImageDecodeError",
	"ModelIOError",
]
