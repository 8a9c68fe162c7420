
from .image_directory import ImageDirectorySampleSource
from .npz_samples import NpzSampleSource

__all__ = [
	"ImageDirectorySampleSource",
	"NpzSampleSource",
]
