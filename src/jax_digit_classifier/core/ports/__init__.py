
from .image_decoder import ImageDecoderPort
from .metrics_sink import MetricsSinkPort
from .network import NetworkFactoryPort, NetworkPort
from .sample_source import SampleSourcePort

__all__ = [
	"ImageDecoderPort",
	"MetricsSinkPort",
	"NetworkFactoryPort",
	"NetworkPort",
	"SampleSourcePort",
]
