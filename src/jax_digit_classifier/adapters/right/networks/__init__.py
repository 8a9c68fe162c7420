
from .jax_network import JaxNetwork, JaxNetworkFactory, LayerStackFns

__all__ = [
	"JaxNetwork",
	"JaxNetworkFactory",
	"LayerStackFns",
]
