"""Samples, encoded batches, accuracy counts and network topologies.

No file or image I/O here; adapters produce these from disk.
"""

from .base import *
from .dataset import *
from .model import *
