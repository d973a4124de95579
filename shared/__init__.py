"""
Shared data structures exchanged between the detection core and its collaborators.
"""

from .models import EmbeddingBatch, EndOfStream, SpikeWaveform
from .rolling_window import RollingWindow

__all__ = ["EmbeddingBatch", "EndOfStream", "RollingWindow", "SpikeWaveform"]
