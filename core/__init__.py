"""Streaming spike detection and compression core."""

from .compression import CompressionBasis, SpikeBatchCompressor, default_basis, project
from .conditioning import ChannelFilterState, highpass_alpha, highpass_block
from .detection import Candidate, DetectorState, SpikeDetector
from .errors import ConfigurationError, MalformedRowError
from .pipeline import ChannelState, PipelineStats, PipelineWorker, SpikePipeline
from .settings import PipelineSettings, ThresholdSettings, load_settings, save_settings
from .statistics import RunningStats
from shared.models import EmbeddingBatch, EndOfStream, SpikeWaveform

__all__ = [
    "Candidate",
    "ChannelFilterState",
    "ChannelState",
    "CompressionBasis",
    "ConfigurationError",
    "DetectorState",
    "EmbeddingBatch",
    "EndOfStream",
    "MalformedRowError",
    "PipelineSettings",
    "PipelineStats",
    "PipelineWorker",
    "RunningStats",
    "SpikeBatchCompressor",
    "SpikeDetector",
    "SpikePipeline",
    "SpikeWaveform",
    "ThresholdSettings",
    "default_basis",
    "highpass_alpha",
    "highpass_block",
    "load_settings",
    "project",
    "save_settings",
]
