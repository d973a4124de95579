"""Row sources that feed recordings into the spike pipeline."""

from .csv_source import CSVRowSource, read_rows
from .simulated_source import PlantedSpike, SimulatedRecording, make_spike_template

__all__ = [
    "CSVRowSource",
    "PlantedSpike",
    "SimulatedRecording",
    "make_spike_template",
    "read_rows",
]
