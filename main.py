import logging
import sys
from pathlib import Path

from core import CompressionBasis, PipelineSettings, SpikePipeline, load_settings
from daq import CSVRowSource

logger = logging.getLogger("spikecompressor")


def main(argv=None) -> int:
    """Run a CSV recording through the pipeline.

    Usage: main.py RECORDING.csv [SETTINGS.json] [BASIS.npz]
    """
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print(main.__doc__.strip().splitlines()[-1], file=sys.stderr)
        return 2
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s: %(message)s")

    recording = Path(args[0])
    settings = load_settings(args[1]) if len(args) > 1 else PipelineSettings()
    basis = CompressionBasis.load(args[2]) if len(args) > 2 else None

    def on_batch(batch):
        logger.info(
            "Channel %d batch %d: %d spikes -> %d components",
            batch.channel_id,
            batch.sequence,
            batch.n_spikes,
            batch.n_components,
        )

    with SpikePipeline(settings, basis, sink=on_batch) as pipeline:
        pipeline.run(CSVRowSource(recording))
    snapshot = pipeline.stats.snapshot()
    logger.info(
        "Processed %d rows, %d spikes, %d batches",
        snapshot["rows"],
        sum(snapshot["spikes"].values()),
        sum(snapshot["batches"].values()),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
