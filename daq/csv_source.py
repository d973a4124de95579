# daq/csv_source.py
"""CSV-backed row source for replaying a recorded multichannel session."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterator, Optional, Tuple

logger = logging.getLogger(__name__)


class CSVRowSource:
    """
    Iterate over the rows of a CSV recording, one timestep per line.

    Each line holds one sample per channel as decimal text. Fields are handed
    over unparsed; the pipeline converts them and reports non-numeric values
    together with their row and channel. Blank lines are skipped.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        delimiter: str = ",",
        skip_empty_lines: bool = True,
        max_rows: Optional[int] = None,
    ) -> None:
        self._path = Path(path)
        if not self._path.exists():
            raise FileNotFoundError(f"Recording not found: {self._path}")
        if max_rows is not None and max_rows < 0:
            raise ValueError("max_rows must be non-negative")
        self._delimiter = delimiter
        self._skip_empty = skip_empty_lines
        self._max_rows = max_rows
        self.rows_read = 0

    @property
    def path(self) -> Path:
        return self._path

    def __iter__(self) -> Iterator[Tuple[str, ...]]:
        self.rows_read = 0
        with self._path.open("r", newline="") as handle:
            reader = csv.reader(handle, delimiter=self._delimiter)
            for fields in reader:
                if self._skip_empty and not any(field.strip() for field in fields):
                    continue
                if self._max_rows is not None and self.rows_read >= self._max_rows:
                    break
                self.rows_read += 1
                yield tuple(fields)
        logger.info("Finished reading %d rows from %s", self.rows_read, self._path)


def read_rows(path: str | Path, **kwargs) -> Iterator[Tuple[str, ...]]:
    """Convenience generator over `CSVRowSource(path, **kwargs)`."""
    yield from CSVRowSource(path, **kwargs)


__all__ = ["CSVRowSource", "read_rows"]
