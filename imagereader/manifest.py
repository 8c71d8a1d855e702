"""Image manifests: ordered ``(path, label)`` records read from a map file."""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .config import ImageReaderConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageRecord:
    path: str
    label: int


class Manifest:
    """Fixed-length list of records whose order may be shuffled between epochs."""

    def __init__(self, records: Iterable[ImageRecord]) -> None:
        self._records = list(records)

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> ImageRecord:
        return self._records[index]

    def __iter__(self) -> Iterator[ImageRecord]:
        return iter(self._records)

    @property
    def max_label(self) -> int:
        return max((record.label for record in self._records), default=-1)

    def shuffle(self, rng: np.random.Generator) -> None:
        """Permute the records in place; must not overlap with readers."""
        rng.shuffle(self._records)


def parse_manifest_line(line: str, *, source: str, line_number: int) -> ImageRecord:
    fields = line.rstrip("\r\n").split("\t")
    if len(fields) < 2:
        raise ImageReaderConfigError(
            "Invalid map file format, must contain 2 tab-delimited columns: "
            f"{source}, line: {line_number}."
        )
    path, label = fields[0], fields[1]
    try:
        class_id = int(label)
    except ValueError:
        raise ImageReaderConfigError(
            f"Invalid class label {label!r} in {source}, line: {line_number}."
        ) from None
    if class_id < 0:
        raise ImageReaderConfigError(
            f"Class label must be non-negative, got {class_id} in {source}, line: {line_number}."
        )
    return ImageRecord(path=path, label=class_id)


def load_manifest(path: str | Path) -> Manifest:
    """Read a UTF-8 map file with one ``<image path>\\t<label>`` record per line."""
    map_path = Path(path)
    try:
        with map_path.open("r", encoding="utf-8") as f:
            records = [
                parse_manifest_line(line, source=str(map_path), line_number=number)
                for number, line in enumerate(f, start=1)
            ]
    except OSError as exc:
        raise ImageReaderConfigError(f"Could not open {map_path} for reading.") from exc
    logger.info("Loaded %d records from %s", len(records), map_path)
    return Manifest(records)
