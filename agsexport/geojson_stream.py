"""
Streaming GeoJSON FeatureCollection reader/writer.

The writer emits the collection header, then one feature at a time, then the
footer, so a collection is never serialized as a whole. The reader yields
``features`` items one at a time with ijson.
"""

import json
from pathlib import Path
from typing import IO, Any, Dict, Iterator, Optional

import ijson

HEADER = '{"type":"FeatureCollection","features":[\n'
SEPARATOR = ",\n"
FOOTER = "\n]}\n"


class FeatureCollectionWriter:
    """Write a FeatureCollection to a file one feature at a time."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.count = 0
        self._fh: Optional[IO[str]] = None

    def __enter__(self) -> "FeatureCollectionWriter":
        self._fh = open(self.path, "w", encoding="utf-8")
        self._fh.write(HEADER)
        return self

    def write(self, feature: Dict[str, Any]) -> None:
        if self._fh is None:
            raise RuntimeError("Writer is not open")
        if self.count:
            self._fh.write(SEPARATOR)
        self._fh.write(json.dumps(feature, ensure_ascii=False, separators=(",", ":")))
        self.count += 1

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._fh is None:
            return
        try:
            if exc_type is None:
                self._fh.write(FOOTER)
                self._fh.flush()
        finally:
            self._fh.close()
            self._fh = None


def iter_features(path: Path) -> Iterator[Dict[str, Any]]:
    """Yield features of a FeatureCollection file without loading it."""
    with open(path, "rb") as f:
        yield from ijson.items(f, "features.item", use_float=True)
