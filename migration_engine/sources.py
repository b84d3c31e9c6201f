"""CSV/JSON source file reading."""

import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from .errors import ValidationError

logger = logging.getLogger(__name__)

Rows = List[Dict[str, Any]]


def read_rows(file_path: Union[str, Path], encoding: str = "utf-8", delimiter: str = ",") -> Rows:
    """
    Read source rows from a CSV or JSON export.

    JSON files may hold a list of objects or an object wrapping one under
    "data", "records", "items" or "results".

    Args:
        file_path: Path to the export
        encoding: File encoding for CSV; latin-1 is tried when it fails
        delimiter: Fallback delimiter when sniffing fails

    Returns:
        Ordered list of string-keyed rows
    """
    path = Path(file_path)
    if not path.exists():
        raise ValidationError(f"Source file not found: {path}")

    if path.suffix.lower() == ".json":
        rows = _read_json(path, encoding)
    else:
        try:
            rows = _read_csv(path, encoding, delimiter)
        except UnicodeDecodeError:
            logger.warning(f"{encoding} decode failed, trying latin-1 for {path}")
            rows = _read_csv(path, "latin-1", delimiter)

    logger.info(f"Read {len(rows)} rows from {path}")
    return rows


def _read_csv(path: Path, encoding: str, delimiter: str) -> Rows:
    with open(path, "r", encoding=encoding, newline="") as f:
        sample = f.read(8192)
        f.seek(0)

        try:
            delimiter = csv.Sniffer().sniff(sample).delimiter
        except csv.Error:
            pass

        reader = csv.DictReader(f, delimiter=delimiter)
        # Short rows yield None for the missing trailing cells
        return [
            {k: v for k, v in row.items() if k is not None}
            for row in reader
        ]


def _read_json(path: Path, encoding: str) -> Rows:
    with open(path, "r", encoding=encoding) as f:
        data = json.load(f)

    if isinstance(data, dict):
        for key in ["data", "records", "items", "results"]:
            if key in data and isinstance(data[key], list):
                data = data[key]
                break
        else:
            data = [data]

    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise ValidationError(f"Unexpected JSON structure in {path}")
    return data
