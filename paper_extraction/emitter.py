from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from .records import BoundingBox, ExtractionRecord, ExtractionResult, MatchType, Scalar

logger = logging.getLogger(__name__)

COLUMNS = ["field_name", "value", "match_type", "comment", "page", "xmin", "ymin", "xmax", "ymax"]

_INT_PATTERN = re.compile(r"^-?(?:0|[1-9]\d*)$")
_FLOAT_PATTERN = re.compile(r"^-?(?:0|[1-9]\d*)(?:\.\d+(?:[eE][-+]?\d+)?|[eE][-+]?\d+)$")
_BOOLEANS = {"true": True, "false": False}


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, (int, str)):
        return str(value)
    return json.dumps(value, ensure_ascii=False)


def parse_value(text: str) -> Optional[Scalar]:
    """Inverse of ``format_value``; numeric text comes back as int/float, true/false as bool."""
    if text == "":
        return None
    if text in _BOOLEANS:
        return _BOOLEANS[text]
    if _INT_PATTERN.match(text):
        return int(text)
    if _FLOAT_PATTERN.match(text):
        return float(text)
    return text


def record_to_row(record: ExtractionRecord) -> Dict[str, str]:
    bbox = record.bbox
    return {
        "field_name": record.field_name,
        "value": format_value(record.value),
        "match_type": record.match_type.value,
        "comment": record.comment or "",
        "page": "" if record.page is None else str(record.page),
        "xmin": "" if bbox is None else repr(bbox.xmin),
        "ymin": "" if bbox is None else repr(bbox.ymin),
        "xmax": "" if bbox is None else repr(bbox.xmax),
        "ymax": "" if bbox is None else repr(bbox.ymax),
    }


def row_to_record(row: Dict[str, str]) -> ExtractionRecord:
    coords = [row.get(key, "") for key in ("xmin", "ymin", "xmax", "ymax")]
    bbox = None
    if any(coords):
        bbox = BoundingBox(*(float(c) for c in coords))
    page = row.get("page", "")
    return ExtractionRecord(
        field_name=row["field_name"],
        value=parse_value(row.get("value", "")),
        match_type=MatchType(row["match_type"]),
        comment=row.get("comment") or None,
        page=int(page) if page else None,
        bbox=bbox,
    )


def to_dataframe(result: ExtractionResult) -> pd.DataFrame:
    """One text-typed row per record, in schema order."""
    rows: List[Dict[str, str]] = [record_to_row(record) for record in result]
    return pd.DataFrame(rows, columns=COLUMNS, dtype=str)


def write_csv(result: ExtractionResult, output_path: Path) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df = to_dataframe(result)
    df.to_csv(output_path, index=False)
    logger.info(
        "Wrote %d records to %s (bbox in %s)", len(df), output_path, result.coordinate_unit
    )
    return output_path


def read_csv(path: Path, *, coordinate_unit: str = "points") -> ExtractionResult:
    """Parse a CSV written by ``write_csv`` back into an ExtractionResult."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    missing = [col for col in COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing column(s): {', '.join(missing)}")
    records = [row_to_record(row) for row in df.to_dict(orient="records")]
    return ExtractionResult(records=records, coordinate_unit=coordinate_unit)
