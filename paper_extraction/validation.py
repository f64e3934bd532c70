"""Map raw model replies onto the schema.

``normalize_record`` is total: every anomaly in a field's entry becomes part
of that record's match_type or comment, so one bad field never costs the
others. Only a reply that is not a mapping at all is rejected.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, List, Mapping, Optional

from .errors import MalformedResponseError, UnitConversionError
from .prompt import TemplateVariant
from .records import BoundingBox, ExtractionRecord, ExtractionResult, MatchType, Scalar
from .schema import FieldSpec, Schema
from .units import normalize_quantity, parse_number

logger = logging.getLogger(__name__)

BBOX_KEYS = ("xmin", "ymin", "xmax", "ymax")


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _coerce_match_type(raw: Any, notes: List[str]) -> MatchType:
    text = str(raw).strip().lower() if raw is not None else ""
    try:
        return MatchType(text)
    except ValueError:
        notes.append(f"unrecognized match_type {raw!r} treated as not_found")
        return MatchType.NOT_FOUND


def _coerce_value(raw: Any) -> Optional[Scalar]:
    """Blank strings count as missing; lists and objects are kept as JSON text."""
    if raw is None:
        return None
    if isinstance(raw, str):
        stripped = raw.strip()
        return stripped or None
    if isinstance(raw, bool) or _is_number(raw):
        return raw
    if isinstance(raw, float):
        return None
    return json.dumps(raw, ensure_ascii=False)


def _coerce_page(raw: Any, field_name: str) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if isinstance(raw, str) and raw.strip().isdigit():
        raw = int(raw.strip())
    if not isinstance(raw, int):
        logger.debug("Ignoring non-integer page %r for %s", raw, field_name)
        return None
    if raw < 1:
        return None
    return raw


def _coerce_bbox(entry: Mapping[str, Any], field_name: str) -> Optional[BoundingBox]:
    present = [key for key in BBOX_KEYS if entry.get(key) is not None]
    if not present:
        return None
    if len(present) < len(BBOX_KEYS):
        logger.warning(
            "Partial bbox for %s (has %s); dropping location", field_name, ", ".join(present)
        )
        return None
    coords = [entry[key] for key in BBOX_KEYS]
    if not all(_is_number(c) for c in coords):
        logger.warning("Non-numeric bbox for %s: %r; dropping location", field_name, coords)
        return None
    xmin, ymin, xmax, ymax = (float(c) for c in coords)
    if xmin == ymin == xmax == ymax == 0.0:
        return None
    if xmax < xmin or ymax < ymin:
        logger.warning("Inverted bbox for %s: %r; dropping location", field_name, coords)
        return None
    return BoundingBox(xmin=xmin, ymin=ymin, xmax=xmax, ymax=ymax)


def truncate_words(text: str, limit: int) -> str:
    """Keep the comment strictly under ``limit`` words."""
    words = text.split()
    if limit <= 1 or len(words) < limit:
        return text
    return " ".join(words[: limit - 1]) + "..."


def _compose_comment(
    model_comment: Any,
    notes: List[str],
    limit: int,
    field_name: str,
    *,
    unit_note: Optional[str] = None,
) -> Optional[str]:
    """
    Join the model's comment with pipeline notes, under ``limit`` words.

    Notes take precedence: the model's comment is cut to whatever budget the
    notes leave, or dropped. A unit note is never cut, since it must keep
    both the original and the converted form; a comment that exceeds the
    budget because of it is logged.
    """
    budget = max(limit - 1, 0)
    annotation = "; ".join(([unit_note] if unit_note else []) + notes)
    if unit_note is None and len(annotation.split()) > budget:
        annotation = truncate_words(annotation, limit)
    remaining = budget - len(annotation.split())

    text = " ".join(str(model_comment).split()) if model_comment is not None else ""
    if text and remaining <= 0:
        logger.info("Dropped model comment for %s; notes fill the word budget", field_name)
        text = ""
    elif text:
        truncated = truncate_words(text, remaining + 1)
        if truncated != text:
            logger.info("Truncated comment for %s to %d words", field_name, remaining)
        text = truncated

    comment = "; ".join(part for part in (text, annotation) if part) or None
    if comment is not None and len(comment.split()) > budget:
        logger.warning(
            "Comment for %s runs to %d words, over the %d-word budget",
            field_name, len(comment.split()), budget,
        )
    return comment


def normalize_record(
    spec: FieldSpec,
    entry: Any,
    *,
    page_count: Optional[int] = None,
    comment_word_limit: int = 16,
) -> ExtractionRecord:
    """Turn one raw reply entry into a well-formed record. Never raises."""
    if entry is None:
        return ExtractionRecord.not_found(spec.name)
    if not isinstance(entry, Mapping):
        logger.warning("Entry for %s is %s, not an object", spec.name, type(entry).__name__)
        return ExtractionRecord.not_found(
            spec.name, comment=f"unexpected entry of type {type(entry).__name__} ignored"
        )

    notes: List[str] = []
    unit_note: Optional[str] = None
    match_type = _coerce_match_type(entry.get("match_type"), notes)
    value = _coerce_value(entry.get("value"))

    if match_type is MatchType.NOT_FOUND:
        if value is not None and not notes:
            notes.append("value discarded because match_type is not_found")
        return ExtractionRecord.not_found(
            spec.name,
            comment=_compose_comment(entry.get("comment"), notes, comment_word_limit, spec.name),
        )

    if value is None:
        notes.append(f"match_type {match_type.value} reported without a value")
        return ExtractionRecord.not_found(
            spec.name,
            comment=_compose_comment(entry.get("comment"), notes, comment_word_limit, spec.name),
        )

    if isinstance(value, str) and spec.expected_unit:
        try:
            quantity = normalize_quantity(value, spec.expected_unit)
        except UnitConversionError as exc:
            logger.info("Unit normalization failed for %s: %s", spec.name, exc)
            notes.append(f"could not normalize '{value}' to {spec.expected_unit}: {exc}")
        else:
            if quantity.changed:
                unit_note = quantity.describe()
            value = quantity.value
    elif isinstance(value, str) and spec.kind == "number":
        number = parse_number(value)
        if number is None:
            notes.append("expected a number; kept raw text")
        else:
            value = number

    if match_type is MatchType.INFERRED and not spec.infer:
        notes.append("inferred although inference was not requested")

    page = _coerce_page(entry.get("page"), spec.name)
    bbox = _coerce_bbox(entry, spec.name)
    if page is not None and page_count is not None and page > page_count:
        logger.warning(
            "Page %d for %s is beyond the document's %d pages", page, spec.name, page_count
        )
        notes.append(f"reported page {page} exceeds page count; location dropped")
        page = None
        bbox = None

    comment = _compose_comment(
        entry.get("comment"), notes, comment_word_limit, spec.name, unit_note=unit_note
    )
    if match_type is MatchType.INFERRED and comment is None:
        comment = "inferred; no rationale given"

    return ExtractionRecord(
        field_name=spec.name,
        value=value,
        match_type=match_type,
        comment=comment,
        page=page,
        bbox=bbox,
    )


def validate_reply(
    schema: Schema,
    raw: Any,
    *,
    variant: TemplateVariant = TemplateVariant.EXTENDED,
    page_count: Optional[int] = None,
    comment_word_limit: int = 16,
) -> ExtractionResult:
    """
    Build one record per schema field, in schema order, from ``raw``.

    Raises MalformedResponseError when ``raw`` is not a mapping.
    """
    if not isinstance(raw, Mapping):
        raise MalformedResponseError(
            f"Expected a JSON object keyed by field name, got {type(raw).__name__}"
        )

    extras = [key for key in raw if schema.get(str(key)) is None]
    if extras:
        logger.warning("Ignoring %d unexpected field(s) in reply: %s", len(extras), ", ".join(map(str, extras)))

    records = [
        normalize_record(
            spec,
            raw.get(spec.name),
            page_count=page_count,
            comment_word_limit=comment_word_limit,
        )
        for spec in schema
    ]
    missing = [spec.name for spec in schema if spec.name not in raw]
    if missing:
        logger.info("Reply omitted %d field(s): %s", len(missing), ", ".join(missing))

    return ExtractionResult(records=records, coordinate_unit=TemplateVariant(variant).coordinate_unit)
