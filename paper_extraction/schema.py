from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Literal, Optional, Sequence, Tuple

import pandas as pd
from pydantic import BaseModel, ValidationError, field_validator

from .errors import SchemaError

logger = logging.getLogger(__name__)

FieldKind = Literal["categorical", "number", "text"]

MAX_NAME_LENGTH = 16
MAX_DESCRIPTION_LENGTH = 100

# Accepted header spellings, keyed by canonical column name.
COLUMN_ALIASES: Dict[str, Tuple[str, ...]] = {
    "field_name": ("field_name", "name"),
    "description": ("description",),
    "kind": ("kind", "type"),
    "infer": ("infer",),
    "expected_unit": ("expected_unit", "unit"),
}
REQUIRED_COLUMNS = ("field_name", "description")

_TRUE_VALUES = {"true", "yes", "1"}
_FALSE_VALUES = {"false", "no", "0"}


@dataclass(frozen=True)
class FieldSpec:
    """One user-requested extraction target."""

    name: str
    description: str
    kind: FieldKind = "text"
    infer: bool = False
    expected_unit: Optional[str] = None


@dataclass(frozen=True)
class Schema:
    """Ordered, immutable collection of FieldSpecs; order defines output rows."""

    fields: Tuple[FieldSpec, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))
        if not self.fields:
            raise SchemaError("Schema contains no fields")
        seen = set()
        for spec in self.fields:
            if not spec.name:
                raise SchemaError("Field name must not be empty")
            if spec.name in seen:
                raise SchemaError(f"Duplicate field name '{spec.name}' found in schema")
            seen.add(spec.name)

    def __iter__(self) -> Iterator[FieldSpec]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    def __getitem__(self, index: int) -> FieldSpec:
        return self.fields[index]

    @property
    def names(self) -> List[str]:
        return [spec.name for spec in self.fields]

    def get(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def batches(self, size: int) -> List["Schema"]:
        """Split into consecutive sub-schemas of at most ``size`` fields."""
        if size <= 0:
            return [self]
        return [
            Schema(self.fields[start : start + size])
            for start in range(0, len(self.fields), size)
        ]


class FieldSpecRow(BaseModel):
    """Validated view of one schema CSV row."""

    field_name: str
    description: str
    kind: FieldKind = "text"
    infer: bool = False
    expected_unit: Optional[str] = None

    @field_validator("field_name", mode="before")
    @classmethod
    def validate_name(cls, value: Any) -> str:
        name = str(value or "").strip()
        if not name:
            raise ValueError("Field name must not be empty")
        if len(name) > MAX_NAME_LENGTH:
            raise ValueError(
                f"Field name '{name}' exceeds {MAX_NAME_LENGTH} characters (length: {len(name)})"
            )
        if not name.isascii():
            raise ValueError(f"Field name '{name}' contains non-ASCII characters")
        return name

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, value: Any) -> str:
        description = str(value or "").strip()
        if not description:
            raise ValueError("Description must not be empty")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValueError(
                f"Description exceeds {MAX_DESCRIPTION_LENGTH} characters (length: {len(description)})"
            )
        if not description.isascii():
            raise ValueError("Description contains non-ASCII characters")
        return description

    @field_validator("kind", mode="before")
    @classmethod
    def validate_kind(cls, value: Any) -> str:
        kind = str(value or "").strip().lower()
        if not kind:
            return "text"
        if kind not in ("categorical", "number", "text"):
            raise ValueError(
                f"Invalid schema kind '{value}'. Must be one of: categorical, number, text"
            )
        return kind

    @field_validator("infer", mode="before")
    @classmethod
    def validate_infer(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        text = str(value or "").strip().lower()
        if not text or text in _FALSE_VALUES:
            return False
        if text in _TRUE_VALUES:
            return True
        raise ValueError(
            f"Invalid infer value '{value}'. Must be true/false, yes/no, or 1/0"
        )

    @field_validator("expected_unit", mode="before")
    @classmethod
    def validate_unit(cls, value: Any) -> Optional[str]:
        unit = str(value or "").strip()
        return unit or None

    def to_field_spec(self) -> FieldSpec:
        return FieldSpec(
            name=self.field_name,
            description=self.description,
            kind=self.kind,
            infer=self.infer,
            expected_unit=self.expected_unit,
        )


def _resolve_columns(columns: Sequence[str]) -> Dict[str, str]:
    """Map canonical column names to the headers present in the CSV."""
    normalized = {str(col).strip().lower(): col for col in columns}
    resolved: Dict[str, str] = {}
    for canonical, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in normalized:
                resolved[canonical] = normalized[alias]
                break
    missing = [col for col in REQUIRED_COLUMNS if col not in resolved]
    if missing:
        raise SchemaError(f"Schema is missing required column(s): {', '.join(missing)}")
    return resolved


def _format_validation_error(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        message = error.get("msg", "")
        messages.append(message.removeprefix("Value error, "))
    return "; ".join(messages)


def parse_schema_csv(csv_content: str) -> Schema:
    """
    Parse schema CSV text into a Schema.

    Raises SchemaError on empty input, missing columns, invalid rows, or
    duplicate field names.
    """
    if not csv_content or not csv_content.strip():
        raise SchemaError("Schema source is empty")
    try:
        df = pd.read_csv(
            io.StringIO(csv_content),
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
        )
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as exc:
        raise SchemaError(f"Failed to read schema CSV: {exc}") from exc

    columns = _resolve_columns(list(df.columns))
    if df.empty:
        raise SchemaError("Schema contains no fields")
    df = df.fillna("")

    fields: List[FieldSpec] = []
    seen_names = set()
    for index, row in enumerate(df.to_dict(orient="records")):
        row_num = index + 2
        raw = {canonical: row[header] for canonical, header in columns.items()}
        try:
            spec = FieldSpecRow.model_validate(raw).to_field_spec()
        except ValidationError as exc:
            raise SchemaError(
                f"Failed to parse schema row {row_num}: {_format_validation_error(exc)}"
            ) from exc
        if spec.name in seen_names:
            raise SchemaError(
                f"Duplicate field name '{spec.name}' found in schema at row {row_num}"
            )
        seen_names.add(spec.name)
        fields.append(spec)

    logger.debug("Parsed schema with %d fields", len(fields))
    return Schema(tuple(fields))


def read_schema(path: Path) -> Schema:
    try:
        content = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise SchemaError(f"Failed to read schema file {path}: {exc}") from exc
    return parse_schema_csv(content)


def build_json_schema(fields: Sequence[FieldSpec]) -> Dict[str, Any]:
    """
    Build the strict JSON schema requested from the provider for ``fields``.

    Every property is required; optional parts are expressed as nullable types.
    """
    properties: Dict[str, Any] = {}
    required: List[str] = []

    for spec in fields:
        if spec.kind != "number":
            value_type = ["string", "null"]
        elif spec.expected_unit:
            # Text such as "1,000 participants" is normalized after the reply.
            value_type = ["number", "string", "null"]
        else:
            value_type = ["number", "null"]
        properties[spec.name] = {
            "type": "object",
            "properties": {
                "value": {"type": value_type, "description": spec.description},
                "match_type": {"type": "string", "enum": ["found", "not_found", "inferred"]},
                "comment": {"type": ["string", "null"]},
                "page": {"type": ["integer", "null"]},
                "xmin": {"type": ["number", "null"]},
                "ymin": {"type": ["number", "null"]},
                "xmax": {"type": ["number", "null"]},
                "ymax": {"type": ["number", "null"]},
            },
            "required": ["value", "match_type", "comment", "page", "xmin", "ymin", "xmax", "ymax"],
            "additionalProperties": False,
        }
        required.append(spec.name)

    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }
