from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Union

Scalar = Union[str, int, float, bool]


class MatchType(str, Enum):
    """How a field's value was obtained."""

    FOUND = "found"
    INFERRED = "inferred"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class BoundingBox:
    """Rectangle with top-left origin; (xmin, ymin) is the top-left corner."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float


@dataclass(frozen=True)
class ExtractionRecord:
    """Validated extraction output for one schema field."""

    field_name: str
    value: Optional[Scalar] = None
    match_type: MatchType = MatchType.NOT_FOUND
    comment: Optional[str] = None
    page: Optional[int] = None
    bbox: Optional[BoundingBox] = None

    def __post_init__(self) -> None:
        if self.match_type is MatchType.NOT_FOUND:
            if self.value is not None or self.bbox is not None:
                raise ValueError(
                    f"Record '{self.field_name}' is not_found but carries a value or bbox"
                )
        elif self.value is None:
            raise ValueError(
                f"Record '{self.field_name}' is {self.match_type.value} without a value"
            )
        if self.page is not None and self.page < 1:
            raise ValueError(f"Record '{self.field_name}' has non-positive page {self.page}")

    @classmethod
    def not_found(cls, field_name: str, comment: Optional[str] = None) -> "ExtractionRecord":
        return cls(field_name=field_name, comment=comment)


@dataclass
class ExtractionResult:
    """
    Per-document output: one record per schema field, in schema order.

    ``coordinate_unit`` tells consumers whether bbox values are pixels or
    PDF points.
    """

    records: List[ExtractionRecord] = field(default_factory=list)
    coordinate_unit: str = "points"

    def __iter__(self) -> Iterator[ExtractionRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def get(self, field_name: str) -> Optional[ExtractionRecord]:
        for record in self.records:
            if record.field_name == field_name:
                return record
        return None

    @property
    def field_names(self) -> List[str]:
        return [record.field_name for record in self.records]
