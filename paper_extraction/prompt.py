"""Prompt rendering for field extraction.

Both template variants share one layout; a variant only switches the
coordinate convention and whether unit normalization is requested.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, List

from .schema import FieldSpec

SYSTEM_PROMPT = (
    "You are a careful information extraction assistant for scientific papers. "
    "Use only evidence from the attached document. Do not invent data. "
    "Respond with a single JSON object and nothing else."
)


class TemplateVariant(str, Enum):
    BASIC = "basic"
    EXTENDED = "extended"

    @property
    def coordinate_unit(self) -> str:
        return "pixels" if self is TemplateVariant.BASIC else "points"


RECORD_KEYS = ("value", "match_type", "comment", "page", "xmin", "ymin", "xmax", "ymax")


def _task_section() -> str:
    return (
        "Extract the fields listed below from the attached PDF document.\n"
        "Return one JSON object whose keys are exactly the field names. "
        "Each key maps to an object with this shape:\n"
        '{"<field_name>": {"value": ..., "match_type": "found" | "not_found" | "inferred", '
        '"comment": ..., "page": ..., "xmin": ..., "ymin": ..., "xmax": ..., "ymax": ...}}'
    )


def _rules_section(comment_word_limit: int) -> List[str]:
    return [
        "- value: the extracted value, or null if nothing was found.",
        '- match_type: "found" when the value is stated in the document, '
        '"inferred" when it is a best guess derived from context, '
        '"not_found" when it is absent (value must then be null).',
        f"- comment: fewer than {comment_word_limit} words. Only add one when it gives "
        "useful context, otherwise null. Explain every inferred value.",
        "- page: the 1-indexed page number where the value appears, or null.",
        "- If a value appears several times, use the most prominent occurrence "
        "and state that choice in the comment.",
    ]


def _coordinate_section(variant: TemplateVariant) -> List[str]:
    if variant is TemplateVariant.BASIC:
        return [
            "- xmin, ymin, xmax, ymax: bounding box of the value on its page in pixels, "
            "or null when not found.",
        ]
    return [
        "- xmin, ymin, xmax, ymax: bounding box of the value on its page in PDF points, "
        "with the origin at the top-left corner of the page. "
        "(xmin, ymin) is the top-left corner and (xmax, ymax) the bottom-right corner "
        "of the box. Use null when not found.",
    ]


def _units_section(variant: TemplateVariant) -> List[str]:
    if variant is TemplateVariant.BASIC:
        return []
    return [
        "- Units: normalize values with units to a standard form (the expected unit "
        "when one is given). Note the original form and the conversion in the comment.",
    ]


def render_field_list(fields: Iterable[FieldSpec], variant: TemplateVariant) -> str:
    lines: List[str] = []
    for spec in fields:
        lines.append(f"- **{spec.name}**: {spec.description}")
        if spec.infer:
            lines.append("  (This field should be inferred if not explicitly found)")
        if spec.expected_unit and variant is TemplateVariant.EXTENDED:
            lines.append(f"  (Expected unit: {spec.expected_unit})")
    return "\n".join(lines)


def compose_prompt(
    fields: Iterable[FieldSpec],
    variant: TemplateVariant = TemplateVariant.EXTENDED,
    *,
    comment_word_limit: int = 16,
) -> str:
    """
    Render the extraction instructions for ``fields`` in schema order.

    Pure function: the same schema and variant always produce the same text.
    """
    variant = TemplateVariant(variant)
    rules = (
        _rules_section(comment_word_limit)
        + _coordinate_section(variant)
        + _units_section(variant)
    )
    sections = [
        _task_section(),
        "Rules:\n" + "\n".join(rules),
        "Fields:\n" + render_field_list(fields, variant),
    ]
    return "\n\n".join(sections) + "\n"
