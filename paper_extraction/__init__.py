"""
paper_extraction: schema-driven field extraction from scientific-paper PDFs.

A user-supplied field schema is rendered into model instructions, the model's
JSON reply is validated into one provenance-annotated record per field, and
the records are written out as CSV.
"""

__all__ = [
    "schema",
    "prompt",
    "agents",
    "validation",
    "emitter",
    "orchestrator",
]
