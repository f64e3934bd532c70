"""Error taxonomy for the extraction pipeline.

Document-level failures derive from ``ExtractionError``. Per-field problems
never surface as exceptions; they are folded into the record's comment.
"""

from __future__ import annotations

from typing import Any, Optional


class ExtractionError(Exception):
    """Base class for failures that abort a run or a single document."""


class SchemaError(ExtractionError):
    """The field schema is empty, malformed, or has duplicate names."""


class ConfigurationError(ExtractionError):
    """Credentials or settings are missing or rejected; retrying will not help."""


class ExtractionServiceError(ExtractionError):
    """The model provider returned a failure."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class ServiceUnavailableError(ExtractionServiceError):
    """Transient provider failure (timeout, connection error, 429, 5xx)."""


class MalformedResponseError(ExtractionError):
    """The provider reply cannot be read as a JSON object keyed by field name."""


class DocumentLoadError(ExtractionError):
    """The source document could not be read or is not a PDF."""


class UnitConversionError(ValueError):
    """A value could not be converted to the expected unit."""
