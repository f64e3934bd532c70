from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

import fitz  # PyMuPDF

from .agents import DocumentContext
from .errors import DocumentLoadError

logger = logging.getLogger(__name__)


@dataclass
class PDFPreprocessor:
    """
    Reads a PDF and collects the page geometry needed to check provenance.

    Content is forwarded to the model untouched; no text is extracted here.
    """

    max_bytes: int | None = None

    def load(self, file_path: Path) -> DocumentContext:
        path = Path(file_path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise DocumentLoadError(f"Failed to read {path}: {exc}") from exc
        return self.load_bytes(data, file_path=path)

    def load_bytes(self, data: bytes, *, file_path: Path) -> DocumentContext:
        if not data:
            raise DocumentLoadError(f"{file_path.name} is empty")
        if self.max_bytes is not None and len(data) > self.max_bytes:
            raise DocumentLoadError(
                f"{file_path.name} is {len(data)} bytes, limit is {self.max_bytes}"
            )

        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                if not doc.is_pdf:
                    raise DocumentLoadError(f"{file_path.name} is not a PDF")
                page_sizes: List[Tuple[float, float]] = [
                    (page.rect.width, page.rect.height) for page in doc
                ]
                doc_metadata = dict(doc.metadata or {})
        except (RuntimeError, ValueError) as exc:
            raise DocumentLoadError(f"Failed to open {file_path.name} as PDF: {exc}") from exc

        logger.debug("Loaded %s: %d pages, %d bytes", file_path.name, len(page_sizes), len(data))
        metadata = {
            "pages": len(page_sizes),
            "file": file_path.name,
            "type": "pdf",
            "title": doc_metadata.get("title") or None,
        }
        return DocumentContext(
            file_path=file_path,
            data=data,
            page_count=len(page_sizes),
            page_sizes=page_sizes,
            metadata=metadata,
        )
