from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Sequence

import pandas as pd

from .agents import DocumentContext, ExtractionAgent
from .emitter import COLUMNS, record_to_row
from .errors import ConfigurationError, ExtractionError
from .preprocess import PDFPreprocessor
from .prompt import TemplateVariant, compose_prompt
from .records import ExtractionResult
from .schema import Schema, build_json_schema
from .validation import validate_reply

logger = logging.getLogger(__name__)


@dataclass
class DocumentResult:
    document: Path
    status: Literal["ok", "error"]
    result: ExtractionResult | None = None
    error: str | None = None


class ExtractionOrchestrator:
    """
    Runs schema -> prompt -> model call -> validation for each document.

    Documents are independent; a batch runs them on a bounded thread pool and
    one document's failure never affects another.
    """

    def __init__(
        self,
        extraction_agent: ExtractionAgent,
        pdf_preprocessor: PDFPreprocessor | None = None,
        *,
        variant: TemplateVariant = TemplateVariant.EXTENDED,
        batch_size: int = 20,
        max_workers: int = 4,
        comment_word_limit: int = 16,
    ):
        self.extraction_agent = extraction_agent
        self.pdf_preprocessor = pdf_preprocessor or PDFPreprocessor()
        self.variant = TemplateVariant(variant)
        self.batch_size = batch_size
        self.max_workers = max(1, max_workers)
        self.comment_word_limit = comment_word_limit

    def _preprocess(self, file_path: Path) -> DocumentContext:
        suffix = file_path.suffix.lower()
        if suffix != ".pdf":
            raise ValueError(f"Unsupported file type: {suffix}")
        return self.pdf_preprocessor.load(file_path)

    def process_document(self, schema: Schema, file_path: Path) -> ExtractionResult:
        """
        Extract every schema field from one document.

        Field batches are sent in order; their replies are merged before
        validation so the result always covers the full schema.
        """
        path = Path(file_path)
        logger.info("Preprocessing %s", path)
        context = self._preprocess(path)

        merged: Dict[str, Any] = {}
        batches = schema.batches(self.batch_size)
        for index, batch in enumerate(batches, start=1):
            logger.info(
                "Extracting %d field(s) from %s (batch %d/%d)",
                len(batch), path.name, index, len(batches),
            )
            prompt = compose_prompt(
                batch, self.variant, comment_word_limit=self.comment_word_limit
            )
            reply = self.extraction_agent.run(
                prompt, context, json_schema=build_json_schema(batch)
            )
            stray = [key for key in reply if key not in batch.names]
            if stray:
                logger.warning(
                    "Batch %d reply for %s carried field(s) outside the batch: %s",
                    index, path.name, ", ".join(map(str, stray)),
                )
            merged.update({name: reply[name] for name in batch.names if name in reply})

        return validate_reply(
            schema,
            merged,
            variant=self.variant,
            page_count=context.page_count,
            comment_word_limit=self.comment_word_limit,
        )

    def _process_one(self, schema: Schema, file_path: Path) -> DocumentResult:
        path = Path(file_path)
        try:
            result = self.process_document(schema, path)
        except ConfigurationError:
            raise
        except ExtractionError as exc:
            logger.exception("Extraction failed for %s", path.name)
            return DocumentResult(document=path, status="error", error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected error while processing %s", path.name)
            return DocumentResult(
                document=path, status="error", error=f"{type(exc).__name__}: {exc}"
            )
        return DocumentResult(document=path, status="ok", result=result)

    def process(self, schema: Schema, files: Sequence[Path]) -> List[DocumentResult]:
        """
        Extract ``schema`` from every file; results keep the input order.

        Credentials are checked once before any document is touched.
        """
        self.extraction_agent.check_credentials()
        paths = [Path(f) for f in files]
        if len(paths) <= 1 or self.max_workers == 1:
            return [self._process_one(schema, path) for path in paths]

        workers = min(self.max_workers, len(paths))
        logger.info("Processing %d documents with %d workers", len(paths), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="extract") as pool:
            futures = [pool.submit(self._process_one, schema, path) for path in paths]
            return [future.result() for future in futures]

    def to_dataframe(self, results: Sequence[DocumentResult]) -> pd.DataFrame:
        """
        Flatten results into one DataFrame.

        Columns: document_name, status, error, bbox_unit, <record columns...>
        """
        rows: List[dict[str, Any]] = []
        for res in results:
            base: dict[str, Any] = {
                "document_name": res.document.name,
                "status": res.status,
                "error": res.error,
                "bbox_unit": res.result.coordinate_unit if res.result is not None else None,
            }
            if res.result is None:
                rows.append(base)
                continue
            for record in res.result:
                row = dict(base)
                row.update(record_to_row(record))
                rows.append(row)
        return pd.DataFrame(rows, columns=["document_name", "status", "error", "bbox_unit", *COLUMNS])

    def to_excel(self, results: Sequence[DocumentResult], output_path: Path) -> None:
        """
        Write results to an Excel file with sheet 'extractions'.
        """
        df = self.to_dataframe(results)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Writing results to %s", output_path)
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="extractions", index=False)
