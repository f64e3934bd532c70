import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
import typer

from paper_extraction.agents import ExtractionAgent
from paper_extraction.config import Settings
from paper_extraction.emitter import write_csv
from paper_extraction.errors import ConfigurationError, SchemaError
from paper_extraction.orchestrator import ExtractionOrchestrator
from paper_extraction.preprocess import PDFPreprocessor
from paper_extraction.prompt import TemplateVariant
from paper_extraction.schema import read_schema

load_dotenv()

EXIT_DOCUMENT_FAILED = 1
EXIT_SCHEMA_ERROR = 2
EXIT_CONFIG_ERROR = 3


app = typer.Typer(add_completion=False)


@app.command()
def process(
    schema_path: Path = typer.Argument(..., help="Path to the schema CSV file"),
    files: List[Path] = typer.Argument(..., help="PDF files to extract data from"),
    output_dir: Path = typer.Option(
        Path("extractions"),
        "--output-dir",
        "-o",
        help="Directory for per-document CSV files",
    ),
    template: Optional[TemplateVariant] = typer.Option(
        None,
        "--template",
        "-t",
        help="Instruction template: basic (pixel boxes) or extended (points, unit normalization)",
    ),
    batch: Optional[int] = typer.Option(
        None, "--batch", help="Number of fields to request per model call"
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", help="Documents processed concurrently"
    ),
    model: Optional[str] = typer.Option(None, "--model", help="Model name at the provider"),
    workbook: Optional[Path] = typer.Option(
        None, "--workbook", help="Also write a combined Excel workbook"
    ),
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    ),
):
    """
    Extract the schema's fields from each PDF and write one CSV per document.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    log_path = output_dir / "extraction.log"
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_path),
        ],
    )
    logger = logging.getLogger(__name__)
    logger.info("Logging to %s", log_path)

    settings = Settings()

    try:
        schema = read_schema(schema_path)
    except SchemaError as exc:
        logger.error("Schema error: %s", exc)
        typer.echo(f"Schema error: {exc}", err=True)
        raise typer.Exit(code=EXIT_SCHEMA_ERROR)

    try:
        variant = template or TemplateVariant(settings.EXTRACTION_TEMPLATE.lower())
    except ValueError:
        typer.echo(f"Configuration error: unknown template {settings.EXTRACTION_TEMPLATE!r}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    orchestrator = ExtractionOrchestrator(
        extraction_agent=ExtractionAgent(model, settings=settings),
        pdf_preprocessor=PDFPreprocessor(),
        variant=variant,
        batch_size=batch if batch is not None else settings.EXTRACTION_BATCH_SIZE,
        max_workers=workers if workers is not None else settings.EXTRACTION_MAX_WORKERS,
        comment_word_limit=settings.COMMENT_WORD_LIMIT,
    )

    try:
        results = orchestrator.process(schema, files)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    failed = 0
    for result in results:
        if result.result is not None:
            csv_path = write_csv(result.result, output_dir / f"{result.document.stem}.csv")
            typer.echo(f"{result.document.name}: ok -> {csv_path}")
        else:
            failed += 1
            typer.echo(f"{result.document.name}: error ({result.error})", err=True)

    if workbook is not None:
        orchestrator.to_excel(results, workbook)
        typer.echo(f"Wrote workbook to {workbook}")

    if failed:
        raise typer.Exit(code=EXIT_DOCUMENT_FAILED)


def main():
    app()


if __name__ == "__main__":
    main()
