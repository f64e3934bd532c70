"""Tests for the command-line entry point."""

from pathlib import Path
from unittest.mock import MagicMock

import pandas as pd
import pytest
from typer.testing import CliRunner

import main
from paper_extraction.agents import ExtractionAgent
from paper_extraction.errors import ExtractionServiceError

runner = CliRunner()


@pytest.fixture
def schema_file(tmp_path: Path, schema_csv: str) -> Path:
    path = tmp_path / "schema.csv"
    path.write_text(schema_csv, encoding="utf-8")
    return path


@pytest.fixture
def fake_agent(monkeypatch) -> MagicMock:
    agent = MagicMock(spec=ExtractionAgent)
    agent.run.return_value = {
        "title": {"value": "Attention Is All You Need", "match_type": "found", "page": 1},
        "sample_size": {"value": "1,000 participants", "match_type": "found", "page": 2},
    }
    monkeypatch.setattr(main, "ExtractionAgent", lambda model, settings: agent)
    return agent


def test_writes_one_csv_per_document(tmp_path: Path, schema_file: Path, pdf_file: Path, fake_agent):
    output_dir = tmp_path / "out"

    result = runner.invoke(main.app, [str(schema_file), str(pdf_file), "-o", str(output_dir)])

    assert result.exit_code == 0, result.output
    df = pd.read_csv(output_dir / "paper.csv", dtype=str, keep_default_na=False)
    assert list(df["field_name"]) == ["title", "sample_size", "funding_source"]
    assert df.iloc[1]["value"] == "1000"
    assert df.iloc[2]["match_type"] == "not_found"
    assert (output_dir / "extraction.log").exists()


def test_workbook_option(tmp_path: Path, schema_file: Path, pdf_file: Path, fake_agent):
    workbook = tmp_path / "all.xlsx"
    result = runner.invoke(
        main.app,
        [str(schema_file), str(pdf_file), "-o", str(tmp_path / "out"), "--workbook", str(workbook)],
    )
    assert result.exit_code == 0, result.output
    assert workbook.exists()


def test_schema_error_exit_code(tmp_path: Path, pdf_file: Path, fake_agent):
    bad_schema = tmp_path / "bad.csv"
    bad_schema.write_text("field_name,description\ndup,a\ndup,b\n", encoding="utf-8")

    result = runner.invoke(main.app, [str(bad_schema), str(pdf_file), "-o", str(tmp_path / "out")])

    assert result.exit_code == main.EXIT_SCHEMA_ERROR
    assert "Schema error" in result.output
    fake_agent.run.assert_not_called()


def test_missing_api_key_exit_code(tmp_path: Path, schema_file: Path, pdf_file: Path, monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "")

    result = runner.invoke(main.app, [str(schema_file), str(pdf_file), "-o", str(tmp_path / "out")])

    assert result.exit_code == main.EXIT_CONFIG_ERROR
    assert "OPENROUTER_API_KEY" in result.output


def test_document_failure_exit_code(tmp_path: Path, schema_file: Path, pdf_file: Path, fake_agent):
    fake_agent.run.side_effect = ExtractionServiceError("Model provider returned HTTP 503")

    result = runner.invoke(main.app, [str(schema_file), str(pdf_file), "-o", str(tmp_path / "out")])

    assert result.exit_code == main.EXIT_DOCUMENT_FAILED
    assert "503" in result.output
    assert not (tmp_path / "out" / "paper.csv").exists()
