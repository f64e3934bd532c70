"""Shared test fixtures for the extraction pipeline tests."""

import json
from pathlib import Path
from typing import Any, Callable, List

import fitz
import pytest
from pydantic_ai.messages import ModelMessage, ModelResponse, TextPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from paper_extraction.agents import DocumentContext
from paper_extraction.config import Settings
from paper_extraction.schema import FieldSpec, Schema


@pytest.fixture
def schema_csv() -> str:
    return (
        "field_name,description,kind,infer,expected_unit\n"
        "title,Paper title,text,false,\n"
        "sample_size,Number of study participants,number,false,count\n"
        "funding_source,Who funded the study,text,true,\n"
    )


@pytest.fixture
def schema() -> Schema:
    return Schema(
        (
            FieldSpec(name="title", description="paper title"),
            FieldSpec(
                name="sample_size",
                description="Number of study participants",
                kind="number",
                expected_unit="count",
            ),
            FieldSpec(name="funding_source", description="Who funded the study", infer=True),
        )
    )


@pytest.fixture
def pdf_bytes() -> bytes:
    """A two-page PDF generated in memory."""
    doc = fitz.open()
    for text in ("Attention Is All You Need", "Funding: none declared"):
        page = doc.new_page(width=612, height=792)
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def pdf_file(tmp_path: Path, pdf_bytes: bytes) -> Path:
    path = tmp_path / "paper.pdf"
    path.write_bytes(pdf_bytes)
    return path


@pytest.fixture
def document() -> DocumentContext:
    return DocumentContext(
        file_path=Path("paper.pdf"),
        data=b"%PDF-1.7 test",
        page_count=2,
        page_sizes=[(612.0, 792.0), (612.0, 792.0)],
    )


@pytest.fixture
def settings() -> Settings:
    """Settings with a fake key and instant retries."""
    return Settings(
        OPENROUTER_API_KEY="test-key",
        EXTRACTION_RETRY_ATTEMPTS=3,
        EXTRACTION_RETRY_DELAY=0.0,
        EXTRACTION_RETRY_BACKOFF=1.0,
    )


@pytest.fixture
def title_reply() -> dict:
    return {
        "title": {
            "value": "Attention Is All You Need",
            "match_type": "found",
            "comment": None,
            "page": 1,
            "xmin": 72.0,
            "ymin": 60.0,
            "xmax": 300.0,
            "ymax": 80.0,
        }
    }


class ScriptedModel:
    """FunctionModel driver that plays back one step per call.

    A step is either a payload (serialized as the reply text), a string (sent
    verbatim) or an exception instance (raised).
    """

    def __init__(self, steps: List[Any]):
        self.steps = list(steps)
        self.calls: List[List[ModelMessage]] = []

    def respond(self, messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        self.calls.append(messages)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, BaseException):
            raise step
        text = step if isinstance(step, str) else json.dumps(step)
        return ModelResponse(parts=[TextPart(content=text)])

    @property
    def model(self) -> FunctionModel:
        return FunctionModel(self.respond)


@pytest.fixture
def scripted() -> Callable[..., ScriptedModel]:
    def _make(*steps: Any) -> ScriptedModel:
        return ScriptedModel(list(steps))

    return _make
