"""Tests for the extraction client: reply decoding, retry and error mapping."""

import httpx
from openai import AsyncOpenAI
import pytest
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.messages import UserPromptPart

from paper_extraction.agents import ExtractionAgent, try_parse_json
from paper_extraction.config import Settings
from paper_extraction.errors import (
    ConfigurationError,
    ExtractionServiceError,
    MalformedResponseError,
    ServiceUnavailableError,
)


def _http_error(status: int, body: object = None) -> ModelHTTPError:
    return ModelHTTPError(status_code=status, model_name="function", body=body)


class TestTryParseJSON:
    def test_direct_json(self):
        assert try_parse_json('{"title": {"value": "X"}}') == {"title": {"value": "X"}}

    def test_markdown_fence(self):
        raw = '```json\n{"title": {"value": "X", "match_type": "found"}}\n```'
        assert try_parse_json(raw)["title"]["match_type"] == "found"

    def test_preamble_with_nested_object(self):
        raw = 'Here is the data:\n{"title": {"value": "X", "page": 1}} hope this helps'
        assert try_parse_json(raw) == {"title": {"value": "X", "page": 1}}

    def test_think_block_stripped(self):
        raw = '<think>{"wrong": {}}</think>\n{"title": {"value": "Y"}}'
        result = try_parse_json(raw)
        assert "wrong" not in result
        assert result["title"]["value"] == "Y"

    def test_array_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            try_parse_json("[1, 2, 3]")

    def test_plain_text_is_malformed(self):
        with pytest.raises(MalformedResponseError, match="not a JSON object"):
            try_parse_json("I could not read the document.")

    def test_empty_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            try_parse_json("   ")


class TestRun:
    def test_successful_extraction(self, scripted, settings, document, title_reply):
        script = scripted(title_reply)
        agent = ExtractionAgent(settings=settings, model=script.model)

        reply = agent.run("extract the title", document)

        assert reply == title_reply
        assert len(script.calls) == 1

    def test_prompt_and_pdf_are_sent(self, scripted, settings, document, title_reply):
        script = scripted(title_reply)
        agent = ExtractionAgent(settings=settings, model=script.model)

        agent.run("extract the title", document, json_schema={"type": "object"})

        user_parts = [
            part
            for message in script.calls[0]
            for part in message.parts
            if isinstance(part, UserPromptPart)
        ]
        content = user_parts[0].content
        assert content[0] == "extract the title"
        assert content[1].media_type == "application/pdf"
        assert content[1].data == document.data

    def test_transient_failures_then_success(self, scripted, settings, document, title_reply):
        """Two 503s followed by a good reply stay within the retry budget."""
        script = scripted(_http_error(503, "overloaded"), _http_error(503, "overloaded"), title_reply)
        agent = ExtractionAgent(settings=settings, model=script.model)

        reply = agent.run("prompt", document)

        assert reply == title_reply
        assert len(script.calls) == 3

    def test_retries_exhausted(self, scripted, settings, document):
        script = scripted(_http_error(503, {"error": "overloaded"}))
        agent = ExtractionAgent(settings=settings, model=script.model)

        with pytest.raises(ExtractionServiceError) as excinfo:
            agent.run("prompt", document)

        assert isinstance(excinfo.value, ServiceUnavailableError)
        assert excinfo.value.status_code == 503
        assert excinfo.value.detail == {"error": "overloaded"}
        assert len(script.calls) == 3

    def test_rate_limit_is_retried(self, scripted, settings, document, title_reply):
        script = scripted(_http_error(429), title_reply)
        agent = ExtractionAgent(settings=settings, model=script.model)

        assert agent.run("prompt", document) == title_reply
        assert len(script.calls) == 2

    def test_connection_error_is_retried(self, scripted, settings, document, title_reply):
        script = scripted(httpx.ConnectError("Connection refused"), title_reply)
        agent = ExtractionAgent(settings=settings, model=script.model)

        assert agent.run("prompt", document) == title_reply
        assert len(script.calls) == 2

    def test_client_error_is_not_retried(self, scripted, settings, document):
        script = scripted(_http_error(400, "bad request"))
        agent = ExtractionAgent(settings=settings, model=script.model)

        with pytest.raises(ExtractionServiceError) as excinfo:
            agent.run("prompt", document)

        assert not isinstance(excinfo.value, ServiceUnavailableError)
        assert excinfo.value.detail == "bad request"
        assert len(script.calls) == 1

    def test_auth_failure_is_configuration_error(self, scripted, settings, document):
        script = scripted(_http_error(401, "invalid key"))
        agent = ExtractionAgent(settings=settings, model=script.model)

        with pytest.raises(ConfigurationError, match="401"):
            agent.run("prompt", document)
        assert len(script.calls) == 1

    def test_retry_attempts_override(self, scripted, settings, document):
        script = scripted(_http_error(502))
        agent = ExtractionAgent(settings=settings, model=script.model, retry_attempts=5)

        with pytest.raises(ServiceUnavailableError):
            agent.run("prompt", document)
        assert len(script.calls) == 5

    def test_malformed_reply(self, scripted, settings, document):
        script = scripted("Sorry, I cannot help with that.")
        agent = ExtractionAgent(settings=settings, model=script.model)

        with pytest.raises(MalformedResponseError):
            agent.run("prompt", document)


class TestCredentials:
    def test_missing_key_raises(self):
        agent = ExtractionAgent(settings=Settings(OPENROUTER_API_KEY=""))
        with pytest.raises(ConfigurationError, match="OPENROUTER_API_KEY"):
            agent.check_credentials()

    def test_present_key_passes(self, settings):
        ExtractionAgent(settings=settings).check_credentials()

    def test_injected_model_skips_key_check(self, scripted):
        agent = ExtractionAgent(
            settings=Settings(OPENROUTER_API_KEY=""), model=scripted({}).model
        )
        agent.check_credentials()

    def test_model_name_defaults_to_settings(self, settings):
        assert ExtractionAgent(settings=settings).model_name == settings.EXTRACTION_MODEL
        assert ExtractionAgent("openai/gpt-4o", settings=settings).model_name == "openai/gpt-4o"


class TestClient:
    def _agent_with_transport(self, settings, monkeypatch, handler):
        clients = []

        def build_client():
            client = AsyncOpenAI(
                api_key="test-key",
                base_url="https://openrouter.test/api/v1",
                max_retries=0,
                http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            )
            clients.append(client)
            return client

        agent = ExtractionAgent(settings=settings)
        monkeypatch.setattr(agent, "_build_client", build_client)
        return agent, clients

    def test_client_closed_after_each_attempt(self, settings, document, monkeypatch):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(503, json={"error": {"message": "overloaded"}})

        agent, clients = self._agent_with_transport(settings, monkeypatch, handler)

        with pytest.raises(ServiceUnavailableError):
            agent.run("extract", document)

        assert len(requests) == 3
        assert len(clients) == 3
        assert all(client.is_closed() for client in clients)

    def test_credentials_rejected_by_provider(self, settings, document, monkeypatch):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "bad key"}})

        agent, clients = self._agent_with_transport(settings, monkeypatch, handler)

        with pytest.raises(ConfigurationError):
            agent.run("extract", document)
        assert clients[0].is_closed()
