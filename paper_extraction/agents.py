from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from openai import APIConnectionError, AsyncOpenAI
from pydantic_ai import Agent, BinaryContent
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior
from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIModel
from pydantic_ai.providers.openai import OpenAIProvider
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import Settings
from .errors import (
    ConfigurationError,
    ExtractionServiceError,
    MalformedResponseError,
    ServiceUnavailableError,
)
from .prompt import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 409, 425, 429}
AUTH_STATUS = {401, 403}


@dataclass
class DocumentContext:
    """Loaded source document, forwarded to the model as-is."""

    file_path: Path
    data: bytes
    page_count: int
    page_sizes: Sequence[Tuple[float, float]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class ExtractionAgent:
    """
    Sends one prompt plus the PDF to the model and returns its JSON reply.

    Transient provider failures are retried with exponential backoff; the call
    blocks until a reply arrives or the retry budget is spent.
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        *,
        settings: Optional[Settings] = None,
        model: Optional[Model] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        retry_backoff: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.settings = settings or Settings()
        self.model_name = model_name or self.settings.EXTRACTION_MODEL
        self._model = model
        self._retry_attempts = (
            retry_attempts if retry_attempts is not None else self.settings.EXTRACTION_RETRY_ATTEMPTS
        )
        self._retry_delay = retry_delay if retry_delay is not None else self.settings.EXTRACTION_RETRY_DELAY
        self._retry_backoff = (
            retry_backoff if retry_backoff is not None else self.settings.EXTRACTION_RETRY_BACKOFF
        )
        self._timeout = timeout if timeout is not None else self.settings.EXTRACTION_TIMEOUT_SECONDS

    def check_credentials(self) -> None:
        """Raise ConfigurationError early when the provider cannot be reached."""
        if self._model is None:
            self.settings.require_api_key()

    def _build_client(self) -> AsyncOpenAI:
        api_key = self.settings.require_api_key()
        # Retries are handled here, not by the SDK.
        return AsyncOpenAI(
            api_key=api_key,
            base_url=self.settings.OPENROUTER_BASE_URL,
            max_retries=0,
            timeout=self._timeout,
        )

    def _build_agent(self, model: Model) -> Agent[None, str]:
        return Agent(
            model=model,
            output_type=str,
            system_prompt=SYSTEM_PROMPT,
        )

    async def _request(self, inputs: List[Any], model_settings: Dict[str, Any]) -> str:
        if self._model is not None:
            result = await self._build_agent(self._model).run(inputs, model_settings=model_settings)
            return result.output
        # The client is closed once the request finishes so no connection
        # outlives the event loop it was opened on.
        async with self._build_client() as client:
            model = OpenAIModel(self.model_name, provider=OpenAIProvider(openai_client=client))
            result = await self._build_agent(model).run(inputs, model_settings=model_settings)
            return result.output

    def run(
        self,
        prompt: str,
        document: DocumentContext,
        *,
        json_schema: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Ask the model to fill ``prompt`` from ``document``.

        Returns the decoded reply keyed by field name. Raises ConfigurationError,
        ExtractionServiceError or MalformedResponseError.
        """
        inputs: List[Any] = [
            prompt,
            BinaryContent(data=document.data, media_type="application/pdf"),
        ]
        model_settings: Dict[str, Any] = {"timeout": self._timeout}
        if json_schema is not None:
            model_settings["extra_body"] = {
                "response_format": {
                    "type": "json_schema",
                    "json_schema": {"name": "extraction", "strict": True, "schema": json_schema},
                }
            }

        raw_text = self._run_with_retry(inputs, model_settings)
        logger.debug("Model reply for %s: %d chars", document.file_path.name, len(raw_text))
        return try_parse_json(raw_text)

    def _run_with_retry(self, inputs: List[Any], model_settings: Dict[str, Any]) -> str:
        """Retry wrapper, configured from the instance settings."""

        @retry(
            retry=retry_if_exception_type(ServiceUnavailableError),
            stop=stop_after_attempt(max(1, self._retry_attempts)),
            wait=wait_exponential(
                multiplier=self._retry_delay,
                exp_base=self._retry_backoff,
                max=120,
            ),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                "Model provider unavailable, retrying in %.1fs (attempt %d/%d)",
                state.next_action.sleep,  # type: ignore[union-attr]
                state.attempt_number,
                self._retry_attempts,
            ),
        )
        def _do_run() -> str:
            return self._send(inputs, model_settings)

        return _do_run()

    def _send(self, inputs: List[Any], model_settings: Dict[str, Any]) -> str:
        """Single model request, with provider failures mapped onto our errors."""
        try:
            # One event loop per call; worker threads never share one.
            return asyncio.run(self._request(inputs, model_settings))
        except ModelHTTPError as e:
            status = e.status_code
            if status in AUTH_STATUS:
                logger.error("Model provider rejected credentials (%d)", status)
                raise ConfigurationError(
                    f"Model provider rejected credentials (HTTP {status}): {e.body}"
                ) from e
            if status in RETRYABLE_STATUS or status >= 500:
                logger.warning("Model provider returned %d: %s", status, e.body)
                raise ServiceUnavailableError(
                    f"Model provider returned HTTP {status}", status_code=status, detail=e.body
                ) from e
            logger.error("Model provider error %d: %s", status, e.body)
            raise ExtractionServiceError(
                f"Model provider returned HTTP {status}", status_code=status, detail=e.body
            ) from e
        except (APIConnectionError, httpx.TransportError) as e:
            logger.warning("Model provider connection failed: %s", e)
            raise ServiceUnavailableError(f"Cannot reach model provider: {e}", detail=str(e)) from e
        except UnexpectedModelBehavior as e:
            logger.error("Unexpected model behavior: %s", e)
            raise ExtractionServiceError(
                f"Unexpected model behavior: {e}", detail=getattr(e, "body", None)
            ) from e


def try_parse_json(raw: str) -> Dict[str, Any]:
    """
    Decode the model reply into a JSON object.

    Handles plain JSON, markdown fences, preamble text and <think> blocks.
    Raises MalformedResponseError when no JSON object can be found.
    """
    if not raw or not raw.strip():
        raise MalformedResponseError("Model reply was empty")

    cleaned = re.sub(r"<think>.*?</think>", "", raw, flags=re.DOTALL).strip()

    try:
        result = json.loads(cleaned)
        if isinstance(result, dict):
            return result
    except json.JSONDecodeError:
        pass

    match = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", cleaned, re.DOTALL)
    if match:
        try:
            result = json.loads(match.group(1).strip())
            if isinstance(result, dict):
                return result
        except json.JSONDecodeError:
            pass

    start = cleaned.find("{")
    if start >= 0:
        try:
            result, _ = json.JSONDecoder().raw_decode(cleaned[start:])
            if isinstance(result, dict):
                return result
        except json.JSONDecodeError:
            pass

    logger.warning("Could not parse JSON from model reply: %s", cleaned[:200])
    raise MalformedResponseError(
        f"Model reply is not a JSON object: {cleaned[:200]!r}"
    )
