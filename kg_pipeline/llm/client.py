# kg_pipeline/llm/client.py

"""
LLM oracle interface and the OpenAI-backed implementation.

The pipeline only ever talks to `LLMOracle.complete`. Tests substitute
a scripted oracle; production uses OpenAIOracle.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Optional, Type, TypeVar, Union

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying

from kg_pipeline.config.settings import settings
from kg_pipeline.errors import MalformedDataError, TransientExternalError
from kg_pipeline.llm.prompts import SYSTEM_PROMPT
from kg_pipeline.retry import retry_policy

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_structured(text: str, schema: Type[T]) -> T:
    """
    Parse an oracle response into `schema`.

    Raises MalformedDataError for empty text, invalid JSON, or a payload
    that does not validate.
    """
    if not text or not text.strip():
        raise MalformedDataError(f"empty response for {schema.__name__}")

    body = text.strip()
    m = _FENCE_RE.match(body)
    if m:
        body = m.group(1)

    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise MalformedDataError(f"response is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedDataError(
            f"expected a JSON object for {schema.__name__}, got {type(data).__name__}"
        )

    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise MalformedDataError(
            f"response does not match {schema.__name__}: {exc.error_count()} error(s)"
        ) from exc


class LLMOracle(ABC):
    """Text-completion oracle used for extraction and classification."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        structured_output: Optional[Type[T]] = None,
    ) -> Union[str, T]:
        """
        Complete `prompt`.

        Returns the raw text, or an instance of `structured_output` when
        a schema is given. Raises TransientExternalError on network,
        timeout or rate-limit failures and MalformedDataError when the
        response does not satisfy the schema.
        """


class OpenAIOracle(LLMOracle):
    """
    Oracle backed by any OpenAI-compatible chat completions endpoint.

    Transient failures are retried with exponential backoff before
    surfacing as TransientExternalError. Structured calls use JSON mode.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        system_prompt: str = SYSTEM_PROMPT,
        client: Optional[AsyncOpenAI] = None,
        retry_attempts: Optional[int] = None,
        retry_initial_wait: Optional[float] = None,
    ) -> None:
        if api_key is None and settings.OPENAI_API_KEY is not None:
            api_key = settings.OPENAI_API_KEY.get_secret_value()

        self._api_key = api_key
        self._base_url = base_url or settings.OPENAI_BASE_URL
        self._model = model or settings.LLM_MODEL
        self._system_prompt = system_prompt
        self._client = client
        self._retry = retry_policy(attempts=retry_attempts, initial_wait=retry_initial_wait)

    @property
    def model_name(self) -> str:
        return self._model

    def _get_client(self) -> AsyncOpenAI:
        # Created lazily so constructing the oracle never needs a key.
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=settings.http_timeout_s,
                max_retries=0,
            )
        return self._client

    async def _request(self, prompt: str, temperature: float, max_tokens: int, json_mode: bool) -> str:
        kwargs: dict[str, Any] = dict(
            model=self._model,
            messages=[
                {"role": "system", "content": self._system_prompt},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._get_client().chat.completions.create(**kwargs)
        except RateLimitError as exc:
            raise TransientExternalError(f"rate limited: {exc}", status_code=429) from exc
        except InternalServerError as exc:
            raise TransientExternalError(
                f"server error: {exc}", status_code=exc.status_code
            ) from exc
        except (APITimeoutError, APIConnectionError) as exc:
            raise TransientExternalError(f"connection failed: {exc}") from exc
        except APIStatusError as exc:
            # Other 4xx (bad request, context too long, auth): resending will not help.
            if exc.status_code < 500 and exc.status_code != 408:
                raise MalformedDataError(
                    f"request rejected ({exc.status_code}): {exc}"
                ) from exc
            raise TransientExternalError(
                f"server error: {exc}", status_code=exc.status_code
            ) from exc

        if not response.choices:
            raise MalformedDataError("completion returned no choices")
        return response.choices[0].message.content or ""

    async def complete(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        structured_output: Optional[Type[T]] = None,
    ) -> Union[str, T]:
        temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
        max_tokens = settings.LLM_MAX_TOKENS if max_tokens is None else max_tokens
        json_mode = structured_output is not None

        text = ""
        async for attempt in AsyncRetrying(**self._retry):
            with attempt:
                text = await self._request(prompt, temperature, max_tokens, json_mode)

        logger.debug("Oracle %s returned %d chars", self._model, len(text))

        if structured_output is None:
            return text
        return parse_structured(text, structured_output)
