from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Type

import httpx
from jsonschema import Draft7Validator
from pydantic import BaseModel, ValidationError

from .config import Settings, get_settings
from .errors import (
    CompletionTimeoutError,
    InvalidArgumentError,
    PromptTooLongError,
    ProviderError,
    ResponseFormatError,
    TransportError,
)
from .tokens import DEFAULT_ESTIMATOR, TokenEstimator

logger = logging.getLogger("ragbot.providers")

DEFAULT_MAX_PROMPT_TOKENS = 6000
JSON_SYSTEM_PROMPT = (
    "You are a JSON-only API. Respond with strictly valid JSON that matches the provided JSON Schema."
)

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
LOCAL_BASE_URL = "http://localhost:1234/v1"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

# LM Studio style servers need explicit sampling settings and stop markers.
LOCAL_EXTRA_BODY: Dict[str, Any] = {
    "max_tokens": 2000,
    "temperature": 0.7,
    "stop": ["\nUser SAID:", "User:", "Assistant:"],
}

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class BaseProvider:
    """
    Language-model client interface.

    Subclasses implement `_complete`; length checks and JSON decoding are
    shared so every provider fails the same way.
    """

    name = "base"

    def __init__(
        self,
        max_prompt_tokens: int = DEFAULT_MAX_PROMPT_TOKENS,
        estimator: Optional[TokenEstimator] = None,
    ) -> None:
        self.max_prompt_tokens = max_prompt_tokens
        self.estimator = estimator or DEFAULT_ESTIMATOR

    def check_prompt(self, prompt: str) -> None:
        if not prompt or not prompt.strip():
            raise InvalidArgumentError("Prompt must not be empty")
        estimated = self.estimator.count(prompt)
        if estimated > self.max_prompt_tokens:
            raise PromptTooLongError(estimated, self.max_prompt_tokens)

    async def complete(self, prompt: str) -> str:
        self.check_prompt(prompt)
        return await self._complete(prompt)

    async def complete_json(
        self,
        prompt: str,
        *,
        schema: Optional[Mapping[str, Any]] = None,
        response_model: Optional[Type[BaseModel]] = None,
    ) -> Any:
        """
        Complete and decode the answer as JSON.

        With `schema` the result is validated as Draft-07; with `response_model`
        it is validated into that pydantic model, which is returned instead of
        the raw data.
        """
        if schema is None and response_model is not None:
            schema = response_model.model_json_schema()
        self.check_prompt(prompt)
        raw_text = await self._complete(prompt, schema=schema)
        parsed = parse_json_response(raw_text)

        if schema is not None:
            errors = validate_with_schema(parsed, schema)
            if errors:
                raise ResponseFormatError(f"Response does not match schema: {errors[0]['message']}")

        if response_model is not None:
            try:
                return response_model.model_validate(parsed)
            except ValidationError as exc:
                raise ResponseFormatError(f"Response does not match {response_model.__name__}: {exc}") from exc
        return parsed

    async def _complete(self, prompt: str, *, schema: Optional[Mapping[str, Any]] = None) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def parse_json_response(raw_text: str) -> Any:
    text = (raw_text or "").strip()
    match = _FENCE.match(text)
    if match:
        text = match.group(1)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ResponseFormatError(f"Response is not valid JSON: {exc}") from exc


def validate_with_schema(instance: Any, schema: Mapping[str, Any]) -> List[Dict[str, Any]]:
    validator = Draft7Validator(schema)
    return [{"path": list(err.path), "message": err.message} for err in validator.iter_errors(instance)]


class StubProvider(BaseProvider):
    """
    Offline provider. Returns a canned reply, or schema-shaped JSON for
    structured requests. Prompts are recorded for inspection.
    """

    name = "stub"

    def __init__(self, reply: str = "Hello! (stub reply)", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.reply = reply
        self.prompts: List[str] = []

    async def _complete(self, prompt: str, *, schema: Optional[Mapping[str, Any]] = None) -> str:
        self.prompts.append(prompt)
        if schema is not None:
            return json.dumps(_generate_from_schema(schema))
        return self.reply


def _generate_from_schema(schema: Mapping[str, Any]) -> Any:
    """Small deterministic JSON generator for Draft-07-style schemas."""
    schema_type = schema.get("type")

    if schema_type == "object" or (schema_type is None and "properties" in schema):
        props = schema.get("properties", {}) or {}
        result: Dict[str, Any] = {name: _generate_from_schema(sub) for name, sub in props.items()}
        for name in schema.get("required", []) or []:
            result.setdefault(name, None)
        return result
    if schema_type == "array":
        return [_generate_from_schema(schema.get("items", {}) or {})]
    if schema_type == "string":
        enum = schema.get("enum")
        return enum[0] if enum else "stub"
    if schema_type == "number":
        return 0.5 if schema.get("minimum") == 0 and schema.get("maximum") == 1 else 1.0
    if schema_type == "integer":
        return 1
    if schema_type == "boolean":
        return False
    return None


class _HttpProvider(BaseProvider):
    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _post(self, url: str, *, headers: Dict[str, str], body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = await self._http().post(url, headers=headers, json=body)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise CompletionTimeoutError(f"{self.name} request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"{self.name} returned HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{self.name} request failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(f"{self.name} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise ProviderError(f"{self.name} returned an unexpected body")
        return data

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


class OpenAICompatibleProvider(_HttpProvider):
    """
    Chat-completions provider for OpenAI, OpenRouter and local LM Studio style
    servers. They share the request and response format.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        base_url: str = OPENAI_BASE_URL,
        *,
        name: str = "openai",
        extra_body: Optional[Dict[str, Any]] = None,
        supports_json_schema: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.name = name
        self.extra_body = dict(extra_body or {})
        self.supports_json_schema = supports_json_schema

    async def _complete(self, prompt: str, *, schema: Optional[Mapping[str, Any]] = None) -> str:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        messages: List[Dict[str, str]] = []
        body: Dict[str, Any] = {"model": self.model, **self.extra_body}
        if schema is not None:
            messages.append({"role": "system", "content": JSON_SYSTEM_PROMPT})
            if self.supports_json_schema:
                body["response_format"] = {
                    "type": "json_schema",
                    "json_schema": {"name": "agent_output", "schema": dict(schema)},
                }
            else:
                prompt = f"{prompt}\n\nJSON Schema:\n{json.dumps(schema)}"
        messages.append({"role": "user", "content": prompt})
        body["messages"] = messages

        data = await self._post(f"{self.base_url}/chat/completions", headers=headers, body=body)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"{self.name} response has no choices") from exc
        if not isinstance(content, str):
            raise ProviderError(f"{self.name} response content is empty")
        return content.strip()


class GeminiProvider(_HttpProvider):
    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        base_url: str = GEMINI_BASE_URL,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    async def _complete(self, prompt: str, *, schema: Optional[Mapping[str, Any]] = None) -> str:
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}
        body: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if schema is not None:
            body["generationConfig"] = {"responseMimeType": "application/json"}
            body["contents"][0]["parts"].append({"text": f"JSON Schema:\n{json.dumps(schema)}"})

        data = await self._post(
            f"{self.base_url}/models/{self.model}:generateContent",
            headers=headers,
            body=body,
        )
        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderError("gemini response has no candidates") from exc
        if not text.strip():
            raise ProviderError("gemini response content is empty")
        return text.strip()


def build_provider(settings: Optional[Settings] = None) -> BaseProvider:
    """Factory that chooses the concrete provider implementation."""
    settings = settings or get_settings()
    common: Dict[str, Any] = {"max_prompt_tokens": settings.max_prompt_tokens}
    http: Dict[str, Any] = {**common, "timeout": settings.llm_timeout_seconds}

    if settings.provider_name == "openrouter":
        if not settings.openrouter_api_key:
            logger.warning("PROVIDER=openrouter but OPENROUTER_API_KEY is not set; using stub provider")
            return StubProvider(**common)
        return OpenAICompatibleProvider(
            settings.openrouter_api_key,
            settings.llm_model or "openai/gpt-4o-mini",
            settings.llm_base_url or OPENROUTER_BASE_URL,
            name="openrouter",
            **http,
        )
    if settings.provider_name == "openai":
        if not settings.openai_api_key:
            logger.warning("PROVIDER=openai but OPENAI_API_KEY is not set; using stub provider")
            return StubProvider(**common)
        return OpenAICompatibleProvider(
            settings.openai_api_key,
            settings.llm_model or "gpt-4o-mini",
            settings.llm_base_url or OPENAI_BASE_URL,
            name="openai",
            **http,
        )
    if settings.provider_name == "local":
        return OpenAICompatibleProvider(
            None,
            settings.llm_model or "local-model",
            settings.llm_base_url or LOCAL_BASE_URL,
            name="local",
            extra_body=LOCAL_EXTRA_BODY,
            supports_json_schema=False,
            **http,
        )
    if settings.provider_name == "gemini":
        if not settings.gemini_api_key:
            logger.warning("PROVIDER=gemini but GEMINI_API_KEY is not set; using stub provider")
            return StubProvider(**common)
        return GeminiProvider(
            settings.gemini_api_key,
            settings.llm_model or "gemini-1.5-flash",
            settings.llm_base_url or GEMINI_BASE_URL,
            **http,
        )

    return StubProvider(**common)
