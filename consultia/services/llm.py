import asyncio
import json
import logging
import re
from typing import TypeVar

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from consultia.config import (
    ANTHROPIC_API_KEY,
    LLM_MODEL_ANALYSIS,
    LLM_MODEL_REPORT,
    LLM_PROVIDER,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    OPENAI_API_KEY,
)
from consultia.errors import ConfigurationError, EngineError
from consultia.models.analysis import ANALYSIS_ITEM_KEYS, MedicalAnalysis

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


_ANTHROPIC_DEFAULTS = {
    "analysis": "claude-sonnet-4-5",
    "report": "claude-sonnet-4-5",
}

_OPENAI_DEFAULTS = {
    "analysis": "gpt-4o",
    "report": "gpt-4o",
}


def _strip_json(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start:end + 1]
    return text


def _coerce_analysis(data: dict) -> dict:
    """Wrap bare-string list items into the object shape each list expects."""
    coerced = dict(data)
    for field, key in ANALYSIS_ITEM_KEYS.items():
        value = data.get(field)
        if not isinstance(value, list):
            continue
        coerced[field] = [
            item if isinstance(item, dict) else {key: str(item).strip()}
            for item in value
        ]
    return coerced


def _coerce_payload(data: object, response_model: type[T]) -> object:
    if response_model is MedicalAnalysis and isinstance(data, dict):
        return _coerce_analysis(data)
    return data


def parse_response(raw: str, response_model: type[T]) -> T:
    """Validate engine output against ``response_model``.

    Raises EngineError when the text is not JSON or does not match the schema.
    """
    raw = _strip_json(raw)
    try:
        return response_model.model_validate_json(raw)
    except ValidationError:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise EngineError(f"Engine returned non-JSON output: {exc}") from exc
        try:
            return response_model.model_validate(_coerce_payload(payload, response_model))
        except ValidationError as exc:
            raise EngineError(
                f"Engine output failed {response_model.__name__} validation: "
                f"{exc.error_count()} errors"
            ) from exc


class LLMClient:
    """Stateless request/response gateway to the reasoning engine."""

    def __init__(
        self,
        provider: str | None = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
        temperature: float = LLM_TEMPERATURE,
    ) -> None:
        provider = (provider or LLM_PROVIDER or "auto").lower()
        if provider == "auto":
            if ANTHROPIC_API_KEY:
                provider = "anthropic"
            elif OPENAI_API_KEY:
                provider = "openai"
            else:
                raise ConfigurationError(
                    "No reasoning engine configured: set OPENAI_API_KEY or ANTHROPIC_API_KEY"
                )
        if provider == "anthropic" and not ANTHROPIC_API_KEY:
            raise ConfigurationError("LLM_PROVIDER=anthropic requires ANTHROPIC_API_KEY")
        if provider == "openai" and not OPENAI_API_KEY:
            raise ConfigurationError("LLM_PROVIDER=openai requires OPENAI_API_KEY")
        if provider not in ("anthropic", "openai"):
            raise ConfigurationError(f"Unknown LLM_PROVIDER: {provider}")

        self.provider = provider
        self.timeout = timeout
        self.temperature = temperature
        self._anthropic = AsyncAnthropic(api_key=ANTHROPIC_API_KEY) if provider == "anthropic" else None
        self._openai = AsyncOpenAI(api_key=OPENAI_API_KEY) if provider == "openai" else None

    def model_for(self, purpose: str) -> str:
        if purpose == "analysis" and LLM_MODEL_ANALYSIS:
            return LLM_MODEL_ANALYSIS
        if purpose == "report" and LLM_MODEL_REPORT:
            return LLM_MODEL_REPORT
        if self.provider == "anthropic":
            return _ANTHROPIC_DEFAULTS.get(purpose, _ANTHROPIC_DEFAULTS["analysis"])
        return _OPENAI_DEFAULTS.get(purpose, _OPENAI_DEFAULTS["analysis"])

    async def complete(
        self,
        *,
        system: str,
        user: str,
        max_tokens: int = 2048,
        purpose: str = "analysis",
    ) -> str:
        """Send one self-contained prompt and return the raw text reply."""
        try:
            return await asyncio.wait_for(
                self._complete(system=system, user=user, max_tokens=max_tokens, purpose=purpose),
                timeout=self.timeout,
            )
        except TimeoutError as exc:
            raise EngineError(f"Reasoning engine timed out after {self.timeout:.0f}s") from exc
        except (openai.OpenAIError, anthropic.AnthropicError) as exc:
            raise EngineError(f"Reasoning engine request failed: {exc}") from exc

    async def _complete(self, *, system: str, user: str, max_tokens: int, purpose: str) -> str:
        model = self.model_for(purpose)

        if self.provider == "anthropic":
            message = await self._anthropic.messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=self.temperature,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
            raw = ""
            for block in message.content:
                if hasattr(block, "text"):
                    raw += block.text
        else:
            response = await self._openai.chat.completions.create(
                model=model,
                max_tokens=max_tokens,
                temperature=self.temperature,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                response_format={"type": "json_object"},
            )
            raw = response.choices[0].message.content or ""

        if not raw.strip():
            raise EngineError("Reasoning engine returned an empty response")
        return raw

    async def generate_json(
        self,
        *,
        system: str,
        user: str,
        response_model: type[T],
        max_tokens: int = 2048,
        purpose: str = "analysis",
    ) -> T:
        raw = await self.complete(system=system, user=user, max_tokens=max_tokens, purpose=purpose)
        return parse_response(raw, response_model)


_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    global _client
    if _client is None:
        _client = LLMClient()
    return _client
