"""
LLM Client

Text generation for the two places the pipeline consults a model: route
classification (a JSON object validated by the caller) and the optional
narrative paragraph. Providers are Mock, Bedrock and Ollama, selected by
configuration.
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from vitaltrend.config import LLMSettings, get_settings

logger = structlog.get_logger(__name__)

JSON_SYSTEM_PROMPT = "You are a careful clinical data assistant. Always respond with valid JSON."

BEDROCK_ANTHROPIC_VERSION = "bedrock-2023-05-31"


def extract_json(text: str) -> dict[str, Any]:
    """Parse a JSON object from model output, tolerating surrounding prose."""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if not match:
            raise ValueError(f"Could not parse JSON from response: {text[:200]}")
        parsed = json.loads(match.group())
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def structured_prompt(prompt: str, schema: dict[str, Any]) -> str:
    return f"""{prompt}

Please respond with valid JSON matching this schema:
{json.dumps(schema, indent=2)}

Respond ONLY with the JSON, no other text."""


class BaseLLMClient(ABC):
    """
    Abstract text-generation provider.

    Subclasses implement `generate`. `generate_structured` defaults to a
    schema-carrying prompt whose reply is parsed with `extract_json`; the
    caller still validates the object against its own model.
    """

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Generate free text."""
        pass

    async def generate_structured(
        self,
        prompt: str,
        schema: dict[str, Any],
        system_prompt: str | None = None,
    ) -> dict[str, Any]:
        """Generate a JSON object shaped by `schema`."""
        reply = await self.generate(
            structured_prompt(prompt, schema),
            system_prompt=system_prompt or JSON_SYSTEM_PROMPT,
            temperature=0.0,
        )
        return extract_json(reply)


# =============================================================================
# Mock
# =============================================================================

MOCK_NARRATIVE = (
    "Trend overview: the requested vital signs are summarized below. "
    "Any flagged values are advisory; suggest review by the care team."
)

_SCHEMA_DEFAULTS: dict[str, Any] = {
    "number": 0,
    "integer": 0,
    "boolean": False,
}


def schema_defaults(schema: dict[str, Any]) -> dict[str, Any]:
    """
    Placeholder object for a flat JSON schema.

    Enum properties take their first allowed value, so a route schema yields
    its first route. Arrays and objects are empty.
    """
    result: dict[str, Any] = {}
    for key, prop in schema.get("properties", {}).items():
        if prop.get("enum"):
            result[key] = prop["enum"][0]
            continue
        kind = prop.get("type", "string")
        if kind == "array":
            result[key] = []
        elif kind == "object":
            result[key] = {}
        elif kind == "string":
            result[key] = f"mock {key}"
        else:
            result[key] = _SCHEMA_DEFAULTS.get(kind)
    return result


class MockLLMClient(BaseLLMClient):
    """Offline provider with fixed output, for development and tests."""

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        logger.debug("Mock LLM generate", prompt_length=len(prompt))
        return MOCK_NARRATIVE

    async def generate_structured(
        self,
        prompt: str,
        schema: dict[str, Any],
        system_prompt: str | None = None,
    ) -> dict[str, Any]:
        logger.debug("Mock LLM generate_structured", prompt_length=len(prompt))
        return schema_defaults(schema)


# =============================================================================
# AWS Bedrock
# =============================================================================

def bedrock_runtime(settings: LLMSettings):
    """boto3 `bedrock-runtime` client from settings."""
    import boto3

    secret = settings.aws_secret_access_key
    return boto3.client(
        "bedrock-runtime",
        region_name=settings.aws_region,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=secret.get_secret_value() if secret else None,
    )


def messages_body(
    prompt: str,
    system_prompt: str | None,
    max_tokens: int,
    temperature: float,
) -> str:
    """Anthropic messages request body for `invoke_model`."""
    body: dict[str, Any] = {
        "anthropic_version": BEDROCK_ANTHROPIC_VERSION,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system_prompt:
        body["system"] = system_prompt
    return json.dumps(body)


def messages_text(payload: dict[str, Any]) -> str:
    """Concatenated text blocks of a messages response."""
    blocks = payload.get("content") or []
    return "".join(b.get("text", "") for b in blocks if b.get("type", "text") == "text")


class BedrockLLMClient(BaseLLMClient):
    """
    Anthropic models on AWS Bedrock.

    Args:
        runtime: boto3 `bedrock-runtime` client; built from settings if omitted
        settings: LLM settings; defaults to the process settings
    """

    def __init__(self, runtime: Any = None, settings: LLMSettings | None = None):
        self.settings = settings or get_settings().llm
        self.runtime = runtime if runtime is not None else bedrock_runtime(self.settings)
        self.model_id = self.settings.bedrock_model_id
        logger.info("Initialized Bedrock LLM client", model_id=self.model_id,
                    region=self.settings.aws_region)

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        body = messages_body(
            prompt,
            system_prompt,
            max_tokens=max_tokens or self.settings.max_tokens,
            temperature=self.settings.temperature if temperature is None else temperature,
        )
        logger.debug("Bedrock generate", model=self.model_id, prompt_length=len(prompt))

        # boto3 is synchronous
        response = await asyncio.to_thread(
            self.runtime.invoke_model,
            modelId=self.model_id,
            contentType="application/json",
            accept="application/json",
            body=body,
        )
        return messages_text(json.loads(response["body"].read()))


# =============================================================================
# Ollama
# =============================================================================

class OllamaLLMClient(BaseLLMClient):
    """Local models served by Ollama."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        settings = get_settings().llm
        self.base_url = settings.ollama_base_url.rstrip("/")
        self.model = settings.ollama_model
        self.max_tokens = settings.max_tokens
        self.temperature = settings.temperature
        self._transport = transport

        logger.info("Initialized Ollama LLM client", model=self.model, base_url=self.base_url)

    def _body(self, prompt: str, system_prompt: str | None, **options: Any) -> dict[str, Any]:
        body = {"model": self.model, "prompt": prompt, "stream": False, "options": options}
        if system_prompt:
            body["system"] = system_prompt
        return body

    async def _post(self, body: dict[str, Any]) -> str:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=120.0,
            transport=self._transport,
        ) as client:
            response = await client.post("/api/generate", json=body)
            response.raise_for_status()
            return response.json().get("response", "")

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        logger.debug("Ollama generate", model=self.model, prompt_length=len(prompt))
        return await self._post(self._body(
            prompt,
            system_prompt,
            temperature=self.temperature if temperature is None else temperature,
            num_predict=max_tokens or self.max_tokens,
        ))

    async def generate_structured(
        self,
        prompt: str,
        schema: dict[str, Any],
        system_prompt: str | None = None,
    ) -> dict[str, Any]:
        body = self._body(structured_prompt(prompt, schema), system_prompt, temperature=0.0)
        body["format"] = "json"
        return extract_json(await self._post(body))


# =============================================================================
# Provider selection
# =============================================================================

PROVIDERS: dict[str, type[BaseLLMClient]] = {
    "mock": MockLLMClient,
    "bedrock": BedrockLLMClient,
    "ollama": OllamaLLMClient,
}


class LLMClient(BaseLLMClient):
    """
    The configured provider behind one object.

    Usage:
        client = LLMClient()
        text = await client.generate("Summarize these vital-sign trends")
    """

    def __init__(self, provider: str | None = None):
        provider = provider or get_settings().llm.llm_provider
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown LLM provider: {provider}")
        self.provider = provider
        self.delegate = PROVIDERS[provider]()

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        return await self.delegate.generate(prompt, system_prompt, max_tokens, temperature)

    async def generate_structured(
        self,
        prompt: str,
        schema: dict[str, Any],
        system_prompt: str | None = None,
    ) -> dict[str, Any]:
        return await self.delegate.generate_structured(prompt, schema, system_prompt)


_llm_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    """Process-wide LLM client, created on first use."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
