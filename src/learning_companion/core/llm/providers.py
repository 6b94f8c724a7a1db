"""
LLM provider implementations for the Learning Companion.

Cloud providers are created lazily. SDK exceptions are translated into
``ProviderError`` so the error classifier sees uniform transport signals.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from ..config import ProviderConfig
from ..exceptions import ConfigurationError, ProviderError
from .interface import ChatMessage, GenerationRequest, GenerationResult, LLMInterface

logger = logging.getLogger(__name__)


def translate_sdk_error(error: Exception, provider: str) -> ProviderError:
    """Map an SDK exception onto status code / transport code fields."""
    status_code = getattr(error, "status_code", None)
    name = type(error).__name__
    code: Optional[str] = None
    if "Timeout" in name:
        code = "ETIMEDOUT"
    elif "Connection" in name:
        code = "ECONNREFUSED"
    return ProviderError(
        f"{provider} request failed: {error}",
        status_code=status_code if isinstance(status_code, int) else None,
        code=code,
        provider=provider,
    )


def _split_system(
    messages: List[ChatMessage], instructions: str
) -> Tuple[str, List[Dict[str, str]]]:
    """Fold system-role messages into the system prompt and merge same-role runs."""
    system_parts = [instructions] if instructions else []
    turns: List[Dict[str, str]] = []
    for message in messages:
        if message.role == "system":
            system_parts.append(message.content)
            continue
        if turns and turns[-1]["role"] == message.role:
            turns[-1]["content"] += "\n" + message.content
        else:
            turns.append({"role": message.role, "content": message.content})
    return "\n\n".join(system_parts), turns


class AnthropicProvider(LLMInterface):
    """Anthropic provider using the Messages API."""

    name = "anthropic"

    def __init__(self, config: Dict[str, Any]):
        self.api_key = config["api_key"]
        self.base_url = config.get("base_url") or None
        self.client: Optional[Any] = None

    async def _get_client(self) -> Any:
        """Get Anthropic client"""
        if not self.client:
            try:
                from anthropic import AsyncAnthropic
            except ImportError:
                logger.error("anthropic not available for Anthropic provider")
                raise

            self.client = AsyncAnthropic(api_key=self.api_key, base_url=self.base_url)
        return self.client

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate response using Anthropic API"""
        client = await self._get_client()
        system, turns = _split_system(request.messages, request.instructions)

        try:
            response = await client.messages.create(
                model=request.model,
                system=system,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                messages=turns,
            )
        except Exception as e:
            raise translate_sdk_error(e, self.name) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return GenerationResult(
            text=text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=request.model,
        )

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None


class OpenAIProvider(LLMInterface):
    """OpenAI provider using chat completions."""

    name = "openai"

    def __init__(self, config: Dict[str, Any]):
        self.api_key = config["api_key"]
        self.base_url = config.get("base_url") or None
        self.client: Optional[Any] = None

    async def _get_client(self) -> Any:
        """Get OpenAI client"""
        if not self.client:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                logger.error("openai not available for OpenAI provider")
                raise

            self.client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self.client

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate response using OpenAI API"""
        client = await self._get_client()
        system, turns = _split_system(request.messages, request.instructions)
        messages = [{"role": "system", "content": system}] + turns

        try:
            response = await client.chat.completions.create(
                model=request.model,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
            )
        except Exception as e:
            raise translate_sdk_error(e, self.name) from e

        usage = response.usage
        return GenerationResult(
            text=str(response.choices[0].message.content or ""),
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=request.model,
        )

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None


def create_provider(config: ProviderConfig) -> LLMInterface:
    """Build the configured provider."""
    settings = {"api_key": config.api_key, "base_url": config.base_url}
    if config.provider == "anthropic":
        return AnthropicProvider(settings)
    if config.provider == "openai":
        return OpenAIProvider(settings)
    raise ConfigurationError(
        f"Unknown LLM provider: {config.provider}",
        error_code="UNKNOWN_PROVIDER",
        component="LLMProvider",
    )
