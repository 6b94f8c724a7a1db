"""LLM provider interface and adapters."""

from .interface import ChatMessage, GenerationRequest, GenerationResult, LLMInterface
from .providers import AnthropicProvider, OpenAIProvider, create_provider, translate_sdk_error

__all__ = [
    "AnthropicProvider",
    "ChatMessage",
    "GenerationRequest",
    "GenerationResult",
    "LLMInterface",
    "OpenAIProvider",
    "create_provider",
    "translate_sdk_error",
]
