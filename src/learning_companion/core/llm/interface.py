"""
LLM provider contract.

Providers receive the optimized conversation and return text plus token usage,
or raise ``ProviderError`` carrying the transport status/code.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class ChatMessage:
    """A single conversation message."""

    role: str  # user | assistant | system
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(role=data["role"], content=data["content"])


@dataclass
class GenerationRequest:
    """Everything a provider needs for one completion."""

    messages: List[ChatMessage]
    instructions: str
    tier: str
    model: str
    max_tokens: int = 500
    temperature: float = 0.7
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationResult:
    """Provider output with token accounting."""

    text: str
    input_tokens: int
    output_tokens: int
    model: str = ""

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMInterface(ABC):
    """Abstract interface for LLM providers."""

    name: str = "llm"

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate a response from the LLM."""
        pass

    async def close(self) -> None:
        """Release network clients."""
        return None

    def get_capabilities(self) -> Dict[str, Any]:
        """Get provider capabilities."""
        return {"provider": self.name, "requires_internet": True}
