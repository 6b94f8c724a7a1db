"""
Bulk content generation through the LLM provider.

One consolidated prompt per (content type, module) group; the reply is
expected to be a JSON array, with a line-per-item fallback.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ...core.llm import ChatMessage, GenerationRequest, LLMInterface

logger = logging.getLogger(__name__)

BATCH_INSTRUCTIONS = (
    "You create educational content for a grade 4 learner (age 9). "
    "Make it fun, accurate and age-appropriate. Reply with a JSON array only."
)

TYPE_GUIDANCE: Dict[str, str] = {
    "mission": "Each mission is a daily learning goal with a title, description and objectives.",
    "quiz": "Each quiz item has a question, options, the correct option index and an explanation.",
    "activity": "Mix challenges, projects and games. Give each a title and short instructions.",
    "summary": "Summarize learning progress and achievements.",
    "feedback": "Give encouraging, constructive feedback messages.",
}


@dataclass
class GeneratedContent:
    """Items produced by one consolidated generation call."""

    items: List[Any] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ContentGenerator(ABC):
    """Produces ``count`` items of one content type for a module."""

    @abstractmethod
    async def generate(self, content_type: str, module: str, count: int) -> GeneratedContent:
        pass


def build_prompt(content_type: str, module: str, count: int) -> str:
    guidance = TYPE_GUIDANCE.get(content_type, "")
    return (
        f"Generate {count} {content_type} items for the {module} module.\n"
        f"{guidance}\n"
        f"Return a JSON array of exactly {count} items."
    )


def parse_items(text: str) -> List[Any]:
    """JSON array from the reply, else one item per non-empty line."""
    start, end = text.find("["), text.rfind("]")
    if start != -1 and end > start:
        try:
            parsed = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            logger.debug("Batch reply is not valid JSON, splitting lines")
        else:
            if isinstance(parsed, list):
                return parsed
    return [line.strip(" -*\t") for line in text.splitlines() if line.strip(" -*\t")]


class LLMContentGenerator(ContentGenerator):
    """Content generator backed by an ``LLMInterface`` on the economy tier."""

    def __init__(
        self,
        provider: LLMInterface,
        model: str,
        tier: str = "economy",
        max_tokens: int = 4000,
        temperature: float = 0.8,
    ):
        self.provider = provider
        self.model = model
        self.tier = tier
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def generate(self, content_type: str, module: str, count: int) -> GeneratedContent:
        request = GenerationRequest(
            messages=[ChatMessage("user", build_prompt(content_type, module, count))],
            instructions=BATCH_INSTRUCTIONS,
            tier=self.tier,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            metadata={"batch": True, "content_type": content_type, "module": module},
        )
        result = await self.provider.generate(request)
        items = parse_items(result.text)
        if len(items) < count:
            logger.warning(
                f"Provider returned {len(items)} of {count} {content_type} items for {module}"
            )
        return GeneratedContent(
            items=items,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
        )
