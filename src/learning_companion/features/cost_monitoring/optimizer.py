"""
Prompt compression for cost-aware LLM requests.

Keeps the opening message and a recent window verbatim, folds the middle of the
conversation into one keyword summary, drops repeated messages and swaps long
instructions for compact per-module templates.
"""

import hashlib
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional

from ...core.config import OptimizerConfig
from ...core.llm import ChatMessage

logger = logging.getLogger(__name__)

SUMMARY_PREFIX = "[Previous conversation summary: "

# keyword -> topic label used in summaries
TOPIC_KEYWORDS: Dict[str, str] = {
    "math": "math problems",
    "science": "science questions",
    "story": "creative writing",
    "world": "geography",
    "money": "money and business",
}

# keyword -> key point used in summaries
KEY_POINT_KEYWORDS: Dict[str, str] = {
    "help": "needed help",
    "understand": "working on understanding",
    "stuck": "got stuck",
    "got it": "had a breakthrough",
}

STOPWORDS = frozenset(
    """
    a about after again all also am an and any are as at be because been before
    but by can could did do does doing dont for from get got had has have how i
    if im in into is it its just know let like me more my no not now of on or our
    out so some than that the their them then there these they this to too up us
    very was we were what when where which who why will with would yes you your
    """.split()
)

_WORD = re.compile(r"[a-z']+")


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Rough token estimate: one token per ``chars_per_token`` characters."""
    return len(text) // chars_per_token


def message_fingerprint(content: str) -> str:
    """Hash of the normalized message text."""
    normalized = " ".join(content.lower().split())
    return hashlib.md5(normalized.encode()).hexdigest()


@dataclass
class OptimizedRequest:
    """Result of ``RequestOptimizer.optimize``."""

    messages: List[ChatMessage]
    instructions: str
    estimated_tokens: int
    compression_ratio: float
    original_tokens: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "instructions": self.instructions,
            "estimated_tokens": self.estimated_tokens,
            "compression_ratio": self.compression_ratio,
        }


class RequestOptimizer:
    """Shrinks conversation context before it is sent to the provider."""

    def __init__(
        self,
        config: Optional[OptimizerConfig] = None,
        compact_templates: Optional[Dict[str, str]] = None,
    ):
        self.config = config or OptimizerConfig()
        self.compact_templates = dict(compact_templates or {})

    def _tokens(self, text: str) -> int:
        return estimate_tokens(text, self.config.chars_per_token)

    def optimize(
        self,
        history: List[ChatMessage],
        instructions: str,
        module: str,
        personalization: str = "",
    ) -> OptimizedRequest:
        """Compress history and instructions for one provider call.

        ``personalization`` is appended to whichever instructions are chosen so
        learner context survives template substitution.
        """
        original_text = instructions + personalization + " ".join(m.content for m in history)
        original_tokens = self._tokens(original_text)

        compressed = self.compress_history(history)
        deduplicated = self.deduplicate(compressed)
        optimized_instructions = self.optimize_instructions(instructions, module)
        if personalization:
            optimized_instructions = (
                f"{optimized_instructions}\n{' '.join(personalization.split())}"
            )

        optimized_tokens = self._tokens(
            optimized_instructions + " ".join(m.content for m in deduplicated)
        )
        ratio = original_tokens / optimized_tokens if optimized_tokens > 0 else 1.0

        logger.debug(
            f"Optimized {len(history)} messages to {len(deduplicated)} "
            f"({original_tokens} -> {optimized_tokens} tokens)"
        )
        return OptimizedRequest(
            messages=deduplicated,
            instructions=optimized_instructions,
            estimated_tokens=optimized_tokens,
            compression_ratio=ratio,
            original_tokens=original_tokens,
        )

    def compress_history(self, messages: List[ChatMessage]) -> List[ChatMessage]:
        """Keep the first message and the last W messages; summarize the rest."""
        window = self.config.recent_window
        if len(messages) <= window:
            return list(messages)

        compressed = [messages[0]]
        middle = messages[1:-window]
        if middle:
            compressed.append(
                ChatMessage(
                    role="system",
                    content=f"{SUMMARY_PREFIX}{self.summarize(middle)}]",
                )
            )
        compressed.extend(messages[-window:])
        return compressed

    def summarize(self, messages: List[ChatMessage]) -> str:
        """Bag-of-keywords summary of a run of messages."""
        topics: List[str] = []
        key_points: List[str] = []
        words: Counter = Counter()

        for message in messages:
            lower = message.content.lower()
            for keyword, label in TOPIC_KEYWORDS.items():
                if keyword in lower and label not in topics:
                    topics.append(label)
            for keyword, point in KEY_POINT_KEYWORDS.items():
                if keyword in lower and point not in key_points:
                    key_points.append(point)
            if message.role == "user":
                words.update(
                    w for w in _WORD.findall(lower) if len(w) > 3 and w not in STOPWORDS
                )

        summary = f"Discussed: {', '.join(topics) or 'various topics'}."
        keywords = [w for w, _ in words.most_common(self.config.summary_max_keywords)]
        if keywords:
            summary += f" Keywords: {', '.join(keywords)}."
        if key_points:
            summary += f" {'. '.join(key_points).capitalize()}."
        return summary

    def deduplicate(self, messages: List[ChatMessage]) -> List[ChatMessage]:
        """Drop repeats of earlier messages; the final message is always kept."""
        seen = set()
        deduplicated: List[ChatMessage] = []
        last_index = len(messages) - 1

        for index, message in enumerate(messages):
            fingerprint = message_fingerprint(message.content)
            if fingerprint in seen and index != last_index:
                continue
            seen.add(fingerprint)
            deduplicated.append(message)

        return deduplicated

    def optimize_instructions(self, instructions: str, module: str) -> str:
        """Use the compact module template when one exists, else collapse whitespace."""
        template = self.compact_templates.get(module)
        if template:
            return template.strip()
        return " ".join(instructions.split())
