"""
Pattern-based extraction of learner signals from utterances.

No LLM is involved: interests, learning-style indicators, personality traits
and questions are found with keyword regexes.
"""

import re
from typing import Dict, List, Pattern

INTEREST_KEYWORDS = [
    "love",
    "like",
    "favorite",
    "cool",
    "awesome",
    "interesting",
    "fun",
    "enjoy",
    "excited",
    "curious",
]

# keyword followed by one or two words
_INTEREST_PATTERNS: List[Pattern[str]] = [
    re.compile(rf"\b{keyword}\s+(\w+(?:\s+\w+)?)", re.IGNORECASE)
    for keyword in INTEREST_KEYWORDS
]

STYLE_PATTERNS: Dict[str, Pattern[str]] = {
    "visual": re.compile(r"show|see|look|picture|draw|diagram|chart|color", re.IGNORECASE),
    "auditory": re.compile(r"hear|listen|sound|tell|explain|talk|say|speak", re.IGNORECASE),
    "kinesthetic": re.compile(r"\bdo\b|try|make|build|touch|move|play|hands", re.IGNORECASE),
    "reading": re.compile(r"read|write|text|book|story|word|spell", re.IGNORECASE),
}

TRAIT_PATTERNS: Dict[str, Pattern[str]] = {
    "curious": re.compile(r"why|how|what if|wonder|curious", re.IGNORECASE),
    "creative": re.compile(r"imagine|create|invent|design|story", re.IGNORECASE),
    "persistent": re.compile(r"try again|keep going|don't give up|practice", re.IGNORECASE),
    "enthusiastic": re.compile(r"excited|awesome|cool|love|amazing", re.IGNORECASE),
    "thoughtful": re.compile(r"think|consider|maybe|perhaps|could", re.IGNORECASE),
}

_QUESTION = re.compile(r"[^.!?]*\?")


def extract_interest_mentions(text: str) -> List[str]:
    """Topics following an enthusiasm keyword, e.g. "I love volcanoes" -> "volcanoes"."""
    mentions: List[str] = []
    lowered = text.lower()
    for pattern in _INTEREST_PATTERNS:
        for match in pattern.finditer(lowered):
            topic = match.group(1).strip()
            if len(topic) > 2:
                mentions.append(topic)
    return mentions


def detect_style_indicators(text: str) -> List[str]:
    """Learning styles whose indicator words appear in the text."""
    return [style for style, pattern in STYLE_PATTERNS.items() if pattern.search(text)]


def detect_traits(text: str) -> List[str]:
    return [trait for trait, pattern in TRAIT_PATTERNS.items() if pattern.search(text)]


def extract_questions(text: str) -> List[str]:
    """Question sentences, lower-cased and trimmed."""
    return [q.strip().lower() for q in _QUESTION.findall(text) if q.strip(" ?")]
