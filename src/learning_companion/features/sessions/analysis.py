"""
Lexicon heuristics for reading a learner's state from short utterances.

Keyword matching misreads some phrasings; it is kept simple on purpose so the
behaviour stays predictable and testable.
"""

import random
import re
from typing import Dict, List, Optional, Tuple

from .types import Difficulty, EncouragementType, EnergyLevel, PerformanceLevel

CONFUSION_INDICATORS = [
    "i don't understand",
    "confused",
    "hard",
    "difficult",
    "help",
    "stuck",
]

EXCELLENCE_INDICATORS = [
    "easy",
    "i know",
    "got it",
    "understand",
    "makes sense",
]

LOW_ENERGY_MAX_LENGTH = 10

ENCOURAGEMENT_TEMPLATES: Dict[EncouragementType, List[str]] = {
    EncouragementType.CELEBRATION: [
        "Wow! You're absolutely crushing it today! That was amazing!",
        "Incredible work! You're becoming a real {module} master!",
        "You're on fire today! Keep up this fantastic momentum!",
    ],
    EncouragementType.MOTIVATION: [
        "I can see you're working hard on this. Let's break it down together.",
        "Every great explorer faces challenges. You're doing great by not giving up!",
        "You're so close! Let's try looking at it from a different angle.",
    ],
    EncouragementType.GENTLE_NUDGE: [
        "Hmm, let's think about this differently.",
        "Good try! Here's a hint that might help.",
        "You're on the right track! Let's zoom in on one part.",
    ],
    EncouragementType.BREAK_SUGGESTION: [
        "You've been learning so much! How about a quick stretch break?",
        "Your brain has been working hard! Time for a 5-minute adventure break?",
        "Great work today! Let's pause here and come back with fresh energy!",
    ],
}


def analyze_utterance(
    text: str, energy: EnergyLevel, performance: PerformanceLevel
) -> Tuple[EnergyLevel, PerformanceLevel]:
    """Update energy and performance from one utterance.

    Confusion wins over excellence and also drains energy.
    """
    if len(text) < LOW_ENERGY_MAX_LENGTH:
        energy = EnergyLevel.LOW
    elif "!" in text or "?" in text:
        energy = EnergyLevel.HIGH

    lowered = text.lower()
    if any(indicator in lowered for indicator in CONFUSION_INDICATORS):
        performance = PerformanceLevel.STRUGGLING
        energy = EnergyLevel.LOW
    elif any(indicator in lowered for indicator in EXCELLENCE_INDICATORS):
        performance = PerformanceLevel.EXCELLING

    return energy, performance


def determine_difficulty(performance: PerformanceLevel, energy: EnergyLevel) -> Difficulty:
    if performance is PerformanceLevel.STRUGGLING or energy is EnergyLevel.LOW:
        return Difficulty.EASY
    if performance is PerformanceLevel.EXCELLING and energy is EnergyLevel.HIGH:
        return Difficulty.HARD
    return Difficulty.MEDIUM


def encouragement_type(
    break_suggested: bool, performance: PerformanceLevel, energy: EnergyLevel
) -> Optional[EncouragementType]:
    if break_suggested:
        return EncouragementType.BREAK_SUGGESTION
    if performance is PerformanceLevel.EXCELLING:
        return EncouragementType.CELEBRATION
    if performance is PerformanceLevel.STRUGGLING:
        return EncouragementType.MOTIVATION
    if energy is EnergyLevel.LOW:
        return EncouragementType.GENTLE_NUDGE
    return None


def render_encouragement(kind: EncouragementType, module: str, rng: random.Random) -> str:
    template = rng.choice(ENCOURAGEMENT_TEMPLATES[kind])
    return template.replace("{module}", module)


def detect_topics(text: str, topics: List[str]) -> List[str]:
    """Curriculum topics mentioned in the text, in curriculum order."""
    lowered = text.lower()
    found = []
    for topic in topics:
        if re.search(rf"\b{re.escape(topic.lower())}\b", lowered):
            found.append(topic)
    return found
