"""Bulk content generation: grouped requests and the weekly bundle."""

from .generator import (
    ContentGenerator,
    GeneratedContent,
    LLMContentGenerator,
    build_prompt,
    parse_items,
)
from .scheduler import (
    WEEKLY_BUNDLE_KEY,
    BatchPriority,
    BatchRequest,
    BatchResult,
    BatchScheduler,
)

__all__ = [
    "WEEKLY_BUNDLE_KEY",
    "BatchPriority",
    "BatchRequest",
    "BatchResult",
    "BatchScheduler",
    "ContentGenerator",
    "GeneratedContent",
    "LLMContentGenerator",
    "build_prompt",
    "parse_items",
]
