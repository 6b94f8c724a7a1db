"""Response caching with exact and similarity-based reuse of prior LLM outputs."""

import hashlib
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from .config import CacheConfig

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_prompt(prompt: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    text = _PUNCTUATION.sub("", prompt.lower())
    return _WHITESPACE.sub(" ", text).strip()


def word_set(normalized: str) -> FrozenSet[str]:
    return frozenset(normalized.split())


def jaccard_similarity(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    """|A ∩ B| / |A ∪ B|; two empty sets are identical."""
    if not a and not b:
        return 1.0
    union = a | b
    return len(a & b) / len(union)


def classify_question(prompt: str) -> str:
    """Coarse question type used for cache analytics."""
    lower = prompt.lower()
    if "how" in lower or "why" in lower:
        return "explanation"
    if "what is" in lower or "define" in lower:
        return "definition"
    if "calculate" in lower or "solve" in lower:
        return "calculation"
    if "help" in lower or "stuck" in lower:
        return "assistance"
    if "example" in lower:
        return "example"
    return "general"


_TAG_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("math",), "math"),
    (("science",), "science"),
    (("story", "write"), "writing"),
    (("geography", "world"), "geography"),
    (("addition", "add"), "addition"),
    (("multiplication", "multiply"), "multiplication"),
    (("division", "divide"), "division"),
    (("fraction",), "fractions"),
]


def extract_tags(prompt: str) -> List[str]:
    """Subject and concept tags found in a prompt."""
    lower = prompt.lower()
    return [tag for needles, tag in _TAG_RULES if any(n in lower for n in needles)]


class CacheTier(Enum):
    """TTL class of a cached response."""

    CONVERSATIONAL = "conversational"
    BULK = "bulk"


@dataclass
class CacheEntry:
    """A cached LLM response."""

    key: str
    module: str
    prompt: str
    normalized: str
    response: str
    created_at: float
    token_cost: int = 0
    tier: CacheTier = CacheTier.CONVERSATIONAL
    hit_count: int = 0
    last_accessed: float = 0.0
    question_type: str = "general"
    tags: List[str] = field(default_factory=list)
    words: FrozenSet[str] = field(default_factory=frozenset, repr=False)

    def __post_init__(self) -> None:
        if not self.words:
            self.words = word_set(self.normalized)
        if not self.last_accessed:
            self.last_accessed = self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "module": self.module,
            "prompt": self.prompt,
            "normalized": self.normalized,
            "response": self.response,
            "created_at": self.created_at,
            "token_cost": self.token_cost,
            "tier": self.tier.value,
            "hit_count": self.hit_count,
            "last_accessed": self.last_accessed,
            "question_type": self.question_type,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            module=data["module"],
            prompt=data["prompt"],
            normalized=data["normalized"],
            response=data["response"],
            created_at=data["created_at"],
            token_cost=data.get("token_cost", 0),
            tier=CacheTier(data.get("tier", CacheTier.CONVERSATIONAL.value)),
            hit_count=data.get("hit_count", 0),
            last_accessed=data.get("last_accessed", 0.0),
            question_type=data.get("question_type", "general"),
            tags=data.get("tags", []),
        )


class ResponseCache:
    """Cache LLM responses keyed by normalized prompt and module.

    Lookup tries the exact key first, then the most similar same-module entry
    whose Jaccard word-set similarity reaches the configured threshold.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self.cache: Dict[str, CacheEntry] = {}
        self.hit_count = 0
        self.miss_count = 0
        self.fuzzy_hit_count = 0
        self.tokens_saved = 0
        self.evicted_count = 0

    @staticmethod
    def make_key(prompt: str, module: str) -> str:
        """Create hash for cache lookup from module and normalized prompt."""
        combined = f"{module}:{normalize_prompt(prompt)}"
        return hashlib.md5(combined.encode()).hexdigest()

    def _ttl(self, tier: CacheTier) -> int:
        if tier is CacheTier.BULK:
            return self.config.bulk_ttl_s
        return self.config.conversational_ttl_s

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at >= self._ttl(entry.tier)

    def lookup(self, prompt: str, module: str) -> Optional[CacheEntry]:
        """Return a live cached response for the prompt, counting the hit or miss."""
        now = self._clock()
        key = self.make_key(prompt, module)

        entry = self.cache.get(key)
        if entry is not None and self._is_expired(entry, now):
            del self.cache[key]
            entry = None

        if entry is None:
            entry = self._fuzzy_match(normalize_prompt(prompt), module, now)
            if entry is not None:
                self.fuzzy_hit_count += 1

        if entry is None:
            self.miss_count += 1
            logger.debug(f"Cache miss for: {prompt[:50]}...")
            return None

        entry.hit_count += 1
        entry.last_accessed = now
        self.hit_count += 1
        self.tokens_saved += entry.token_cost
        logger.debug(f"Cache hit for: {prompt[:50]}...")
        return entry

    def _fuzzy_match(self, normalized: str, module: str, now: float) -> Optional[CacheEntry]:
        words = word_set(normalized)
        best: Optional[CacheEntry] = None
        best_score = 0.0
        expired: List[str] = []

        for key, entry in self.cache.items():
            if entry.module != module:
                continue
            if self._is_expired(entry, now):
                expired.append(key)
                continue
            score = jaccard_similarity(words, entry.words)
            if score >= self.config.similarity_threshold and score > best_score:
                best, best_score = entry, score

        for key in expired:
            del self.cache[key]

        return best

    def store(
        self,
        prompt: str,
        module: str,
        response: str,
        token_cost: int = 0,
        tier: CacheTier = CacheTier.CONVERSATIONAL,
        tags: Optional[List[str]] = None,
    ) -> CacheEntry:
        """Insert or overwrite a response, evicting when over capacity."""
        now = self._clock()
        normalized = normalize_prompt(prompt)
        key = self.make_key(prompt, module)

        entry = CacheEntry(
            key=key,
            module=module,
            prompt=prompt,
            normalized=normalized,
            response=response,
            created_at=now,
            token_cost=token_cost,
            tier=tier,
            question_type=classify_question(prompt),
            tags=tags if tags is not None else extract_tags(prompt) or [module],
        )
        self.cache[key] = entry

        if len(self.cache) > self.config.capacity:
            self._evict(now, keep=key)

        return entry

    def _recency_weight(self, entry: CacheEntry, now: float) -> float:
        hours_idle = max(0.0, now - entry.last_accessed) / 3600.0
        return 1.0 / (1.0 + hours_idle)

    def _evict(self, now: float, keep: Optional[str] = None) -> int:
        """Drop the lowest-scoring fraction ranked by hit count times recency weight.

        ``keep`` protects the entry that triggered eviction.
        """
        count = max(1, int(len(self.cache) * self.config.eviction_fraction))
        ranked = sorted(
            (e for e in self.cache.values() if e.key != keep),
            key=lambda e: (e.hit_count * self._recency_weight(e, now), e.last_accessed),
        )
        count = min(count, len(ranked))
        for entry in ranked[:count]:
            del self.cache[entry.key]

        self.evicted_count += count
        logger.info(f"Evicted {count} cache entries (capacity {self.config.capacity})")
        return count

    def seed(self, questions: Dict[str, Dict[str, str]]) -> int:
        """Preload common questions per module into the bulk tier."""
        seeded = 0
        for module, pairs in questions.items():
            for question, answer in pairs.items():
                self.store(question, module, answer, tier=CacheTier.BULK)
                seeded += 1
        if seeded:
            logger.info(f"Seeded {seeded} common responses")
        return seeded

    @property
    def hit_rate(self) -> float:
        total = self.hit_count + self.miss_count
        return self.hit_count / total if total > 0 else 0.0

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "hits": self.hit_count,
            "misses": self.miss_count,
            "fuzzy_hits": self.fuzzy_hit_count,
            "hit_rate": self.hit_rate,
            "tokens_saved": self.tokens_saved,
            "evicted": self.evicted_count,
            "cached_items": len(self.cache),
        }

    def top_questions(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most reused prompts."""
        ranked = sorted(self.cache.values(), key=lambda e: e.hit_count, reverse=True)
        return [
            {
                "question": e.prompt,
                "module": e.module,
                "hits": e.hit_count,
                "type": e.question_type,
            }
            for e in ranked[:limit]
            if e.hit_count > 0
        ]

    def clear(self) -> None:
        """Clear the cache."""
        self.cache.clear()
        self.hit_count = 0
        self.miss_count = 0
        self.fuzzy_hit_count = 0
        self.tokens_saved = 0
        logger.info("Response cache cleared")

    def cleanup_expired(self) -> int:
        """Remove expired entries and return count of removed items."""
        now = self._clock()
        expired_keys = [k for k, e in self.cache.items() if self._is_expired(e, now)]

        for key in expired_keys:
            del self.cache[key]

        if expired_keys:
            logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")

        return len(expired_keys)

    def snapshot(self) -> Dict[str, Any]:
        """Serializable state for the store."""
        return {
            "entries": [e.to_dict() for e in self.cache.values()],
            "stats": {
                "hits": self.hit_count,
                "misses": self.miss_count,
                "fuzzy_hits": self.fuzzy_hit_count,
                "tokens_saved": self.tokens_saved,
            },
        }

    def restore(self, data: Dict[str, Any]) -> int:
        """Load a snapshot, skipping entries that have already expired."""
        now = self._clock()
        restored = 0
        for raw in data.get("entries", []):
            try:
                entry = CacheEntry.from_dict(raw)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed cache entry: {e}")
                continue
            if self._is_expired(entry, now):
                continue
            self.cache[entry.key] = entry
            restored += 1

        stats = data.get("stats", {})
        self.hit_count = stats.get("hits", self.hit_count)
        self.miss_count = stats.get("misses", self.miss_count)
        self.fuzzy_hit_count = stats.get("fuzzy_hits", self.fuzzy_hit_count)
        self.tokens_saved = stats.get("tokens_saved", self.tokens_saved)
        return restored
