"""
Static content catalogue.

Holds offline fallback items, seeded common questions, curriculum topic lists
and compact instruction templates. Loaded once at startup from YAML.
"""

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...core.config import YAMLConfigLoader
from ...core.exceptions import CatalogueError

logger = logging.getLogger(__name__)

DEFAULT_CATALOGUE_PATH = Path(__file__).parent / "data" / "catalogue.yaml"
GENERAL_MODULE = "general"


class ContentType(Enum):
    """Kinds of offline content."""

    QUIZ = "quiz"
    FACT = "fact"
    JOKE = "joke"
    CHALLENGE = "challenge"


@dataclass(frozen=True)
class FallbackContentItem:
    """One piece of offline content."""

    id: str
    type: ContentType
    module: str
    payload: Dict[str, Any] = field(hash=False)
    reward_value: int = 5

    def render(self) -> str:
        """Child-facing text for the item."""
        p = self.payload
        if self.type is ContentType.FACT:
            parts = [p.get("fact", "")]
            parts.extend(p[k] for k in ("follow_up", "experiment", "local_connection") if k in p)
            return " ".join(x for x in parts if x)
        if self.type is ContentType.JOKE:
            return f"{p.get('setup', '')} ... {p.get('punchline', '')}".strip()
        if self.type is ContentType.QUIZ:
            text = p.get("question", "")
            options = p.get("options")
            if options:
                text += " " + " / ".join(str(o) for o in options)
            return text
        title = p.get("title")
        body = p.get("challenge") or p.get("prompt", "")
        hint = p.get("hint") or p.get("tips") or p.get("bonus")
        text = f"{title}: {body}" if title else body
        return f"{text} ({hint})" if hint else text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "module": self.module,
            "payload": dict(self.payload),
            "reward_value": self.reward_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FallbackContentItem":
        return cls(
            id=str(data["id"]),
            type=ContentType(data["type"]),
            module=data.get("module", GENERAL_MODULE),
            payload=dict(data.get("payload", {})),
            reward_value=int(data.get("reward_value", 5)),
        )


class ContentCatalogue:
    """Read-only content bank with a seeded random picker."""

    def __init__(
        self,
        items: Optional[List[FallbackContentItem]] = None,
        topics: Optional[Dict[str, List[str]]] = None,
        common_questions: Optional[Dict[str, Dict[str, str]]] = None,
        compact_templates: Optional[Dict[str, str]] = None,
        module_instructions: Optional[Dict[str, str]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.items = list(items or [])
        self.topics = {m: list(t) for m, t in (topics or {}).items()}
        self.common_questions = dict(common_questions or {})
        self.compact_templates = dict(compact_templates or {})
        self.module_instructions = dict(module_instructions or {})
        self._rng = rng or random.Random()
        self._last_served: Dict[str, str] = {}

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], rng: Optional[random.Random] = None
    ) -> "ContentCatalogue":
        try:
            items = [FallbackContentItem.from_dict(raw) for raw in data.get("fallback_items", [])]
        except (KeyError, ValueError, TypeError) as e:
            raise CatalogueError(
                f"Invalid fallback item: {e}",
                error_code="CATALOGUE_INVALID",
                component="ContentCatalogue",
            ) from e

        ids = [item.id for item in items]
        if len(ids) != len(set(ids)):
            raise CatalogueError(
                "Duplicate fallback item ids",
                error_code="CATALOGUE_DUPLICATE_ID",
                component="ContentCatalogue",
            )

        return cls(
            items=items,
            topics=data.get("topics", {}),
            common_questions=data.get("common_questions", {}),
            compact_templates=data.get("compact_templates", {}),
            module_instructions=data.get("module_instructions", {}),
            rng=rng,
        )

    @classmethod
    def load(
        cls, path: Optional[Path] = None, rng: Optional[random.Random] = None
    ) -> "ContentCatalogue":
        """Load the catalogue from YAML (the packaged one by default)."""
        path = path or DEFAULT_CATALOGUE_PATH
        try:
            data = YAMLConfigLoader.load_yaml(path)
        except FileNotFoundError as e:
            raise CatalogueError(
                str(e), error_code="CATALOGUE_NOT_FOUND", component="ContentCatalogue"
            ) from e
        catalogue = cls.from_dict(data, rng=rng)
        logger.info(
            f"Loaded content catalogue: {len(catalogue.items)} fallback items, "
            f"{len(catalogue.topics)} modules"
        )
        return catalogue

    @property
    def modules(self) -> List[str]:
        return sorted(set(self.topics) | {i.module for i in self.items} - {GENERAL_MODULE})

    def items_for(self, module: str) -> List[FallbackContentItem]:
        """Module-specific items followed by general items."""
        specific = [i for i in self.items if i.module == module]
        general = [i for i in self.items if i.module == GENERAL_MODULE]
        return specific + general

    def pick(self, module: str) -> Optional[FallbackContentItem]:
        """Random pick from the module's bank, avoiding an immediate repeat.

        General items are only used when the module has none of its own.
        """
        candidates = [i for i in self.items if i.module == module]
        if not candidates:
            candidates = [i for i in self.items if i.module == GENERAL_MODULE]
        if not candidates:
            return None

        last = self._last_served.get(module)
        if len(candidates) > 1 and last is not None:
            candidates = [c for c in candidates if c.id != last]

        item = self._rng.choice(candidates)
        self._last_served[module] = item.id
        return item

    def topics_for(self, module: str) -> List[str]:
        return list(self.topics.get(module, []))

    def instructions_for(self, module: str) -> str:
        return self.module_instructions.get(
            module, "You are a warm, encouraging tutor for a young learner."
        )
