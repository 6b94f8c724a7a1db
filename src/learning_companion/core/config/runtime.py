"""
Runtime configuration for the Learning Companion.

Contains the policy sections for sessions, memory, cost control, caching,
error handling, batching and the external collaborators.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List


@dataclass
class MonitoringConfig:
    """Logging configuration."""

    log_level: str = "INFO"
    structured_logging: bool = True
    json_logs: bool = True


@dataclass
class SessionConfig:
    """Session orchestrator policy."""

    break_after_minutes: float = 20.0
    break_after_messages: int = 15
    inactivity_timeout_s: int = 7200
    cleanup_interval_s: int = 600
    history_limit: int = 40
    base_xp_per_message: int = 5
    excelling_xp_bonus: int = 5
    mission_progress_step: int = 10
    encouragement_probability: float = 0.3
    default_priority: str = "balanced"


@dataclass
class MemoryConfig:
    """Memory consolidator policy."""

    short_term_capacity: int = 10
    avoid_recent_sessions: int = 3
    interest_decay_days: float = 30.0
    max_interests: int = 10
    max_suggestions: int = 5
    mastery_min_attempts: int = 5
    mastery_accuracy: float = 0.8
    challenge_min_attempts: int = 3
    challenge_max_accuracy: float = 0.5
    confidence_increment: int = 5
    trait_min_matches: int = 3


@dataclass
class OptimizerConfig:
    """Prompt compression policy."""

    recent_window: int = 10
    chars_per_token: int = 4
    summary_max_keywords: int = 5


@dataclass
class TierConfig:
    """Model tier with per-1M-token prices in USD."""

    model: str
    input_price: float
    output_price: float


def _default_tiers() -> Dict[str, TierConfig]:
    return {
        "premium": TierConfig("claude-3-opus", 15.00, 75.00),
        "balanced": TierConfig("claude-3-sonnet", 3.00, 15.00),
        "economy": TierConfig("claude-3-haiku", 0.25, 1.25),
    }


@dataclass
class CostConfig:
    """Token budget and spend policy."""

    daily_token_limit: int = 100_000
    weekly_token_limit: int = 500_000
    monthly_token_limit: int = 2_000_000
    cost_alert_threshold: float = 2.00
    fallback_threshold: float = 0.8
    quality_ceiling_ratio: float = 0.5
    tiers: Dict[str, TierConfig] = field(default_factory=_default_tiers)


@dataclass
class CacheConfig:
    """Response cache policy."""

    capacity: int = 2000
    eviction_fraction: float = 0.2
    similarity_threshold: float = 0.8
    conversational_ttl_s: int = 3600
    bulk_ttl_s: int = 7 * 24 * 3600
    maintenance_interval_s: int = 3600
    seed_common_questions: bool = True


@dataclass
class ErrorPolicyConfig:
    """Retry, circuit breaker and provider timeout policy."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 10.0
    jitter: bool = False
    provider_timeout_s: float = 30.0
    circuit_failure_threshold: int = 5
    circuit_recovery_timeout_s: float = 60.0
    replay_interval_s: int = 30


@dataclass
class BatchConfig:
    """Batch scheduler policy."""

    drain_interval_s: int = 300
    weekly_interval_s: int = 7 * 24 * 3600
    modules: List[str] = field(
        default_factory=lambda: ["science", "math", "stories", "world", "entrepreneur"]
    )
    weekly_bundle: Dict[str, int] = field(
        default_factory=lambda: {"mission": 3, "activity": 5, "quiz": 10}
    )


@dataclass
class ProviderConfig:
    """LLM provider connection settings."""

    provider: str = "anthropic"
    api_key: str = field(default_factory=lambda: os.environ.get("LC_API_KEY", ""))
    base_url: str = ""
    max_tokens: int = 500
    temperature: float = 0.7


@dataclass
class GuardianConfig:
    """Guardian notification channel."""

    webhook_url: str = ""
    timeout_s: float = 5.0


@dataclass
class PersistenceConfig:
    """Key-value store location and best-effort write policy."""

    backend: str = "json"
    data_dir: Path = field(default_factory=lambda: Path("data"))
    max_write_retries: int = 3
    retry_delay_s: float = 0.5


@dataclass
class APIConfig:
    """HTTP surface configuration."""

    host: str = "127.0.0.1"
    port: int = 8000
