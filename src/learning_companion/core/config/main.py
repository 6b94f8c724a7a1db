"""
Main configuration class for the Learning Companion.

Contains the root Config class that composes all policy sections and knows how
to load them from YAML files or ``LC_*`` environment variables.
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Type, TypeVar, Union

from ..exceptions import ConfigurationError
from .runtime import (
    APIConfig,
    BatchConfig,
    CacheConfig,
    CostConfig,
    ErrorPolicyConfig,
    GuardianConfig,
    MemoryConfig,
    MonitoringConfig,
    OptimizerConfig,
    PersistenceConfig,
    ProviderConfig,
    SessionConfig,
    TierConfig,
)
from .yaml_loader import YAMLConfigLoader

logger = logging.getLogger(__name__)

S = TypeVar("S")


class Environment(Enum):
    """Environment types for configuration."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


def _build_section(section_cls: Type[S], data: Dict[str, Any], name: str) -> S:
    """Instantiate a section dataclass, ignoring unknown keys."""
    known = {f.name for f in fields(section_cls)}  # type: ignore[arg-type]
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in '{name}' config: {sorted(unknown)}")
    try:
        return section_cls(**{k: v for k, v in data.items() if k in known})
    except TypeError as e:
        raise ConfigurationError(
            f"Invalid '{name}' section: {e}", error_code="CONFIG_SECTION_INVALID"
        ) from e


@dataclass
class Config:
    """Root configuration for the Learning Companion."""

    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    cost: CostConfig = field(default_factory=CostConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    errors: ErrorPolicyConfig = field(default_factory=ErrorPolicyConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    guardian: GuardianConfig = field(default_factory=GuardianConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    api: APIConfig = field(default_factory=APIConfig)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Reject values that would break the policy arithmetic."""
        if self.session.break_after_messages < 1:
            raise ConfigurationError("session.break_after_messages must be >= 1")
        if self.memory.short_term_capacity < 1:
            raise ConfigurationError("memory.short_term_capacity must be >= 1")
        if not 0.0 < self.cache.similarity_threshold <= 1.0:
            raise ConfigurationError("cache.similarity_threshold must be in (0, 1]")
        if not 0.0 < self.cache.eviction_fraction <= 1.0:
            raise ConfigurationError("cache.eviction_fraction must be in (0, 1]")
        if self.cost.daily_token_limit <= 0:
            raise ConfigurationError("cost.daily_token_limit must be positive")
        for tier in ("premium", "balanced", "economy"):
            if tier not in self.cost.tiers:
                raise ConfigurationError(f"cost.tiers is missing the '{tier}' tier")

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(config_path)
        data = YAMLConfigLoader.load_yaml(config_path)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build configuration from a nested mapping."""
        cost_data = dict(data.get("cost", {}))
        if "tiers" in cost_data:
            cost_data["tiers"] = {
                name: TierConfig(**tier) for name, tier in cost_data["tiers"].items()
            }
        persistence_data = dict(data.get("persistence", {}))
        if "data_dir" in persistence_data:
            persistence_data["data_dir"] = Path(persistence_data["data_dir"])

        try:
            environment = Environment(data.get("environment", "development"))
        except ValueError as e:
            raise ConfigurationError(f"Unknown environment: {e}") from e

        return cls(
            environment=environment,
            debug=data.get("debug", False),
            monitoring=_build_section(
                MonitoringConfig, data.get("monitoring", {}), "monitoring"
            ),
            session=_build_section(SessionConfig, data.get("session", {}), "session"),
            memory=_build_section(MemoryConfig, data.get("memory", {}), "memory"),
            optimizer=_build_section(
                OptimizerConfig, data.get("optimizer", {}), "optimizer"
            ),
            cost=_build_section(CostConfig, cost_data, "cost"),
            cache=_build_section(CacheConfig, data.get("cache", {}), "cache"),
            errors=_build_section(ErrorPolicyConfig, data.get("errors", {}), "errors"),
            batch=_build_section(BatchConfig, data.get("batch", {}), "batch"),
            provider=_build_section(
                ProviderConfig, data.get("provider", {}), "provider"
            ),
            guardian=_build_section(
                GuardianConfig, data.get("guardian", {}), "guardian"
            ),
            persistence=_build_section(PersistenceConfig, persistence_data, "persistence"),
            api=_build_section(APIConfig, data.get("api", {}), "api"),
        )

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""

        def getenv_bool(name: str, default: bool) -> bool:
            v = os.getenv(name)
            return default if v is None else v.lower() in {"1", "true", "yes", "on"}

        def getenv_int(name: str, default: int) -> int:
            v = os.getenv(name)
            return default if v is None else int(v)

        def getenv_float(name: str, default: float) -> float:
            v = os.getenv(name)
            return default if v is None else float(v)

        def getenv_str(name: str, default: str) -> str:
            return os.getenv(name, default)

        # LC_* env overrides only
        env = Environment(getenv_str("LC_ENV", "development"))
        debug = getenv_bool("LC_DEBUG", False)

        monitoring = MonitoringConfig(
            log_level=getenv_str("LC_MONITORING__LOG_LEVEL", "INFO"),
            json_logs=getenv_bool("LC_MONITORING__JSON_LOGS", True),
        )

        session = SessionConfig(
            break_after_minutes=getenv_float("LC_SESSION__BREAK_AFTER_MINUTES", 20.0),
            break_after_messages=getenv_int("LC_SESSION__BREAK_AFTER_MESSAGES", 15),
            inactivity_timeout_s=getenv_int("LC_SESSION__INACTIVITY_TIMEOUT_S", 7200),
        )

        memory = MemoryConfig(
            short_term_capacity=getenv_int("LC_MEMORY__SHORT_TERM_CAPACITY", 10),
            interest_decay_days=getenv_float("LC_MEMORY__INTEREST_DECAY_DAYS", 30.0),
        )

        optimizer = OptimizerConfig(
            recent_window=getenv_int("LC_OPTIMIZER__RECENT_WINDOW", 10),
        )

        cost = CostConfig(
            daily_token_limit=getenv_int("LC_COST__DAILY_TOKEN_LIMIT", 100_000),
            cost_alert_threshold=getenv_float("LC_COST__COST_ALERT_THRESHOLD", 2.00),
            fallback_threshold=getenv_float("LC_COST__FALLBACK_THRESHOLD", 0.8),
        )

        cache = CacheConfig(
            capacity=getenv_int("LC_CACHE__CAPACITY", 2000),
            similarity_threshold=getenv_float("LC_CACHE__SIMILARITY_THRESHOLD", 0.8),
            conversational_ttl_s=getenv_int("LC_CACHE__CONVERSATIONAL_TTL_S", 3600),
            bulk_ttl_s=getenv_int("LC_CACHE__BULK_TTL_S", 7 * 24 * 3600),
        )

        errors = ErrorPolicyConfig(
            max_attempts=getenv_int("LC_ERRORS__MAX_ATTEMPTS", 3),
            max_delay_s=getenv_float("LC_ERRORS__MAX_DELAY_S", 10.0),
            provider_timeout_s=getenv_float("LC_ERRORS__PROVIDER_TIMEOUT_S", 30.0),
        )

        provider = ProviderConfig(
            provider=getenv_str("LC_PROVIDER__PROVIDER", "anthropic"),
            api_key=getenv_str("LC_PROVIDER__API_KEY", os.getenv("LC_API_KEY", "")),
            base_url=getenv_str("LC_PROVIDER__BASE_URL", ""),
            max_tokens=getenv_int("LC_PROVIDER__MAX_TOKENS", 500),
        )

        guardian = GuardianConfig(
            webhook_url=getenv_str("LC_GUARDIAN__WEBHOOK_URL", ""),
        )

        persistence = PersistenceConfig(
            backend=getenv_str("LC_PERSISTENCE__BACKEND", "json"),
            data_dir=Path(getenv_str("LC_PERSISTENCE__DATA_DIR", "data")),
        )

        api = APIConfig(
            host=getenv_str("LC_API__HOST", "127.0.0.1"),
            port=getenv_int("LC_API__PORT", 8000),
        )

        return cls(
            environment=env,
            debug=debug,
            monitoring=monitoring,
            session=session,
            memory=memory,
            optimizer=optimizer,
            cost=cost,
            cache=cache,
            errors=errors,
            provider=provider,
            guardian=guardian,
            persistence=persistence,
            api=api,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        data = asdict(self)
        data["environment"] = self.environment.value
        data["persistence"]["data_dir"] = str(self.persistence.data_dir)
        # Never write secrets back to disk
        data["provider"]["api_key"] = ""
        return data

    def save(self, config_path: Union[str, Path]) -> None:
        """Save configuration to YAML file."""
        YAMLConfigLoader.dump_yaml(Path(config_path), self.to_dict())
