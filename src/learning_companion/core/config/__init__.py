"""
Configuration management for the Learning Companion.

Provides a clean public API for all configuration components.
"""

from .main import Config, Environment
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

__all__ = [
    "APIConfig",
    "BatchConfig",
    "CacheConfig",
    "Config",
    "CostConfig",
    "Environment",
    "ErrorPolicyConfig",
    "GuardianConfig",
    "MemoryConfig",
    "MonitoringConfig",
    "OptimizerConfig",
    "PersistenceConfig",
    "ProviderConfig",
    "SessionConfig",
    "TierConfig",
    "YAMLConfigLoader",
]
