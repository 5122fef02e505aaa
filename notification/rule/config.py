"""
Configuration loader for the SimpleExpression rule.

Engine constants that the host configuration category does not carry
(variable capacity, truthiness policy, log level) are read from the
environment with Pydantic Settings, using the ``RULE_`` prefix.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Capacity of a single asset's variable binding table.
MAX_VARS_DEFAULT = 20


class TruthinessPolicy(str, Enum):
    """How a numeric expression result maps to a trigger decision.

    ``NONZERO`` triggers on any nonzero finite value. ``STRICT_ONE`` triggers
    only when the value is exactly ``1.0``, which is what rules written for
    ``if(cond, 1, 0)`` expect.
    """

    NONZERO = "nonzero"
    STRICT_ONE = "strict_one"


class Settings(BaseSettings):
    """SimpleExpression rule settings loaded from environment variables.

    Example::

        RULE_MAX_VARS=20
        RULE_TRUTHINESS_POLICY=strict_one
        RULE_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="RULE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_vars: int = Field(default=MAX_VARS_DEFAULT, ge=1)
    truthiness_policy: TruthinessPolicy = TruthinessPolicy.NONZERO
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and cache rule settings."""
    return Settings()
