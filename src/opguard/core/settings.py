"""Environment-driven defaults for opguard wrappers.

Every option a wrapper takes at decoration time can be passed explicitly;
when it is omitted, the default comes from ``OpguardSettings``. Settings are
read from ``OPGUARD_``-prefixed environment variables and an optional
``.env`` file.

Examples:
    >>> import os
    >>> os.environ["OPGUARD_RETRY_BACKOFF"] = "0.25"
    >>> get_settings.cache_clear()
    >>> get_settings().retry_backoff
    0.25

Tags:
    settings, configuration, pydantic, environment, opguard
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OpguardSettings(BaseSettings):
    """Defaults shared by every wrapper.

    Fields
    ──────
    log_level       : Level applied by ``configure_logging``
    log_format      : ``console`` (colored, dev) or ``json`` (aggregators)
    retry_backoff   : Base retry delay in seconds
    retry_strategy  : ``normal`` (constant) or ``exponential`` (doubling)
    state_scope     : Sharing of breaker / limiter state:
                      ``definition`` (all instances) or ``instance``
    """

    model_config = SettingsConfigDict(
        env_prefix="OPGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"

    # ── Retry ────────────────────────────────────────────────────
    retry_backoff: float = Field(default=1.0, ge=0)
    retry_strategy: Literal["normal", "exponential"] = "normal"

    # ── Shared state ─────────────────────────────────────────────
    state_scope: Literal["definition", "instance"] = "definition"


@lru_cache(maxsize=1)
def get_settings() -> OpguardSettings:
    """Return the process-wide settings, loaded once."""
    return OpguardSettings()


__all__ = ["OpguardSettings", "get_settings"]
