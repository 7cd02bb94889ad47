"""
Configuration for reststores.

Library-wide defaults, read once from RESTSTORES_* environment variables.
Store class attributes left as None fall back to these values when the
store is constructed.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ChainErrors = Literal["all", "none", "nonhttp"]


class StoreSettings(BaseModel):
    """
    Library settings model.

    Attributes:
        chain_errors: Default chaining mode for remote failures
        hard_limit_on_queries: Maximum records a remote query may return
        default_query_limit: Limit applied when a query asks for none
        echo_after_write: Default for the echo_after_* store flags
        debug: Verbose pipeline logging
    """

    chain_errors: ChainErrors = "none"
    hard_limit_on_queries: int = Field(default=50, ge=1)
    default_query_limit: int = Field(default=50, ge=1)
    echo_after_write: bool = True
    debug: bool = False

    model_config = ConfigDict(frozen=True)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@lru_cache()
def get_settings() -> StoreSettings:
    """
    Get library settings from environment.

    Uses lru_cache for singleton pattern; call get_settings.cache_clear()
    after changing the environment.
    """
    return StoreSettings(
        chain_errors=os.getenv("RESTSTORES_CHAIN_ERRORS", "none"),
        hard_limit_on_queries=int(os.getenv("RESTSTORES_HARD_LIMIT_ON_QUERIES", "50")),
        default_query_limit=int(os.getenv("RESTSTORES_DEFAULT_QUERY_LIMIT", "50")),
        echo_after_write=_env_flag("RESTSTORES_ECHO_AFTER_WRITE", "true"),
        debug=_env_flag("RESTSTORES_DEBUG", "false"),
    )
