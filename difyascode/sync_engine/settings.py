"""Sync configuration loaded from DIFY_* environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DifySettings(BaseSettings):
    """Dify-as-code settings.

    All fields are read from environment variables with the ``DIFY_`` prefix.
    For example, ``DIFY_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    Account passwords are **not** managed here -- they live encrypted in each
    account's ``.secrets.yml`` and are decrypted with ``secret_key``.
    """

    model_config = SettingsConfigDict(
        env_prefix="DIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Local tree ------------------------------------------------------------
    root: Path = Path()
    """Directory holding the mirrored hierarchy (one sub-directory per platform)."""

    secret_key: SecretStr | None = None
    """Key material for encrypting account passwords at rest.

    When unset, a key is generated on first use into ``<root>/.dify.key``.
    That file is git-ignored together with every ``.secrets.yml``.
    """

    # -- Remote ----------------------------------------------------------------
    request_timeout: float = 30.0
    page_limit: int = 100
    """Page size used when walking paginated console listings."""

    # -- Knowledge -------------------------------------------------------------
    segment_overlap: int = 50
    """Expected character overlap between consecutive remote segments."""

    min_segment_overlap: int = 3
    """Shortest suffix/prefix match accepted as a real overlap when stitching."""


@lru_cache(maxsize=1)
def get_settings() -> DifySettings:
    """Settings from the environment and ``.env``, read once per process.

    Tests that change ``DIFY_*`` variables call ``get_settings.cache_clear()``;
    the CLI layers its ``--root`` / ``--log-level`` options on top with
    ``model_copy``.
    """
    return DifySettings()
