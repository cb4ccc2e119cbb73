"""
Engine settings, read from the environment (``QSQL_*``) or a ``.env`` file.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QSQL_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # Compiled templates kept per engine (LRU). 0 disables the cache.
    TEMPLATE_CACHE_SIZE: int = Field(default=512, ge=0)
    # Upper bound on the parameter JSON document, in bytes. None: unbounded.
    MAX_PARAMS_BYTES: int | None = Field(default=None, gt=0)
    # Log every rendered statement at DEBUG level.
    LOG_RENDERED_SQL: bool = False


settings = Settings()  # type: ignore
