"""Application configuration utilities.

This module defines gateway settings loaded from environment variables.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed gateway settings loaded from the environment.

    Notes
    -----
    - Environment variables are read with the ``HLSTUBE_`` prefix (e.g., ``HLSTUBE_PORT``).
    - URL templates are formatted with ``video_id`` and must keep that placeholder.
    - ``stream_cache_ttl`` bounds how long resolved delivery URLs are served from memory;
      YouTube signs them for roughly six hours, so the default stays below that.
    """

    model_config = SettingsConfigDict(env_prefix="HLSTUBE_", env_file=".env", extra="ignore")

    app_name: str = Field(default="HLS Tube", description="Application display name")
    debug: bool = Field(default=False, description="Enable debug logging")
    host: str = Field(default="127.0.0.1", description="Interface the TCP listener binds to")
    port: int = Field(default=1337, description="Port the TCP listener binds to")

    min_request_bytes: int = Field(
        default=10,
        description="Minimum number of bytes read before a request is parsed",
    )
    max_request_bytes: int = Field(
        default=1000,
        description="Upper bound on the number of request bytes read per connection",
    )

    stream_cache_ttl: float = Field(
        default=5 * 60 * 60,
        description="Seconds a resolved video stays cached; 0 disables expiry",
    )

    accept_language: str = Field(default="en", description="Accept-Language sent upstream")
    watch_url_template: str = Field(
        default="https://www.youtube.com/watch?v={video_id}&gl=US&hl=en&has_verified=1&bpctr=9999999999",
        description="Watch page used to locate the player script",
    )
    video_info_url_template: str = Field(
        default="https://www.youtube.com/get_video_info?video_id={video_id}&asv=3&el=detailpage&ps=default&hl=en_US",
        description="Endpoint returning URL-encoded adaptive format metadata",
    )
    player_base_url: str = Field(
        default="https://youtube.com",
        description="Origin prepended to the player script path found in the watch page",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache gateway settings.

    Notes
    -----
    - Cached with ``functools.lru_cache(maxsize=1)`` to provide a single settings instance
      across the process. Subsequent calls return the same object.

    Returns
    -------
    Settings
        The gateway settings instance.
    """

    return Settings()
