from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from hmo_relay.schemas import ApplicationConfig, EncodingProfile


class Settings(BaseSettings):
    api_password: str | None = None  # The password for protecting the API endpoints.
    log_level: str = "INFO"  # The logging level to use.
    host: str = "0.0.0.0"  # The interface to bind the HTTP server to.
    port: int = 9032  # The port to run the HTTP server on.
    applications: List[ApplicationConfig] = Field(default_factory=list)  # Top-level shares, in display order.
    preload: bool = False  # Whether to populate every lazy container listing at startup.
    default_profile: EncodingProfile = Field(default_factory=EncodingProfile)  # Encoding profile for playback.
    relay_poll_interval: float = 0.2  # Seconds the relay sleeps between drains of the intermediate store.
    relay_chunk_size: int = 4096  # Read size used when draining the intermediate store.
    relay_stall_timeout: Optional[float] = None  # Seconds without store growth before giving up; None waits forever.
    transcode_startup_delay: float = 0.1  # Seconds to let the encoder start before the relay begins copying.
    transcode_temp_dir: Optional[str] = None  # Directory for intermediate transcode files; None uses the system default.
    enable_streaming_progress: bool = False  # Whether to show relay progress bars.
    source_timeout: float = 15.0  # Timeout for catalog requests in seconds.

    user_agent: str = "hmo-relay/0.1"  # The user agent to use for catalog requests.

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)


settings = Settings()
