from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ControlApiSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SG_API_", case_sensitive=False)

    service_name: str = "sg-api"

    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 3737
    api_key: str = Field(default="", description="Shared key; generate one with `streamgrid --generate-key`")

    # Per caller address
    rate_limit: int = 100
    rate_window_s: float = 15 * 60

    bridge_timeout_s: float = Field(default=5.0, description="Upper bound for one call into the state owner")
