from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_work_dir() -> Path:
    return Path(tempfile.gettempdir()) / "streamgrid-rtsp"


class TranscoderSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SG_RTSP_", case_sensitive=False)

    service_name: str = "sg-rtsp"

    # Segment server
    host: str = "localhost"
    base_port: int = Field(default=8100, description="Segment server port; session identifiers are reserved above it")
    work_dir: Path = Field(default_factory=_default_work_dir)

    # Transcoder
    ffmpeg_path: str = "ffmpeg"
    default_transport: Literal["tcp", "udp"] = "tcp"
    segment_duration: int = Field(default=2, ge=1, le=10, description="HLS segment length, seconds")
    hls_list_size: int = Field(default=5, ge=1, description="Segments kept in the sliding playlist")

    # Supervision
    max_retries: int = 3
    retry_backoff_s: float = Field(default=2.0, description="Respawn delay is this times the attempt number")
    playlist_poll_attempts: int = 15
    playlist_poll_interval_s: float = 1.0
    stop_timeout_s: float = Field(default=5.0, description="SIGTERM grace before SIGKILL")
    shutdown_grace_s: float = 1.0

    # Per-session identifiers reserved above the server port
    port_attempts: int = 100
