from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SessionState = Literal["starting", "running", "error", "stopped"]

TOOL_UNAVAILABLE = "FFmpeg is not installed or not found in PATH"
STREAM_NOT_FOUND = "Stream not found"


class StartResult(BaseModel):
    success: bool
    url: Optional[str] = None
    port: Optional[int] = None
    error: Optional[str] = None


class StopResult(BaseModel):
    success: bool
    error: Optional[str] = None


class ToolCheckResult(BaseModel):
    available: bool
    version: Optional[str] = None
    path: Optional[str] = None


class SessionHealth(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: SessionState
    uptime: int = Field(description="Milliseconds since the session started")
    error_count: int = Field(alias="errorCount")


class SessionInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: SessionState
    output_dir: str = Field(alias="outputDir")
    port: int
