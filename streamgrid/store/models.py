from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from streamgrid.layout.solver import GridPlacement

FitMode = Literal["contain", "cover"]
ChatPlatform = Literal["YouTube", "Twitch"]


class _Wire(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(populate_by_name=True)

    def wire(self) -> dict:
        return self.model_dump(by_alias=True)


class StreamRecord(_Wire):
    id: str
    name: str
    stream_url: str = Field(alias="streamUrl")
    logo_url: str = Field(default="", alias="logoUrl")
    # None means "use the store's default for new streams"
    is_muted: Optional[bool] = Field(default=None, alias="isMuted")
    fit_mode: FitMode = Field(default="contain", alias="fitMode")


class ChatItem(_Wire):
    id: str
    stream_id: str = Field(alias="streamId")
    stream_type: ChatPlatform = Field(alias="streamType")
    stream_name: str = Field(alias="streamName")
    stream_identifier: str = Field(alias="streamIdentifier")


class AppSettings(BaseModel):
    default_mute_new_streams: bool = False
    global_muted: bool = False


class SavedGrid(_Wire):
    id: str
    name: str
    created_at: str = Field(alias="createdAt")
    last_modified: str = Field(alias="lastModified")
    streams: list[StreamRecord] = Field(default_factory=list)
    layout: list[GridPlacement] = Field(default_factory=list)
    chats: list[ChatItem] = Field(default_factory=list)


class GridSummary(_Wire):
    id: str
    name: str
    created_at: str = Field(alias="createdAt")
    last_modified: str = Field(alias="lastModified")
    stream_count: int = Field(alias="streamCount")
    file_name: str = Field(alias="fileName")


class GridManifest(_Wire):
    version: str = "1.0.0"
    current_grid_id: Optional[str] = Field(default=None, alias="currentGridId")
    grids: list[GridSummary] = Field(default_factory=list)
