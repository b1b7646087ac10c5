from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class EncodingProfile(BaseModel):
    """Declarative parameter set handed to an encoder."""

    model_config = ConfigDict(frozen=True)

    frame_rate: float = Field(29.97, description="Output frame rate.")
    resolution: str = Field("1920x1080", description="Target resolution as WIDTHxHEIGHT.")
    video_codec: str = Field("mpeg2video", description="Video encoder name.")
    video_bitrate: int = Field(16384, description="Video bitrate in kbit/s.")
    video_max_bitrate: int = Field(30000, description="Video max bitrate in kbit/s.")
    buffer_size: int = Field(4096, description="Encoder rate-control buffer size in kbit.")
    audio_codec: str = Field("ac3", description="Audio encoder name.")
    audio_bitrate: int = Field(448, description="Audio bitrate in kbit/s.")
    audio_sample_rate: int = Field(48000, description="Audio sample rate in Hz.")
    container_format: str = Field("vob", description="Output container format.")
    custom: Dict[str, str] = Field(
        default_factory=dict, description="Free-form options passed through to the output container."
    )

    @property
    def dimensions(self) -> tuple[int, int]:
        width, _, height = self.resolution.lower().partition("x")
        return int(width), int(height)


class ApplicationConfig(BaseModel):
    """A top-level library share."""

    kind: Literal["filesystem", "plex"] = "filesystem"
    identifier: str = Field(..., description="Directory path for filesystem, server URL for plex.")
    title: Optional[str] = Field(None, description="Title shown to the client. Defaults per kind.")
    token: Optional[str] = Field(None, description="Access token for catalog servers.")
    section: Optional[str] = Field(None, description="Catalog key to expose, e.g. /library/sections/1/all.")


class ContentNodeSchema(BaseModel):
    identity: str
    kind: Literal["item", "container"]
    title: str
    content_type: str
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    path: List[str] = Field(default_factory=list)
    populated: bool = False
    child_count: Optional[int] = None
    description: Optional[str] = None
    duration: Optional[int] = None
    source_size: Optional[int] = None


class ContainerListing(BaseModel):
    container: ContentNodeSchema
    children: List[ContentNodeSchema] = Field(default_factory=list)
