"""
Proxy Data Models - Type-safe schemas for player responses and cache entries
"""
from pydantic import BaseModel, Field, model_validator
from typing import List, Optional, Dict, Any
from enum import Enum

PLAYABLE = "OK"


class Shape(str, Enum):
    """Independent post-processing modes, each with its own cache namespace"""
    DASH = "dash"
    LATEST = "latest"


class ByteRange(BaseModel):
    start: int
    end: int

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


class PlayabilityStatus(BaseModel):
    """Authoritative signal of whether a video can be played"""
    status: str
    reason: Optional[str] = None

    @property
    def is_playable(self) -> bool:
        return self.status == PLAYABLE


class StreamFormat(BaseModel):
    """Represents a specific video/audio stream variant"""
    itag: int
    url: Optional[str] = None
    mime_type: str = Field("", alias="mimeType")
    bitrate: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[int] = None
    quality_label: Optional[str] = Field(None, alias="qualityLabel")
    signature_cipher: Optional[str] = Field(None, alias="signatureCipher")
    cipher: Optional[str] = None
    content_length: Optional[int] = Field(None, alias="contentLength")
    approx_duration_ms: Optional[int] = Field(None, alias="approxDurationMs")
    audio_sample_rate: Optional[int] = Field(None, alias="audioSampleRate")
    audio_channels: Optional[int] = Field(None, alias="audioChannels")
    audio_track_id: Optional[str] = None
    init_range: Optional[ByteRange] = Field(None, alias="initRange")
    index_range: Optional[ByteRange] = Field(None, alias="indexRange")

    class Config:
        populate_by_name = True
        extra = "ignore"

    @model_validator(mode="before")
    @classmethod
    def _flatten_audio_track(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("audioTrack"), dict):
            data = dict(data)
            data.setdefault("audio_track_id", data.pop("audioTrack").get("id"))
        return data

    @property
    def cipher_payload(self) -> Optional[str]:
        """Opaque cipher data, whichever field the origin used"""
        return self.signature_cipher or self.cipher

    @property
    def container(self) -> str:
        """Mime type without codec parameters, e.g. ``video/mp4``"""
        return self.mime_type.split(";", 1)[0].strip()

    @property
    def codecs(self) -> Optional[str]:
        for part in self.mime_type.split(";")[1:]:
            key, _, value = part.strip().partition("=")
            if key == "codecs":
                return value.strip('"')
        return None

    @property
    def is_audio(self) -> bool:
        return self.container.startswith("audio/")


class StreamingData(BaseModel):
    """Stream listing plus artifacts derived once per cache entry"""
    expires_in_seconds: Optional[int] = Field(None, alias="expiresInSeconds")
    formats: List[StreamFormat] = []
    adaptive_formats: List[StreamFormat] = Field([], alias="adaptiveFormats")
    hls_manifest_url: Optional[str] = Field(None, alias="hlsManifestUrl")
    dash_manifest_url: Optional[str] = Field(None, alias="dashManifestUrl")
    dash_document: Optional[str] = None

    class Config:
        populate_by_name = True
        extra = "ignore"

    def find_format(self, itag: Any) -> Optional[StreamFormat]:
        """First entry of ``formats ++ adaptive_formats`` whose itag matches"""
        wanted = str(itag)
        for fmt in self.formats + self.adaptive_formats:
            if str(fmt.itag) == wanted:
                return fmt
        return None


class VideoDetails(BaseModel):
    """Standardized metadata for any YouTube video"""
    video_id: str = Field(alias="videoId")
    title: Optional[str] = None
    length_seconds: Optional[int] = Field(None, alias="lengthSeconds")
    channel_id: Optional[str] = Field(None, alias="channelId")
    author: Optional[str] = None
    is_live_content: Optional[bool] = Field(None, alias="isLiveContent")

    class Config:
        populate_by_name = True
        extra = "ignore"


class CacheEntry(BaseModel):
    """
    Trimmed, serializable projection of a resolution.
    Only this part ever reaches the cache store.
    """
    playability_status: PlayabilityStatus = Field(alias="playabilityStatus")
    streaming_data: Optional[StreamingData] = Field(None, alias="streamingData")

    class Config:
        populate_by_name = True
        extra = "ignore"

    @property
    def is_playable(self) -> bool:
        return self.playability_status.is_playable

    @classmethod
    def unavailable(cls, video_id: str) -> "CacheEntry":
        """Negative placeholder written when the first client variant fails"""
        return cls(
            playability_status=PlayabilityStatus(
                status="Not OK",
                reason=f"Video unavailable: {video_id}",
            )
        )


class VideoInfo(CacheEntry):
    """Full player response for one request, validated at the boundary"""
    video_details: Optional[VideoDetails] = Field(None, alias="videoDetails")
    client: Optional[str] = None

    @classmethod
    def from_player_response(cls, data: Dict[str, Any], client: Optional[str] = None) -> "VideoInfo":
        if "playabilityStatus" not in data:
            # Treat a response without status as unplayable rather than OK
            data = dict(data, playabilityStatus={"status": "ERROR", "reason": "Missing playability status"})
        return cls.model_validate(dict(data, client=client))

    @property
    def duration_seconds(self) -> Optional[int]:
        if self.video_details:
            return self.video_details.length_seconds
        return None

    def trim(self) -> CacheEntry:
        """Keep only what later requests need"""
        return CacheEntry(
            playability_status=self.playability_status,
            streaming_data=self.streaming_data,
        )
