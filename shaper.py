"""
Proxy Format Shaper - Shape-specific post-processing of resolved video info
"""
import logging
from typing import List

from dash_manifest import build_dash_manifest, host_rewriter
from errors import DecipherError, UpstreamCallError
from models import Shape, StreamFormat, VideoInfo

logger = logging.getLogger(__name__)

DASH_CONTAINERS = ("audio/mp4", "video/mp4")


def filter_dash_formats(formats: List[StreamFormat]) -> List[StreamFormat]:
    """Keep only MPEG-4 audio/video entries, in upstream order"""
    return [fmt for fmt in formats if fmt.container in DASH_CONTAINERS]


class FormatShaper:
    """
    Turns raw streaming data into what each shape serves:
    - dash: filtered adaptive formats plus an MPD with proxied hosts
    - latest: progressive formats with direct (deciphered) URLs
    Both mutate ``info.streaming_data`` in place.
    """

    def __init__(self, engine, host_proxy: str):
        self.engine = engine
        self.host_proxy = host_proxy

    async def shape(self, video_id: str, info: VideoInfo, shape: Shape) -> VideoInfo:
        if info.streaming_data is None:
            return info
        if shape == Shape.DASH:
            await self.shape_dash(video_id, info)
        else:
            await self.shape_latest(video_id, info)
        return info

    async def shape_dash(self, video_id: str, info: VideoInfo):
        streaming_data = info.streaming_data
        streaming_data.adaptive_formats = filter_dash_formats(streaming_data.adaptive_formats)

        for fmt in streaming_data.adaptive_formats:
            if not fmt.url and fmt.cipher_payload:
                await self._resolve_url(video_id, fmt)

        streaming_data.dash_document = build_dash_manifest(
            streaming_data,
            host_rewriter(self.host_proxy),
            duration_seconds=info.duration_seconds,
        )

    async def shape_latest(self, video_id: str, info: VideoInfo):
        # adaptive_formats stay exactly as upstream returned them
        for fmt in info.streaming_data.formats:
            if fmt.cipher_payload:
                await self._resolve_url(video_id, fmt)

    async def _resolve_url(self, video_id: str, fmt: StreamFormat):
        try:
            fmt.url = await self.engine.decipher(fmt, video_id)
        except (DecipherError, UpstreamCallError) as e:
            logger.warning(f"[Shaper] {video_id} itag {fmt.itag}: {e}")
            fmt.url = None
