"""
Proxy DASH Builder - Segmented manifest (MPD) generation from adaptive formats
"""
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit
import xml.etree.ElementTree as ET

from models import StreamFormat, StreamingData

MPD_NAMESPACE = "urn:mpeg:dash:schema:mpd:2011"
MPD_PROFILE = "urn:mpeg:dash:profile:isoff-main:2011"
AUDIO_CHANNEL_SCHEME = "urn:mpeg:dash:23003:3:audio_channel_configuration:2011"

UrlRewriter = Callable[[str], str]


def replace_host(url: str, host: str) -> str:
    """Swap the URL's network location for ``host``; empty host is a no-op"""
    if not host:
        return url
    parts = urlsplit(url)
    return urlunsplit(parts._replace(netloc=host))


def host_rewriter(host: str) -> UrlRewriter:
    return lambda url: replace_host(url, host)


def _duration_seconds(formats: List[StreamFormat], fallback: Optional[float]) -> float:
    durations = [fmt.approx_duration_ms for fmt in formats if fmt.approx_duration_ms]
    if durations:
        return max(durations) / 1000
    return float(fallback or 0)


def _is_describable(fmt: StreamFormat) -> bool:
    # SegmentBase needs both byte ranges and a fetchable URL
    return bool(fmt.url and fmt.init_range and fmt.index_range)


def _group_formats(formats: List[StreamFormat]) -> Dict[Tuple[str, Optional[str]], List[StreamFormat]]:
    groups: Dict[Tuple[str, Optional[str]], List[StreamFormat]] = {}
    for fmt in formats:
        key = (fmt.container, fmt.audio_track_id if fmt.is_audio else None)
        groups.setdefault(key, []).append(fmt)
    return groups


def _representation(parent: ET.Element, fmt: StreamFormat, rewrite_url: UrlRewriter):
    attrs = {"id": str(fmt.itag), "bandwidth": str(fmt.bitrate or 0)}
    if fmt.codecs:
        attrs["codecs"] = fmt.codecs

    if fmt.is_audio:
        if fmt.audio_sample_rate:
            attrs["audioSamplingRate"] = str(fmt.audio_sample_rate)
    else:
        if fmt.width:
            attrs["width"] = str(fmt.width)
        if fmt.height:
            attrs["height"] = str(fmt.height)
        if fmt.fps:
            attrs["frameRate"] = str(fmt.fps)

    rep = ET.SubElement(parent, "Representation", attrs)

    if fmt.is_audio:
        ET.SubElement(rep, "AudioChannelConfiguration", {
            "schemeIdUri": AUDIO_CHANNEL_SCHEME,
            "value": str(fmt.audio_channels or 2),
        })

    ET.SubElement(rep, "BaseURL").text = rewrite_url(fmt.url)
    segment_base = ET.SubElement(rep, "SegmentBase", {"indexRange": str(fmt.index_range)})
    ET.SubElement(segment_base, "Initialization", {"range": str(fmt.init_range)})


def build_dash_manifest(
    streaming_data: StreamingData,
    rewrite_url: UrlRewriter,
    duration_seconds: Optional[float] = None
) -> str:
    """
    Build a static MPD describing ``streaming_data.adaptive_formats``.
    Every BaseURL goes through ``rewrite_url``.
    """
    formats = [fmt for fmt in streaming_data.adaptive_formats if _is_describable(fmt)]
    duration = _duration_seconds(streaming_data.adaptive_formats, duration_seconds)

    mpd = ET.Element("MPD", {
        "xmlns": MPD_NAMESPACE,
        "minBufferTime": "PT1.500S",
        "profiles": MPD_PROFILE,
        "type": "static",
        "mediaPresentationDuration": f"PT{duration:.3f}S",
    })
    period = ET.SubElement(mpd, "Period")

    for set_id, ((container, track_id), group) in enumerate(_group_formats(formats).items()):
        attrs = {
            "id": str(set_id),
            "mimeType": container,
            "subsegmentAlignment": "true",
            "startWithSAP": "1",
        }
        if container.startswith("video/"):
            attrs["maxPlayoutRate"] = "1"
        if track_id:
            attrs["lang"] = track_id.split(".", 1)[0]

        adaptation_set = ET.SubElement(period, "AdaptationSet", attrs)
        for fmt in group:
            _representation(adaptation_set, fmt, rewrite_url)

    body = ET.tostring(mpd, encoding="unicode")
    return '<?xml version="1.0" encoding="utf-8"?>\n' + body
