"""
Proxy Test Fixtures - Sanitized player responses and upstream fakes
"""
import asyncio
import copy
from typing import Dict, List, Optional

import pytest

from cache_store import MemoryCacheStore
from config import ProxySettings
from models import VideoInfo
from resolver import VideoInfoResolver
from shaper import FormatShaper

PROXY_HOST = "proxy.example"

FIXTURE_PLAYER_RESPONSE = {
    "playabilityStatus": {"status": "OK"},
    "videoDetails": {
        "videoId": "dQw4w9WgXcQ",
        "title": "Test Video Title",
        "lengthSeconds": "212",
        "channelId": "UCuAXFkgsw1L7xaCfnd5JJOw",
        "author": "Test Author",
        "isLiveContent": False
    },
    "streamingData": {
        "expiresInSeconds": "21540",
        "hlsManifestUrl": "https://manifest.googlevideo.com/api/manifest/hls_variant/expire/1/id/dQw4w9WgXcQ/file/index.m3u8?x=1",
        "formats": [
            {
                "itag": 18,
                "url": "https://rr1---sn-a.googlevideo.com/videoplayback?expire=123&itag=18",
                "mimeType": "video/mp4; codecs=\"avc1.42001E, mp4a.40.2\"",
                "bitrate": 500000,
                "width": 640,
                "height": 360,
                "qualityLabel": "360p"
            },
            {
                "itag": 22,
                "mimeType": "video/mp4; codecs=\"avc1.64001F, mp4a.40.2\"",
                "bitrate": 1500000,
                "signatureCipher": "s=ABCDEF&sp=sig&url=https%3A%2F%2Frr1---sn-a.googlevideo.com%2Fvideoplayback%3Fitag%3D22"
            }
        ],
        "adaptiveFormats": [
            {
                "itag": 137,
                "url": "https://rr1---sn-a.googlevideo.com/videoplayback?expire=123&itag=137",
                "mimeType": "video/mp4; codecs=\"avc1.640028\"",
                "bitrate": 2500000,
                "width": 1920,
                "height": 1080,
                "fps": 30,
                "qualityLabel": "1080p",
                "contentLength": "12345678",
                "approxDurationMs": "212040",
                "initRange": {"start": "0", "end": "740"},
                "indexRange": {"start": "741", "end": "1260"}
            },
            {
                "itag": 248,
                "url": "https://rr1---sn-a.googlevideo.com/videoplayback?expire=123&itag=248",
                "mimeType": "video/webm; codecs=\"vp9\"",
                "bitrate": 2600000,
                "width": 1920,
                "height": 1080,
                "fps": 30,
                "initRange": {"start": "0", "end": "219"},
                "indexRange": {"start": "220", "end": "900"}
            },
            {
                "itag": 140,
                "url": "https://rr1---sn-a.googlevideo.com/videoplayback?expire=123&itag=140",
                "mimeType": "audio/mp4; codecs=\"mp4a.40.2\"",
                "bitrate": 128000,
                "contentLength": "2345678",
                "approxDurationMs": "212091",
                "audioSampleRate": "44100",
                "audioChannels": 2,
                "initRange": {"start": "0", "end": "631"},
                "indexRange": {"start": "632", "end": "975"}
            },
            {
                "itag": 251,
                "url": "https://rr1---sn-a.googlevideo.com/videoplayback?expire=123&itag=251",
                "mimeType": "audio/webm; codecs=\"opus\"",
                "bitrate": 140000,
                "audioSampleRate": "48000",
                "initRange": {"start": "0", "end": "265"},
                "indexRange": {"start": "266", "end": "700"}
            }
        ]
    }
}


def unplayable_response(status: str = "UNPLAYABLE", reason: Optional[str] = None) -> Dict:
    status_block = {"status": status}
    if reason is not None:
        status_block["reason"] = reason
    return {"playabilityStatus": status_block}


def playable_response(**streaming_overrides) -> Dict:
    data = copy.deepcopy(FIXTURE_PLAYER_RESPONSE)
    data["streamingData"].update(streaming_overrides)
    return data


def solved_url(itag) -> str:
    return f"https://rr1---sn-a.googlevideo.com/videoplayback?itag={itag}&sig=solved"


class FakeEngine:
    """
    Scripted upstream provider. ``outcomes`` maps a client name to a raw
    player response dict or an exception instance to raise.
    """

    def __init__(self, outcomes: Dict, gate: Optional[asyncio.Event] = None):
        self.outcomes = outcomes
        self.gate = gate
        self.calls: List[tuple] = []
        self.deciphered: List[int] = []

    async def get_basic_info(self, video_id, client):
        self.calls.append((video_id, client.name))
        if self.gate is not None:
            await self.gate.wait()

        outcome = self.outcomes[client.name]
        if isinstance(outcome, Exception):
            raise outcome
        return VideoInfo.from_player_response(copy.deepcopy(outcome), client.name)

    async def decipher(self, fmt, video_id=""):
        self.deciphered.append(fmt.itag)
        return solved_url(fmt.itag)

    def clients_called(self) -> List[str]:
        return [name for _, name in self.calls]


class RecordingCache(MemoryCacheStore):
    """Memory store that remembers every write in order"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.writes: List[tuple] = []

    async def set(self, key, entry, ttl=None):
        self.writes.append((key, entry))
        await super().set(key, entry, ttl)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str = ""):
        self.status_code = status_code
        self.payload = payload
        self.text = text

    def json(self):
        if self.payload is None:
            raise ValueError("No JSON object could be decoded")
        return self.payload


class FakeSession:
    def __init__(self, response: FakeResponse = None, error: Exception = None, get_response: FakeResponse = None):
        self.response = response or FakeResponse()
        self.get_response = get_response
        self.error = error
        self.requests: List[dict] = []

    async def post(self, url, json=None, headers=None):
        self.requests.append({"method": "POST", "url": url, "json": json, "headers": headers})
        if self.error:
            raise self.error
        return self.response

    async def get(self, url, **kwargs):
        self.requests.append({"method": "GET", "url": url})
        if self.error:
            raise self.error
        return self.get_response or self.response


class FakeSessionFactory:
    def __init__(self, session: FakeSession):
        self.session = session
        self.recreated = 0
        self.closed = False

    async def get_session(self):
        return self.session

    async def recreate_session(self, failed=None):
        self.recreated += 1
        return self.session

    async def close(self):
        self.closed = True


class FakePlayerManager:
    def __init__(self, sts: str = "19461"):
        self.sts = sts
        self.deciphered: List[str] = []

    async def get_signature_timestamp(self):
        return self.sts

    async def decipher(self, cipher_str, video_id=""):
        self.deciphered.append(cipher_str)
        return "https://rr1---sn-a.googlevideo.com/videoplayback?itag=22&sig=solved"

    async def close(self):
        pass


@pytest.fixture
def settings():
    return ProxySettings(host_proxy=PROXY_HOST)


@pytest.fixture
def cache():
    return RecordingCache(max_size=100)


@pytest.fixture
def make_resolver(cache):
    def _make(engine):
        return VideoInfoResolver(engine, cache, FormatShaper(engine, PROXY_HOST))
    return _make
