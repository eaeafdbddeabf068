"""
Proxy Errors - Failure kinds raised across the resolution pipeline
"""
from typing import Optional


class ProxyError(Exception):
    """Base class for every error the proxy raises on purpose"""


class UpstreamCallError(ProxyError):
    """The player endpoint could not be called or returned garbage"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CircuitOpenError(UpstreamCallError):
    """Raised without touching the network while a circuit is open"""


class DecipherError(ProxyError):
    """A cipher-bearing format could not be turned into a direct URL"""


class VideoUnplayableError(ProxyError):
    def __init__(self, video_id: str, reason: Optional[str]):
        super().__init__(f"The video can't be played: {video_id} due to reason: {reason}")
        self.video_id = video_id
        self.reason = reason


class MissingUrlError(ProxyError):
    def __init__(self, video_id: str):
        super().__init__(f"No URL, the video can't be played: {video_id}")
        self.video_id = video_id
