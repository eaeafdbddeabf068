"""
Proxy Passthrough - Live fetch of origin playlist documents with host rewriting
"""
import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

from curl_cffi.requests import RequestsError

from config import ProxyConfig
from errors import UpstreamCallError
from session_manager import SessionFactory

logger = logging.getLogger(__name__)


def rewrite_hosts(text: str, origin_host: str, proxy_host: str) -> str:
    """Replace every occurrence of ``origin_host`` with ``proxy_host``"""
    if not proxy_host:
        return text
    return text.replace(origin_host, proxy_host)


def origin_path(url: str) -> str:
    """Path component of an upstream URL, query string dropped"""
    return urlsplit(url).path


@dataclass
class PassthroughResult:
    status_code: int
    body: str


class PlaylistFetcher:
    """
    Fetches a path from the origin host and rewrites the hostname in the
    body. Non-200 answers are mirrored verbatim, not treated as errors.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        host_proxy: str,
        origin_host: str = ProxyConfig.ORIGIN_HOST
    ):
        self.session_factory = session_factory
        self.host_proxy = host_proxy
        self.origin_host = origin_host

    async def fetch(self, path: str) -> PassthroughResult:
        url = f"https://{self.origin_host}{path}"
        session = await self.session_factory.get_session()

        try:
            resp = await session.get(url)
        except RequestsError as e:
            raise UpstreamCallError(f"Origin fetch failed for {path}: {e}") from e

        if resp.status_code != 200:
            logger.info(f"[Passthrough] {path} answered {resp.status_code}, mirroring")
            return PassthroughResult(resp.status_code, resp.text)

        return PassthroughResult(200, rewrite_hosts(resp.text, self.origin_host, self.host_proxy))
