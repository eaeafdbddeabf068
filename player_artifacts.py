"""
Proxy Player Artifacts Manager - Player JS tracking and signature solving
Keeps the signature timestamp in sync with the live player and resolves
cipher-bearing formats through yt-dlp's YouTube extractor.
"""
import re
import asyncio
import logging
from typing import Optional
from datetime import datetime
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import parse_qsl, quote

from pydantic import BaseModel, Field
import yt_dlp

from config import ProxyConfig
from errors import DecipherError, UpstreamCallError

logger = logging.getLogger(__name__)

PLAYER_ID_PATTERN = re.compile(r'player\\?/([0-9a-fA-F]{8})\\?/')
JS_URL_PATTERN = re.compile(r'"jsUrl"\s*:\s*"(/s/player/[^"]+/base\.js)"')
STS_PATTERNS = [
    re.compile(r'signatureTimestamp["\']?\s*[:=]\s*(\d+)'),
    re.compile(r'sts["\']?\s*:\s*(\d+)'),
]


class PlayerArtifact(BaseModel):
    """The player build the signature timestamp and ciphers belong to"""
    player_url: str
    player_id: str
    signature_timestamp: str
    created_at: datetime = Field(default_factory=datetime.now)


def parse_cipher(cipher_str: str) -> dict:
    """Parse signatureCipher into its ``s``, ``sp`` and ``url`` components"""
    return dict(parse_qsl(cipher_str))


class PlayerArtifactManager:
    """
    Manages the current player artifact with:
    - Periodic refresh instead of per-video sync
    - Lock so concurrent requests trigger one sync
    - Thread pool for CPU-bound signature solving
    """

    def __init__(self, session_factory, signature_solver=None):
        self.session_factory = session_factory
        self._signature_solver = signature_solver
        self._sync_lock = asyncio.Lock()
        self._js_executor = ThreadPoolExecutor(max_workers=ProxyConfig.MAX_JS_WORKERS)
        self._youtube_ie = None

        self._current_artifact: Optional[PlayerArtifact] = None
        self._last_refresh: Optional[datetime] = None

    async def get_current_artifact(self, force_refresh: bool = False) -> PlayerArtifact:
        """
        Get current player artifact, refreshing if needed.
        """
        async with self._sync_lock:
            if force_refresh or self._current_artifact is None or self._needs_refresh():
                return await self.sync_player_artifact()
            return self._current_artifact

    async def get_signature_timestamp(self) -> str:
        try:
            artifact = await self.get_current_artifact()
        except UpstreamCallError as e:
            logger.warning(f"[PlayerArtifact] Using default STS, sync failed: {e}")
            return ProxyConfig.DEFAULT_STS
        return artifact.signature_timestamp

    def _needs_refresh(self) -> bool:
        if not self._last_refresh:
            return True
        age_seconds = (datetime.now() - self._last_refresh).total_seconds()
        return age_seconds > ProxyConfig.PLAYER_CACHE_TTL

    async def sync_player_artifact(self) -> PlayerArtifact:
        """
        Locate the live player build and read its signature timestamp.
        """
        session = await self.session_factory.get_session()

        try:
            logger.info("[PlayerArtifact] Syncing player artifact...")
            resp = await session.get(f"{ProxyConfig.ORIGIN_BASE}/iframe_api")
            if resp.status_code != 200:
                raise UpstreamCallError(f"Failed to fetch iframe API: {resp.status_code}", resp.status_code)

            player_url = self.extract_player_url(resp.text)
            if not player_url:
                raise UpstreamCallError("Failed to extract player URL")

            js_resp = await session.get(player_url)
            if js_resp.status_code != 200:
                raise UpstreamCallError(f"Failed to fetch player JS: {js_resp.status_code}", js_resp.status_code)

            artifact = PlayerArtifact(
                player_url=player_url,
                player_id=PLAYER_ID_PATTERN.search(player_url).group(1),
                signature_timestamp=self.extract_sts(js_resp.text),
            )
        except UpstreamCallError as e:
            logger.error(f"[PlayerArtifact] Sync failed: {e}")
            if self._current_artifact:
                logger.warning("[PlayerArtifact] Falling back to existing artifact")
                return self._current_artifact
            raise
        except Exception as e:
            logger.error(f"[PlayerArtifact] Sync failed: {e}")
            if self._current_artifact:
                return self._current_artifact
            raise UpstreamCallError(f"Player sync failed: {e}") from e

        self._current_artifact = artifact
        self._last_refresh = datetime.now()
        logger.info(f"[PlayerArtifact] Synced player {artifact.player_id} STS={artifact.signature_timestamp}")
        return artifact

    @staticmethod
    def extract_player_url(text: str) -> Optional[str]:
        """Player JS URL from the iframe API script or a page's ``jsUrl``"""
        js_url = JS_URL_PATTERN.search(text)
        if js_url:
            return ProxyConfig.ORIGIN_BASE + js_url.group(1).replace('\\/', '/')

        player_id = PLAYER_ID_PATTERN.search(text)
        if player_id:
            return f"{ProxyConfig.ORIGIN_BASE}/s/player/{player_id.group(1)}/player_ias.vflset/en_US/base.js"
        return None

    @staticmethod
    def extract_sts(js_code: str) -> str:
        for pattern in STS_PATTERNS:
            match = pattern.search(js_code)
            if match:
                return match.group(1)

        logger.warning("[PlayerArtifact] Failed to extract STS, using default")
        return ProxyConfig.DEFAULT_STS

    async def decipher(self, cipher_str: str, video_id: str = "") -> str:
        """
        Turn a signatureCipher payload into a direct media URL.
        """
        components = parse_cipher(cipher_str)
        base_url = components.get("url")
        signature = components.get("s")
        if not base_url or not signature:
            raise DecipherError("Malformed signature cipher")

        try:
            artifact = await self.get_current_artifact()
        except UpstreamCallError as e:
            raise DecipherError(f"No player artifact to solve with: {e}") from e

        loop = asyncio.get_running_loop()
        try:
            solved = await loop.run_in_executor(
                self._js_executor,
                self._solve_signature,
                signature,
                artifact.player_url,
                video_id,
            )
        except Exception as e:
            raise DecipherError(f"Signature solving failed: {e}") from e

        param = components.get("sp") or "signature"
        separator = "&" if "?" in base_url else "?"
        return f"{base_url}{separator}{param}={quote(solved)}"

    def _solve_signature(self, signature: str, player_url: str, video_id: str) -> str:
        """Runs in the thread pool"""
        if self._signature_solver is not None:
            return self._signature_solver(signature, player_url, video_id)

        if self._youtube_ie is None:
            ydl = yt_dlp.YoutubeDL({"quiet": True, "no_warnings": True})
            self._youtube_ie = ydl.get_info_extractor("Youtube")
        return self._youtube_ie._decrypt_signature(signature, video_id, player_url)

    async def close(self):
        """Cleanup resources"""
        self._js_executor.shutdown(wait=False)
