"""
Proxy InnerTube Engine - Upstream provider for playback metadata
Calls the player endpoint under a chosen client identity and validates
the JSON into models at the boundary.
"""
import json
import logging
from typing import Dict, Optional
from curl_cffi.requests import RequestsError
from models import StreamFormat, VideoInfo
from clients import ClientVariant, CLIENT_VARIANTS
from session_manager import SessionFactory
from player_artifacts import PlayerArtifactManager
from circuit_breaker import CircuitBreaker, RetryPolicy
from config import ProxyConfig
from errors import UpstreamCallError, DecipherError

logger = logging.getLogger(__name__)


class InnerTubeEngine:
    """
    Upstream provider used by the resolver.
    Exposes ``get_basic_info`` and ``decipher``; everything else is internal.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        player_manager: PlayerArtifactManager,
        max_retries: int = ProxyConfig.MAX_RETRIES
    ):
        self.session_factory = session_factory
        self.player_manager = player_manager
        self.max_retries = max_retries

        # Circuit breakers per client identity
        self.breakers: Dict[str, CircuitBreaker] = {
            name: CircuitBreaker(f"player_{name.lower()}") for name in CLIENT_VARIANTS
        }

    def _breaker_for(self, client: ClientVariant) -> CircuitBreaker:
        if client.name not in self.breakers:
            self.breakers[client.name] = CircuitBreaker(f"player_{client.name.lower()}")
        return self.breakers[client.name]

    async def build_payload(self, video_id: str, client: ClientVariant) -> Dict:
        payload = {
            "context": client.build_context(),
            "videoId": video_id,
            "contentCheckOk": True,
            "racyCheckOk": True
        }

        if client.requires_sts:
            sts = await self.player_manager.get_signature_timestamp()
            payload["playbackContext"] = {
                "contentPlaybackContext": {
                    "signatureTimestamp": int(sts)
                }
            }

        return payload

    async def get_basic_info(self, video_id: str, client: ClientVariant) -> VideoInfo:
        """
        Fetch playback metadata for ``video_id`` as ``client``.
        Raises UpstreamCallError when the call itself fails.
        """
        payload = await self.build_payload(video_id, client)
        url = f"{ProxyConfig.ORIGIN_BASE}/youtubei/v1/player?key={ProxyConfig.YOUTUBE_API_KEY}&prettyPrint=false"

        async def _fetch():
            session = await self.session_factory.get_session()
            try:
                resp = await session.post(url, json=payload, headers=client.build_headers())
            except RequestsError as e:
                await self.session_factory.recreate_session(session)
                raise UpstreamCallError(f"Player request failed: {e}") from e

            if resp.status_code != 200:
                raise UpstreamCallError(f"Player API returned {resp.status_code}", resp.status_code)

            try:
                return resp.json()
            except (json.JSONDecodeError, ValueError) as e:
                raise UpstreamCallError(f"Player API returned invalid JSON: {e}") from e

        data = await RetryPolicy.run(
            _fetch,
            breaker=self._breaker_for(client),
            max_retries=self.max_retries,
            operation=f"player_{client.name}_{video_id}"
        )

        info = self.parse_player_response(data, client)
        logger.debug(
            f"[Engine] {video_id} via {client.name}: {info.playability_status.status}"
            f" ({info.playability_status.reason or 'no reason'})"
        )
        return info

    @staticmethod
    def parse_player_response(data: Dict, client: Optional[ClientVariant] = None) -> VideoInfo:
        if not isinstance(data, dict):
            raise UpstreamCallError("Player API returned a non-object body")
        try:
            return VideoInfo.from_player_response(data, client.name if client else None)
        except ValueError as e:
            raise UpstreamCallError(f"Unexpected player response shape: {e}") from e

    async def decipher(self, fmt: StreamFormat, video_id: str = "") -> str:
        """
        Resolve a cipher-bearing format to a direct URL.
        """
        if fmt.url and not fmt.cipher_payload:
            return fmt.url
        if not fmt.cipher_payload:
            raise DecipherError(f"Format {fmt.itag} has neither URL nor cipher")
        return await self.player_manager.decipher(fmt.cipher_payload, video_id)

    async def close(self):
        await self.player_manager.close()
        await self.session_factory.close()
