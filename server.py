"""
Proxy HTTP Server - FastAPI application exposing the manifest and redirect routes
"""
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from cache_store import CacheStore, create_cache_store
from config import ProxySettings
from dash_manifest import replace_host
from engine import InnerTubeEngine
from errors import MissingUrlError, ProxyError, VideoUnplayableError
from models import CacheEntry
from passthrough import PlaylistFetcher, origin_path
from player_artifacts import PlayerArtifactManager
from resolver import VideoInfoResolver
from session_manager import SessionFactory
from shaper import FormatShaper

logger = logging.getLogger(__name__)

DASH_CONTENT_TYPE = "application/dash+xml"
HLS_CONTENT_TYPE = "application/x-mpegURL"
VIDEO_ID_PATTERN = re.compile(r"[\w-]+")


@dataclass
class ProxyServices:
    """Process-lifetime collaborators shared by every request"""
    resolver: VideoInfoResolver
    fetcher: PlaylistFetcher
    engine: Optional[InnerTubeEngine] = None
    cache: Optional[CacheStore] = None

    @classmethod
    def build(cls, settings: ProxySettings) -> "ProxyServices":
        session_factory = SessionFactory(dns_order=settings.dns_order)
        player_manager = PlayerArtifactManager(session_factory)
        engine = InnerTubeEngine(session_factory, player_manager)
        cache = create_cache_store(settings)
        shaper = FormatShaper(engine, settings.host_proxy)

        return cls(
            resolver=VideoInfoResolver(engine, cache, shaper),
            fetcher=PlaylistFetcher(session_factory, settings.host_proxy),
            engine=engine,
            cache=cache,
        )

    async def close(self):
        if self.engine is not None:
            await self.engine.close()
        if self.cache is not None:
            await self.cache.close()


def ensure_playable(video_id: str, info: CacheEntry):
    if not info.is_playable:
        raise VideoUnplayableError(video_id, info.playability_status.reason)


def extract_variant_video_id(request: Request) -> Optional[str]:
    """Segment after the last ``/id/`` in the path, else the ``id`` query parameter"""
    path = request.url.path
    if "/id/" in path:
        segment = path.rsplit("/id/", 1)[1].split("/", 1)[0]
        match = VIDEO_ID_PATTERN.match(segment)
        if match:
            return match.group(0)
    return request.query_params.get("id") or None


def _raw_path(request: Request) -> str:
    raw = request.scope.get("raw_path")
    if raw:
        return raw.decode("latin-1").split("?", 1)[0]
    return request.url.path


def _bad_request(error: Exception, media_type: Optional[str] = None) -> PlainTextResponse:
    logger.warning(f"[Server] 400: {error}")
    return PlainTextResponse(str(error), status_code=400, media_type=media_type)


def create_app(settings: ProxySettings, services: Optional[ProxyServices] = None) -> FastAPI:
    """
    Build the application. Collaborators are created in the lifespan unless
    ``services`` is supplied.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services or ProxyServices.build(settings)
        logger.info("[Server] Services ready")
        yield
        if owned:
            await app.state.services.close()
            logger.info("[Server] Services closed")

    app = FastAPI(title="InnerTube Manifest Proxy", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    @app.middleware("http")
    async def allow_any_origin(request: Request, call_next):
        response = await call_next(request)
        response.headers["access-control-allow-origin"] = "*"
        return response

    @app.get("/api/manifest/dash/id/{video_id}")
    async def dash_manifest(video_id: str, request: Request):
        resolver = request.app.state.services.resolver
        try:
            info = await resolver.get_dash_info(video_id)
            ensure_playable(video_id, info)
            if info.streaming_data is None or info.streaming_data.dash_document is None:
                raise ProxyError(f"No DASH manifest available: {video_id}")
        except Exception as e:
            return _bad_request(e)

        return Response(content=info.streaming_data.dash_document, media_type=DASH_CONTENT_TYPE)

    @app.get("/api/manifest/hls_variant/{rest:path}")
    async def hls_variant(rest: str, request: Request):
        video_id = extract_variant_video_id(request)
        if not video_id:
            return PlainTextResponse("Video ID not found.", status_code=400, media_type=HLS_CONTENT_TYPE)

        services = request.app.state.services
        try:
            info = await services.resolver.get_latest_info(video_id)
            ensure_playable(video_id, info)
            manifest_url = info.streaming_data.hls_manifest_url if info.streaming_data else None
            if not manifest_url:
                raise ProxyError(f"No HLS manifest available: {video_id}")
            result = await services.fetcher.fetch(origin_path(manifest_url))
        except Exception as e:
            return _bad_request(e, HLS_CONTENT_TYPE)

        return Response(content=result.body, status_code=result.status_code, media_type=HLS_CONTENT_TYPE)

    @app.get("/api/manifest/hls_playlist/{rest:path}")
    async def hls_playlist(rest: str, request: Request):
        try:
            result = await request.app.state.services.fetcher.fetch(_raw_path(request))
        except Exception as e:
            return _bad_request(e, HLS_CONTENT_TYPE)

        return Response(content=result.body, status_code=result.status_code, media_type=HLS_CONTENT_TYPE)

    @app.get("/latest_version")
    async def latest_version(request: Request, id: Optional[str] = None, itag: Optional[str] = None):
        if not id or not itag:
            return PlainTextResponse("Please specify the itag and video ID")

        resolver = request.app.state.services.resolver
        try:
            info = await resolver.get_latest_info(id)
            ensure_playable(id, info)
            selected = info.streaming_data.find_format(itag) if info.streaming_data else None
            if selected is None:
                return PlainTextResponse("No itag found.", status_code=400)
            if not selected.url:
                raise MissingUrlError(id)
        except Exception as e:
            return _bad_request(e)

        return RedirectResponse(replace_host(selected.url, settings.host_proxy), status_code=302)

    return app
