"""
Proxy Resolver - Cache-first, multi-client fallback resolution of video info
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from cache_store import CacheStore, cache_key
from clients import ANDROID, TV_EMBEDDED, WEB, ClientVariant
from config import ProxyConfig
from errors import UpstreamCallError
from models import CacheEntry, Shape, VideoInfo
from shaper import FormatShaper

logger = logging.getLogger(__name__)


class AttemptState(Enum):
    NOT_TRIED = "not_tried"
    TRIED_FAILED = "tried_failed"
    TRIED_SOFT_UNPLAYABLE = "tried_soft_unplayable"
    RESOLVED = "resolved"


class Trigger(Enum):
    """When a fallback step runs"""
    ALWAYS = "always"
    PREVIOUS_FAILED = "previous_failed"  # the step before raised
    SOFT_UNPLAYABLE = "soft_unplayable"  # the authoritative result carries a reason


@dataclass(frozen=True)
class FallbackStep:
    client: ClientVariant
    trigger: Trigger


DEFAULT_PLAN: Tuple[FallbackStep, ...] = (
    FallbackStep(ANDROID, Trigger.ALWAYS),
    FallbackStep(WEB, Trigger.PREVIOUS_FAILED),
    FallbackStep(TV_EMBEDDED, Trigger.SOFT_UNPLAYABLE),
)


@dataclass
class Resolution:
    """Outcome of one resolve call plus how it was reached"""
    info: CacheEntry
    from_cache: bool = False
    trace: List[Tuple[str, AttemptState]] = field(default_factory=list)

    def state_of(self, client_name: str) -> AttemptState:
        for name, state in self.trace:
            if name == client_name:
                return state
        return AttemptState.NOT_TRIED


class VideoInfoResolver:
    """
    Produces a playable-or-definitively-failed record per (video id, shape).

    Upstream call failures and soft failures are absorbed by walking the
    fallback plan; the final state is always written to the cache exactly
    once, and only the trimmed projection is stored.
    """

    def __init__(
        self,
        engine,
        cache: CacheStore,
        shaper: FormatShaper,
        plan: Sequence[FallbackStep] = DEFAULT_PLAN,
        ttl: float = ProxyConfig.CACHE_TTL
    ):
        self.engine = engine
        self.cache = cache
        self.shaper = shaper
        self.plan = tuple(plan)
        self.ttl = ttl
        self._inflight: Dict[str, "asyncio.Future[Resolution]"] = {}

    async def get_video_info(self, video_id: str, shape: Shape) -> CacheEntry:
        return (await self.resolve(video_id, shape)).info

    async def get_dash_info(self, video_id: str) -> CacheEntry:
        return await self.get_video_info(video_id, Shape.DASH)

    async def get_latest_info(self, video_id: str) -> CacheEntry:
        return await self.get_video_info(video_id, Shape.LATEST)

    async def resolve(self, video_id: str, shape: Shape) -> Resolution:
        key = cache_key(video_id, shape)

        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug(f"[Resolver] Cache hit {key}")
            return Resolution(info=cached, from_cache=True)

        # Concurrent cold requests for one key share a single resolution
        pending = self._inflight.get(key)
        if pending is None:
            logger.debug(f"[Resolver] Cache miss {key}")
            pending = asyncio.ensure_future(self._resolve_uncached(key, video_id, Shape(shape)))
            self._inflight[key] = pending
            pending.add_done_callback(lambda _: self._inflight.pop(key, None))
        else:
            logger.debug(f"[Resolver] Joining in-flight resolution {key}")

        return await asyncio.shield(pending)

    async def _resolve_uncached(self, key: str, video_id: str, shape: Shape) -> Resolution:
        info, trace = await self._run_plan(key, video_id)

        if info.streaming_data is not None and isinstance(info, VideoInfo):
            await self.shaper.shape(video_id, info, shape)

        entry = info.trim() if isinstance(info, VideoInfo) else info
        await self.cache.set(key, entry, self.ttl)

        logger.info(
            f"[Resolver] {key} -> {info.playability_status.status}"
            f" via {', '.join(f'{name}:{state.value}' for name, state in trace)}"
        )
        return Resolution(info=info, trace=trace)

    async def _run_plan(self, key: str, video_id: str) -> Tuple[CacheEntry, List[Tuple[str, AttemptState]]]:
        authoritative: Optional[CacheEntry] = None
        trace: List[Tuple[str, AttemptState]] = []
        last_state = AttemptState.NOT_TRIED

        for step in self.plan:
            if not self._should_attempt(step.trigger, authoritative, last_state):
                trace.append((step.client.name, AttemptState.NOT_TRIED))
                last_state = AttemptState.NOT_TRIED
                continue

            try:
                info = await self.engine.get_basic_info(video_id, step.client)
            except UpstreamCallError as e:
                logger.warning(f"[Resolver] {video_id} via {step.client.name} failed: {e}")
                last_state = AttemptState.TRIED_FAILED
                trace.append((step.client.name, last_state))

                if authoritative is None:
                    # Stop other requests from hammering a failing provider for this id
                    authoritative = CacheEntry.unavailable(video_id)
                    await self.cache.set(key, authoritative, self.ttl)
                    logger.info(f"[Resolver] Wrote negative placeholder for {key}")
                continue

            authoritative = info
            if info.playability_status.reason:
                last_state = AttemptState.TRIED_SOFT_UNPLAYABLE
            else:
                last_state = AttemptState.RESOLVED
            trace.append((step.client.name, last_state))

        if authoritative is None:
            # Empty plan or only skipped steps
            authoritative = CacheEntry.unavailable(video_id)
        return authoritative, trace

    @staticmethod
    def _should_attempt(trigger: Trigger, authoritative: Optional[CacheEntry], last_state: AttemptState) -> bool:
        if trigger == Trigger.ALWAYS:
            return True
        if trigger == Trigger.PREVIOUS_FAILED:
            return last_state == AttemptState.TRIED_FAILED
        if trigger == Trigger.SOFT_UNPLAYABLE:
            return authoritative is not None and bool(authoritative.playability_status.reason)
        return False
