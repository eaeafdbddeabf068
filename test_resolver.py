"""
Resolver tests - fallback plan, cache behaviour and shape isolation
"""
import asyncio

import pytest

from cache_store import cache_key
from conftest import (
    FIXTURE_PLAYER_RESPONSE,
    FakeEngine,
    FakeResponse,
    FakeSession,
    FakeSessionFactory,
    playable_response,
    unplayable_response,
)
from engine import InnerTubeEngine
from errors import UpstreamCallError
from models import CacheEntry, Shape, VideoInfo
from player_artifacts import PlayerArtifactManager
from resolver import AttemptState, VideoInfoResolver
from shaper import FormatShaper


@pytest.mark.asyncio
async def test_second_resolution_is_a_pure_cache_hit(make_resolver):
    engine = FakeEngine({"ANDROID": playable_response()})
    resolver = make_resolver(engine)

    first = await resolver.resolve("abc123", Shape.LATEST)
    second = await resolver.resolve("abc123", Shape.LATEST)

    assert engine.calls == [("abc123", "ANDROID")]
    assert not first.from_cache
    assert second.from_cache
    assert second.info.playability_status == first.info.playability_status
    assert second.info.streaming_data == first.info.streaming_data


@pytest.mark.asyncio
async def test_shapes_never_share_cache_entries(make_resolver, cache):
    engine = FakeEngine({"ANDROID": playable_response()})
    resolver = make_resolver(engine)

    await resolver.get_dash_info("abc123")
    assert await cache.get(cache_key("abc123", Shape.LATEST)) is None

    await resolver.get_latest_info("abc123")

    assert len(engine.calls) == 2
    dash_entry = await cache.get("abc123-dash")
    latest_entry = await cache.get("abc123-latest")
    assert dash_entry.streaming_data.dash_document is not None
    assert latest_entry.streaming_data.dash_document is None
    assert [key for key, _ in cache.writes] == ["abc123-dash", "abc123-latest"]


@pytest.mark.asyncio
async def test_first_client_success_stops_the_plan(make_resolver):
    engine = FakeEngine({"ANDROID": playable_response()})
    resolution = await make_resolver(engine).resolve("abc123", Shape.LATEST)

    assert engine.clients_called() == ["ANDROID"]
    assert resolution.state_of("ANDROID") == AttemptState.RESOLVED
    assert resolution.state_of("WEB") == AttemptState.NOT_TRIED
    assert resolution.state_of("TV_EMBEDDED") == AttemptState.NOT_TRIED


@pytest.mark.asyncio
async def test_call_failure_writes_placeholder_then_falls_back_to_web(make_resolver, cache):
    engine = FakeEngine({
        "ANDROID": UpstreamCallError("Player API returned 403", 403),
        "WEB": playable_response(),
    })
    resolution = await make_resolver(engine).resolve("abc123", Shape.LATEST)

    assert engine.clients_called() == ["ANDROID", "WEB"]
    assert resolution.info.is_playable
    assert resolution.state_of("ANDROID") == AttemptState.TRIED_FAILED

    placeholder_key, placeholder = cache.writes[0]
    assert placeholder_key == "abc123-latest"
    assert placeholder.playability_status.status == "Not OK"
    assert placeholder.playability_status.reason == "Video unavailable: abc123"

    final = await cache.get("abc123-latest")
    assert final.is_playable
    assert len(cache.writes) == 2


@pytest.mark.asyncio
async def test_final_write_replaces_placeholder_with_last_variant_status(make_resolver, cache):
    engine = FakeEngine({
        "ANDROID": UpstreamCallError("connection reset"),
        "WEB": unplayable_response("UNPLAYABLE", "age restricted"),
        "TV_EMBEDDED": unplayable_response("LOGIN_REQUIRED", "age restricted"),
    })
    resolution = await make_resolver(engine).resolve("blocked1", Shape.DASH)

    assert engine.clients_called() == ["ANDROID", "WEB", "TV_EMBEDDED"]
    assert resolution.info.playability_status.status == "LOGIN_REQUIRED"

    cached = await cache.get("blocked1-dash")
    assert cached.playability_status.status == "LOGIN_REQUIRED"
    assert cached.playability_status.reason == "age restricted"


@pytest.mark.asyncio
async def test_soft_failure_escalates_to_embedded_client(make_resolver):
    engine = FakeEngine({
        "ANDROID": unplayable_response("UNPLAYABLE", "Playback on other websites has been disabled"),
        "TV_EMBEDDED": playable_response(),
    })
    resolution = await make_resolver(engine).resolve("abc123", Shape.LATEST)

    assert engine.clients_called() == ["ANDROID", "TV_EMBEDDED"]
    assert resolution.state_of("ANDROID") == AttemptState.TRIED_SOFT_UNPLAYABLE
    assert resolution.state_of("WEB") == AttemptState.NOT_TRIED
    assert resolution.info.is_playable


@pytest.mark.asyncio
async def test_escalation_failure_keeps_previous_result(make_resolver, cache):
    engine = FakeEngine({
        "ANDROID": unplayable_response("UNPLAYABLE", "age restricted"),
        "TV_EMBEDDED": UpstreamCallError("Player API returned 500", 500),
    })
    resolution = await make_resolver(engine).resolve("abc123", Shape.LATEST)

    assert resolution.info.playability_status.reason == "age restricted"
    # No placeholder: a result already existed when the embedded client failed
    assert len(cache.writes) == 1


@pytest.mark.asyncio
async def test_every_client_failing_settles_on_placeholder(make_resolver, cache):
    engine = FakeEngine({
        "ANDROID": UpstreamCallError("boom"),
        "WEB": UpstreamCallError("boom"),
        "TV_EMBEDDED": UpstreamCallError("boom"),
    })
    resolution = await make_resolver(engine).resolve("gone1", Shape.LATEST)

    assert not resolution.info.is_playable
    assert resolution.info.playability_status.reason == "Video unavailable: gone1"
    assert [state for _, state in resolution.trace] == [AttemptState.TRIED_FAILED] * 3
    assert (await cache.get("gone1-latest")).playability_status.status == "Not OK"


@pytest.mark.asyncio
async def test_unplayable_result_is_cached_without_streaming_data(make_resolver, cache):
    engine = FakeEngine({
        "ANDROID": unplayable_response("ERROR", None),
    })
    info = await make_resolver(engine).get_latest_info("nope1")

    assert info.playability_status.status == "ERROR"
    assert info.streaming_data is None
    assert (await cache.get("nope1-latest")).playability_status.status == "ERROR"


@pytest.mark.asyncio
async def test_caller_gets_full_info_but_cache_keeps_trimmed_entry(make_resolver, cache):
    engine = FakeEngine({"ANDROID": playable_response()})
    info = await make_resolver(engine).get_latest_info("abc123")

    assert isinstance(info, VideoInfo)
    assert info.video_details.title == "Test Video Title"

    cached = await cache.get("abc123-latest")
    assert type(cached) is CacheEntry
    assert not hasattr(cached, "video_details")


@pytest.mark.asyncio
async def test_concurrent_cold_requests_share_one_resolution(make_resolver):
    gate = asyncio.Event()
    engine = FakeEngine({"ANDROID": playable_response()}, gate=gate)
    resolver = make_resolver(engine)

    async def release():
        await asyncio.sleep(0.01)
        gate.set()

    first, second, _ = await asyncio.gather(
        resolver.get_latest_info("abc123"),
        resolver.get_latest_info("abc123"),
        release(),
    )

    assert engine.calls == [("abc123", "ANDROID")]
    assert first is second
    assert resolver._inflight == {}


@pytest.mark.asyncio
async def test_player_sync_failure_only_blanks_ciphered_formats(cache):
    session = FakeSession(
        FakeResponse(200, payload=FIXTURE_PLAYER_RESPONSE),
        get_response=FakeResponse(503, text="Service Unavailable"),
    )
    factory = FakeSessionFactory(session)
    player_manager = PlayerArtifactManager(factory, signature_solver=lambda *args: "solved")
    engine = InnerTubeEngine(factory, player_manager, max_retries=0)
    resolver = VideoInfoResolver(engine, cache, FormatShaper(engine, "proxy.example"))

    try:
        info = await resolver.get_latest_info("dQw4w9WgXcQ")
    finally:
        await player_manager.close()

    assert info.is_playable
    assert info.streaming_data.find_format(22).url is None
    assert info.streaming_data.find_format(18).url.startswith("https://rr1---sn-a.googlevideo.com/")
    assert [key for key, _ in cache.writes] == ["dQw4w9WgXcQ-latest"]
    assert cache.writes[0][1].is_playable
