import asyncio

import pytest

from castreceiver.errors import CatalogError, InvalidTransitionError
from castreceiver.playback_state import TICKS_PER_SECOND, StreamState
from castreceiver.stream_change import ChangeAudioTrack, ChangeSubtitleTrack, Seek

from fakes import Harness, direct_play_source, playback_info, transcode_source, video_item


def test_load_populates_state_and_reports_start():
    async def scenario():
        h = Harness()
        assert await h.load()

        state = h.state
        assert state.item_id == "item-1"
        assert state.media_source_id == "src-1"
        assert state.play_session_id == "session-1"
        assert state.audio_stream_index == 1
        assert state.subtitle_stream_index == -1
        assert state.stream_state is StreamState.IDLE
        assert state.descriptor.url == "http://files.local/movie.mp4"
        assert h.engine.count("load") == 1
        assert h.catalog.reported("start")[0]["PlaySessionId"] == "session-1"
        assert h.ws.of_type("playbackstart")

    asyncio.run(scenario())


def test_load_fetches_item_when_only_id_is_given():
    async def scenario():
        h = Harness()
        h.catalog.items["item-1"] = video_item()
        assert await h.load({"Id": "item-1"})
        assert h.catalog.count("get_item") == 1
        assert h.state.item["MediaType"] == "Video"

    asyncio.run(scenario())


def test_new_load_reports_previous_stopped_and_takes_fresh_session_id():
    async def scenario():
        h = Harness()
        await h.load()
        h.catalog.playback_info["PlaySessionId"] = "session-2"
        assert await h.load(video_item("item-2"))

        stopped = h.catalog.reported("stopped")
        assert [p["ItemId"] for p in stopped] == ["item-1"]
        assert h.state.play_session_id == "session-2"
        assert h.state.item_id == "item-2"

    asyncio.run(scenario())


def test_seek_on_static_stream_stays_local():
    async def scenario():
        h = Harness()
        await h.load()
        target = 600 * TICKS_PER_SECOND

        assert await h.stream.handle(Seek(target))

        assert h.catalog.count("playback_info") == 1
        assert h.engine.last("seek") == 600.0
        assert h.state.position_ticks == target
        assert h.catalog.reported("progress")[-1]["PositionTicks"] == target

    asyncio.run(scenario())


def test_seek_on_transcode_renegotiates_once_and_keeps_session_id():
    async def scenario():
        h = Harness(playback_info(transcode_source()))
        await h.load()
        h.catalog.playback_info["PlaySessionId"] = "session-2"
        target = 600 * TICKS_PER_SECOND

        assert await h.stream.handle(Seek(target))

        assert h.catalog.count("playback_info") == 2
        assert h.catalog.last("playback_info")["start_ticks"] == target
        assert h.engine.count("load") == 2
        assert h.engine.count("seek") == 0
        assert f"StartTimeTicks={target}" in h.state.descriptor.url
        assert h.state.play_session_id == "session-1"

    asyncio.run(scenario())


def test_audio_change_renegotiates_exactly_once():
    async def scenario():
        h = Harness()
        await h.load()
        h.state.position_ticks = 42 * TICKS_PER_SECOND

        assert await h.stream.handle(ChangeAudioTrack(4))

        assert h.catalog.count("playback_info") == 2
        call = h.catalog.last("playback_info")
        assert call["audio_index"] == 4
        assert call["start_ticks"] == 42 * TICKS_PER_SECOND
        assert call["media_source_id"] == "src-1"
        assert h.engine.count("load") == 2
        assert h.state.audio_stream_index == 4

    asyncio.run(scenario())


def test_intents_during_renegotiation_are_rejected():
    async def scenario():
        h = Harness()
        await h.load()
        h.catalog.gate = asyncio.Event()

        change = asyncio.create_task(h.stream.handle(ChangeAudioTrack(4)))
        while not h.state.is_changing_stream:
            await asyncio.sleep(0)

        assert await h.stream.handle(Seek(5 * TICKS_PER_SECOND)) is False
        assert h.session.submit(ChangeSubtitleTrack(2)) is False

        h.catalog.gate.set()
        assert await change
        assert h.catalog.count("playback_info") == 2
        assert h.engine.count("load") == 2
        assert h.engine.count("seek") == 0
        assert h.state.stream_state is StreamState.IDLE

    asyncio.run(scenario())


def test_subtitles_off_while_burned_in_renegotiates():
    async def scenario():
        h = Harness(playback_info(transcode_source()))
        await h.load(subtitle_index=3)
        assert h.state.subtitle_stream_index == 3

        assert await h.stream.handle(ChangeSubtitleTrack(-1))

        assert h.catalog.count("playback_info") == 2
        assert h.catalog.last("playback_info")["subtitle_index"] == -1
        assert h.state.subtitle_stream_index == -1

    asyncio.run(scenario())


def test_subtitles_off_while_external_stays_local():
    async def scenario():
        h = Harness()
        await h.load(subtitle_index=2)

        assert await h.stream.handle(ChangeSubtitleTrack(None))

        assert h.catalog.count("playback_info") == 1
        assert h.engine.active_track is None
        assert h.state.subtitle_stream_index == -1

    asyncio.run(scenario())


def test_external_subtitle_is_activated_locally_with_style():
    async def scenario():
        h = Harness()
        h.session.subtitle_appearance = {"textSize": "large", "dropShadow": ""}
        await h.load()

        assert await h.stream.handle(ChangeSubtitleTrack(2))

        assert h.catalog.count("playback_info") == 1
        assert h.engine.active_track == 2
        assert h.engine.last("set_track_style").font_scale == 1.15
        assert h.state.subtitle_stream_index == 2

    asyncio.run(scenario())


def test_switching_away_from_burned_in_subtitles_renegotiates():
    async def scenario():
        h = Harness(playback_info(transcode_source()))
        await h.load(subtitle_index=3)

        assert await h.stream.handle(ChangeSubtitleTrack(2))

        assert h.catalog.count("playback_info") == 2
        assert h.catalog.last("playback_info")["subtitle_index"] == 2

    asyncio.run(scenario())


def test_unknown_subtitle_track_is_dropped():
    async def scenario():
        h = Harness()
        await h.load()

        assert await h.stream.handle(ChangeSubtitleTrack(9)) is False

        assert h.catalog.count("playback_info") == 1
        assert h.engine.count("set_active_track") == 0
        assert not h.ws.of_type("playbackerror")

    asyncio.run(scenario())


def test_intents_without_loaded_item_are_ignored():
    async def scenario():
        h = Harness()
        assert await h.stream.handle(Seek(0)) is False
        assert await h.stream.handle(ChangeAudioTrack(1)) is False
        assert h.catalog.count("playback_info") == 0

    asyncio.run(scenario())


@pytest.mark.parametrize("info, code", [
    ({"ErrorCode": "NotAllowed"}, "NotAllowed"),
    (playback_info(), "NoCompatibleSource"),
    (playback_info(direct_play_source(Container="wmv", SupportsDirectStream=False,
                                      SupportsTranscoding=False)),
     "NoCompatibleStream"),
])
def test_failed_renegotiation_keeps_previous_stream(info, code):
    async def scenario():
        h = Harness()
        await h.load()
        previous = h.state.descriptor
        h.catalog.playback_info = info

        assert await h.stream.handle(ChangeAudioTrack(4)) is False

        assert h.ws.of_type("playbackerror") == [{"type": "playbackerror", "message": code}]
        assert h.state.stream_state is StreamState.IDLE
        assert h.state.descriptor is previous
        assert h.state.audio_stream_index == 1
        assert h.engine.count("load") == 1

    asyncio.run(scenario())


def test_catalog_failure_is_reported_as_connection_error():
    async def scenario():
        h = Harness()
        await h.load()
        h.catalog.error = CatalogError("POST Items/item-1/PlaybackInfo timed out")

        assert await h.stream.handle(ChangeAudioTrack(4)) is False

        errors = h.ws.of_type("connectionerror")
        assert errors and "timed out" in errors[0]["message"]
        assert h.state.stream_state is StreamState.IDLE
        assert not h.state.is_changing_stream

        h.catalog.error = None
        assert await h.stream.handle(ChangeAudioTrack(4))

    asyncio.run(scenario())


def test_engine_failure_still_clears_negotiating_state():
    async def scenario():
        h = Harness()
        await h.load()

        async def broken_load(descriptor):
            raise RuntimeError("mpv exited immediately")

        h.engine.load = broken_load
        with pytest.raises(RuntimeError):
            await h.stream.handle(ChangeAudioTrack(4))
        assert h.state.stream_state is StreamState.IDLE

    asyncio.run(scenario())


def test_encodings_are_stopped_before_replacing_a_transcode():
    async def scenario():
        h = Harness(playback_info(transcode_source()), stop_encodings_before_load=True)
        await h.load()
        assert h.catalog.count("stop_encodings") == 0

        assert await h.stream.handle(ChangeAudioTrack(4))

        assert h.catalog.last("stop_encodings") == "session-1"
        names = [name for name, _ in h.engine.calls]
        assert names.index("pause") < len(names) - 1 - names[::-1].index("load")

    asyncio.run(scenario())


def test_invalid_transition_raises():
    h = Harness()
    with pytest.raises(InvalidTransitionError):
        h.stream._transition(StreamState.LOADED)


@pytest.mark.parametrize("source", [direct_play_source, transcode_source])
def test_audio_change_always_reloads(source):
    async def scenario():
        h = Harness(playback_info(source()))
        await h.load()

        assert await h.stream.handle(ChangeAudioTrack(1))

        assert h.catalog.count("playback_info") == 2
        assert h.engine.count("load") == 2

    asyncio.run(scenario())
