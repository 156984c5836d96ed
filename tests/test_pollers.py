import asyncio

import pytest

from aniwatch.core.errors import HistoryStoreError, IPCError
from aniwatch.core.pollers import HistoryPoller, NowPlaying, PresencePoller
from aniwatch.core.presence import PresenceImages
from aniwatch.database.history import HistoryStore

from fakes import FakeHandle, FakePresence

NOW_PLAYING = NowPlaying(source="animecix", series_name="Test Anime", series_id="42",
                         episode_idx=4, episode_title="5. Bölüm")
IMAGES = PresenceImages(large_image="aniwatch", large_text="Test Anime")


class FlakyStore:
    """Fails the first ``failures`` writes."""

    def __init__(self, failures=1):
        self.failures = failures
        self.records = []

    async def record(self, source, series_name, entry):
        if self.failures > 0:
            self.failures -= 1
            raise HistoryStoreError("disk full")
        self.records.append((source, series_name, entry))


class SilentHandle(FakeHandle):
    async def get_duration(self):
        raise IPCError("mpv did not answer")


@pytest.mark.asyncio
async def test_history_commits_once(tmp_path):
    store = HistoryStore(tmp_path / "history.json")
    handle = FakeHandle(duration=1440.0, position=1200.0)
    poller = HistoryPoller(handle, asyncio.Event(), store, NOW_PLAYING, interval=0.01, threshold=300)

    task = asyncio.create_task(poller.run())
    await asyncio.sleep(0.05)
    first = await store.get("animecix", "Test Anime")
    handle.position = 1400.0
    await asyncio.sleep(0.05)
    handle.alive = False
    await asyncio.wait_for(task, 1)

    assert poller.committed
    assert poller.ticks > 2
    second = await store.get("animecix", "Test Anime")
    assert second.last_watched == first.last_watched
    assert second.last_episode_idx == 4


@pytest.mark.asyncio
async def test_history_not_written_early():
    store = FlakyStore(failures=0)
    handle = FakeHandle(duration=1440.0, position=1139.0)
    poller = HistoryPoller(handle, asyncio.Event(), store, NOW_PLAYING, interval=0.01, threshold=300)

    assert await poller.tick()
    assert store.records == []

    handle.position = 1140.0
    assert await poller.tick()
    assert len(store.records) == 1


@pytest.mark.asyncio
async def test_history_skips_unknown_duration():
    store = FlakyStore(failures=0)
    poller = HistoryPoller(FakeHandle(duration=0.0, position=10.0), asyncio.Event(), store, NOW_PLAYING)
    assert await poller.tick()
    poller = HistoryPoller(SilentHandle(), asyncio.Event(), store, NOW_PLAYING)
    assert await poller.tick()
    assert store.records == []


@pytest.mark.asyncio
async def test_history_retries_failed_write_on_stop():
    store = FlakyStore(failures=1)
    poller = HistoryPoller(FakeHandle(position=1400.0), asyncio.Event(), store, NOW_PLAYING)

    await poller.tick()
    assert poller.pending and not poller.committed

    await poller.on_stop()
    assert poller.committed
    assert len(store.records) == 1


@pytest.mark.asyncio
async def test_stop_event_ends_poller_quickly():
    stop = asyncio.Event()
    poller = HistoryPoller(FakeHandle(), stop, FlakyStore(0), NOW_PLAYING, interval=60)
    task = asyncio.create_task(poller.run())
    await asyncio.sleep(0)
    stop.set()
    await asyncio.wait_for(task, 1)
    assert poller.ticks == 0


@pytest.mark.asyncio
async def test_poller_stops_when_player_is_gone():
    poller = HistoryPoller(FakeHandle(alive=False), asyncio.Event(), FlakyStore(0), NOW_PLAYING, interval=0.01)
    await asyncio.wait_for(poller.run(), 1)
    assert poller.ticks == 1


@pytest.mark.asyncio
async def test_presence_state_and_logout():
    presence = FakePresence()
    handle = FakeHandle(duration=1440.0, position=75.0, paused=True)
    poller = PresencePoller(handle, asyncio.Event(), presence, NOW_PLAYING, IMAGES,
                            started_at=1000.0, interval=0.01)

    assert await poller.tick()
    assert poller.last_state == "5. Bölüm (01:15 / 24:00 (Paused))"
    details, state, images, start = presence.updates[0]
    assert details == "Test Anime"
    assert images is IMAGES
    assert start == 1000.0

    handle.finish()
    await asyncio.wait_for(poller.run(), 1)
    assert presence.logouts == 1


@pytest.mark.asyncio
async def test_presence_errors_are_swallowed():
    poller = PresencePoller(FakeHandle(), asyncio.Event(), FakePresence(fail=True), NOW_PLAYING, IMAGES)
    assert await poller.tick()
    assert poller.last_state is None
