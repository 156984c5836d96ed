import pytest

from aniwatch.core import presence as presence_module
from aniwatch.core.errors import PresenceError
from aniwatch.core.presence import PresenceClient, PresenceImages


class FakeRPC:
    instances = []
    fail_updates_left = 0

    def __init__(self, client_id):
        self.client_id = client_id
        self.updates = []
        self.cleared = False
        FakeRPC.instances.append(self)

    async def connect(self):
        pass

    async def update(self, **kwargs):
        if FakeRPC.fail_updates_left > 0:
            FakeRPC.fail_updates_left -= 1
            raise BrokenPipeError("pipe closed")
        self.updates.append(kwargs)

    async def clear(self):
        self.cleared = True


@pytest.fixture
def rpc(monkeypatch):
    FakeRPC.instances = []
    FakeRPC.fail_updates_left = 0
    monkeypatch.setattr(presence_module, "AioPresence", FakeRPC)
    return FakeRPC


IMAGES = PresenceImages(large_image="aniwatch", large_text="Test Anime", small_image="openanime", small_text="OpenAnime")


def test_images_fallback():
    images = PresenceImages.for_series("Test Anime", "not-a-url", "OpenAnime")
    assert images.large_image == "aniwatch"
    assert images.small_image == "openanime"
    images = PresenceImages.for_series("Test Anime", "https://example.com/p.png", "AnimeciX")
    assert images.large_image == "https://example.com/p.png"


@pytest.mark.asyncio
async def test_set_status_connects_lazily(rpc):
    client = PresenceClient(client_id="123", button_label="Get it", button_url="https://example.com")
    await client.set_status("Test Anime", "1. Bölüm (00:10 / 24:00)", IMAGES, timestamp_start=1000.5)

    assert len(rpc.instances) == 1
    update = rpc.instances[0].updates[0]
    assert update["details"] == "Test Anime"
    assert update["start"] == 1000
    assert update["large_image"] == "aniwatch"
    assert update["buttons"] == [{"label": "Get it", "url": "https://example.com"}]

    await client.set_status("Test Anime", "again", IMAGES)
    assert len(rpc.instances) == 1


@pytest.mark.asyncio
async def test_set_status_reconnects_once(rpc):
    rpc.fail_updates_left = 1
    client = PresenceClient(client_id="123")
    await client.set_status("Test Anime", "state", IMAGES)
    assert len(rpc.instances) == 2
    assert rpc.instances[1].updates


@pytest.mark.asyncio
async def test_set_status_gives_up_after_retry(rpc):
    rpc.fail_updates_left = 2
    client = PresenceClient(client_id="123")
    with pytest.raises(PresenceError):
        await client.set_status("Test Anime", "state", IMAGES)
    assert not client.connected


@pytest.mark.asyncio
async def test_connect_failure(monkeypatch):
    class Refusing(FakeRPC):
        async def connect(self):
            raise ConnectionRefusedError("no ipc socket")

    monkeypatch.setattr(presence_module, "AioPresence", Refusing)
    client = PresenceClient(client_id="123")
    with pytest.raises(PresenceError):
        await client.set_status("Test Anime", "state", IMAGES)
    assert client.rpc is None


@pytest.mark.asyncio
async def test_logout_clears_and_is_repeatable(rpc):
    client = PresenceClient(client_id="123")
    await client.set_status("Test Anime", "state", IMAGES)
    first = rpc.instances[0]

    await client.logout()
    await client.logout()

    assert first.cleared
    assert client.rpc is None
    assert not client.connected
