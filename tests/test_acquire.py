from tacli.acquire import Orchestrator
from tacli.hls import MASTER_NAME, is_complete_manifest
from tacli.models import AcquisitionRequest, FansubChoice, Outcome

from conftest import FakeCoordinator, FakeLocator, slug


def request_for(episodes, index=0, **kwargs):
    return AcquisitionRequest.for_episode(episodes, index, FansubChoice("FansubA", "tok"), title_id="42", title_name="Test Anime", **kwargs)


def orchestrator(settings, locator, sessions, coordinator=None):
    return Orchestrator(settings, locator, coordinator or FakeCoordinator(), session_factory=sessions)


async def test_foreground_fetches_rewrites_and_plays(settings, episodes, locator, download_sessions):
    coordinator = FakeCoordinator()
    orch = orchestrator(settings, locator, download_sessions, coordinator)

    outcome = await orch.acquire(request_for(episodes))

    assert outcome is Outcome.STOPPED
    s = slug(episodes[0].title)
    master = settings.cache_dir / s / MASTER_NAME
    assert is_complete_manifest(master)
    lines = master.read_text().splitlines()
    assert f"{settings.base_url}/downloads/{s}/360.m3u8" in lines
    assert f"{settings.base_url}/downloads/{s}/720.m3u8" in lines
    assert (settings.cache_dir / s / "360.m3u8").exists()
    assert (settings.cache_dir / s / "720.m3u8").exists()
    assert [p for p, _ in coordinator.played] == [s]
    assert locator.calls == [(episodes[0].url, "tok", "FansubA", False)]


async def test_sequential_acquisitions_fetch_once(settings, episodes, locator, download_sessions):
    coordinator = FakeCoordinator()
    orch = orchestrator(settings, locator, download_sessions, coordinator)

    for _ in range(4):
        await orch.acquire(request_for(episodes))

    assert orch.fetch_count == 1
    assert len(locator.calls) == 1
    assert len(download_sessions.pages) == 1
    assert len(coordinator.played) == 4


async def test_background_cache_hit_is_a_no_op(settings, episodes, locator, download_sessions):
    coordinator = FakeCoordinator()
    orch = orchestrator(settings, locator, download_sessions, coordinator)
    req = request_for(episodes).as_background()

    assert await orch.acquire(req) is Outcome.CACHED
    assert await orch.acquire(req) is Outcome.CACHED

    assert len(locator.calls) == 1
    assert coordinator.played == []


async def test_not_found_writes_nothing(settings, episodes, download_sessions, capsys):
    locator = FakeLocator(found=False)
    coordinator = FakeCoordinator()
    orch = orchestrator(settings, locator, download_sessions, coordinator)

    assert await orch.acquire(request_for(episodes)) is Outcome.FAILED

    assert not (settings.cache_dir / slug(episodes[0].title)).exists()
    assert coordinator.played == []
    assert download_sessions.pages == []
    assert "no stream found" in capsys.readouterr().out


async def test_background_failure_is_silent(settings, episodes, download_sessions, capsys):
    orch = orchestrator(settings, FakeLocator(found=False), download_sessions)
    assert await orch.acquire(request_for(episodes).as_background()) is Outcome.FAILED
    assert capsys.readouterr().out == ""


async def test_partial_master_is_not_a_cache_hit(settings, episodes, locator, download_sessions):
    s = slug(episodes[0].title)
    (settings.cache_dir / s).mkdir(parents=True)
    (settings.cache_dir / s / MASTER_NAME).write_text("")
    orch = orchestrator(settings, locator, download_sessions)

    await orch.acquire(request_for(episodes))

    assert len(locator.calls) == 1
    assert is_complete_manifest(settings.cache_dir / s / MASTER_NAME)


async def test_manifest_timeout_fails_without_cache(settings, episodes, locator):
    from contextlib import asynccontextmanager

    class SilentPage:
        def once(self, event, fn):
            pass

        def remove_listener(self, event, fn):
            pass

        async def goto(self, url, **kwargs):
            return None

    @asynccontextmanager
    async def sessions(settings, **kwargs):
        yield None, None, SilentPage()

    settings.manifest_timeout = 0.05
    orch = orchestrator(settings, locator, sessions)

    assert await orch.acquire(request_for(episodes)) is Outcome.FAILED
    assert not (settings.cache_dir / slug(episodes[0].title) / MASTER_NAME).exists()
