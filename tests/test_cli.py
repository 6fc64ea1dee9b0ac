import aiohttp
import pytest

from tacli import cli
from tacli.app import AppContext
from tacli.history import WatchHistory
from tacli.models import NO_FANSUB, Episode, FansubChoice, Outcome, SearchResult, WatchHistoryEntry

from conftest import FakeLocator


def answers(*values):
    it = iter(values)
    return lambda prompt="": next(it)


def test_choose_index_single_option_needs_no_input():
    def no_input(prompt=""):
        raise AssertionError("prompted")

    assert cli.choose_index("Pick", ["only"], no_input) == 0


def test_choose_index_retries_until_valid(capsys):
    assert cli.choose_index("Pick", ["a", "b", "c"], answers("", "x", "9", "2")) == 1
    out = capsys.readouterr().out
    assert "Please enter a valid number." in out
    assert "Please enter a number between 1 and 3" in out


def test_pick_fansub_without_options():
    assert cli.pick_fansub([]) == FansubChoice(NO_FANSUB, NO_FANSUB)


def test_format_entry():
    entry = WatchHistoryEntry("1", "Naruto", 0, "Naruto 1", timestamp=0, fansub_name="A", position=125)
    assert cli.format_entry(1, entry) == "  1. Naruto - Naruto 1 [A] at 02:05 (?)"


class FakeCatalog:
    def __init__(self, episodes):
        self._episodes = list(episodes)

    async def search(self, query):
        return [SearchResult("Test Anime", "42"), SearchResult("Test Anime Movie", "43")]

    async def episodes(self, anime_id):
        return self._episodes

    async def fansubs(self, episode):
        return [FansubChoice("FansubA", "tokA"), FansubChoice("FansubB", "tokB")]

    async def close(self):
        pass


class RecordingOrchestrator:
    def __init__(self):
        self.requests = []

    async def acquire(self, request):
        self.requests.append(request)
        return Outcome.STOPPED


@pytest.fixture
def ctx(settings, episodes):
    ctx = AppContext.create(settings, catalog=FakeCatalog(episodes), locator=FakeLocator())
    ctx.orchestrator = RecordingOrchestrator()
    return ctx


async def test_watch_builds_request_from_choices(ctx, episodes):
    outcome = await cli.watch(ctx, "test", answers("1", "2", "2"))

    assert outcome is Outcome.STOPPED
    (req,) = ctx.orchestrator.requests
    assert req.episode_index == 1
    assert req.episode_link == episodes[1].url
    assert req.episodes == episodes
    assert (req.fansub_label, req.fansub_token) == ("FansubB", "tokB")
    assert (req.title_id, req.title_name) == ("42", "Test Anime")
    assert not req.background
    await ctx.close()


async def test_watch_without_results(ctx):
    async def nothing(query):
        return None

    ctx.catalog.search = nothing
    assert await cli.watch(ctx, "zzz", answers()) is Outcome.FAILED
    assert ctx.orchestrator.requests == []
    await ctx.close()


async def test_resume_last_uses_saved_position(ctx, episodes):
    ctx.history.save(WatchHistoryEntry("42", "Test Anime", 1, episodes[1].title, fansub_name="FansubA", position=300))

    assert await cli.resume_last(ctx) is Outcome.STOPPED

    (req,) = ctx.orchestrator.requests
    assert req.episode_index == 1
    assert req.resume_position == 300
    assert req.fansub_token == "FansubA"
    assert req.rediscover_token
    await ctx.close()


async def test_resume_last_clamps_to_available_episodes(ctx, episodes):
    ctx.history.save(WatchHistoryEntry("42", "Test Anime", 9, "gone", fansub_name="FansubA", position=300))

    await cli.resume_last(ctx)

    (req,) = ctx.orchestrator.requests
    assert req.episode_index == len(episodes) - 1
    assert req.resume_position == 0
    await ctx.close()


async def test_resume_without_history(ctx, capsys):
    assert await cli.resume_last(ctx) is Outcome.FAILED
    assert "No watch history yet." in capsys.readouterr().out
    await ctx.close()


async def test_run_history_listing(settings, capsys):
    history = WatchHistory(settings.history_path, log_fn=lambda *a: None)
    history.save(WatchHistoryEntry("1", "Naruto", 0, "Naruto 1", fansub_name="A"))
    history.save(WatchHistoryEntry("2", "Bleach", 3, "Bleach 4", fansub_name="B"))
    args = cli.build_argparser().parse_args(["--history", "--limit", "1"])

    assert await cli.run(args, settings) == 0

    out = capsys.readouterr().out
    assert "Bleach - Bleach 4" in out
    assert "Naruto" not in out


async def test_run_clear_history(settings):
    history = WatchHistory(settings.history_path, log_fn=lambda *a: None)
    history.save(WatchHistoryEntry("1", "Naruto", 0, "Naruto 1"))
    args = cli.build_argparser().parse_args(["--clear-history"])

    assert await cli.run(args, settings) == 0
    assert not settings.history_path.exists()


def test_main_reports_interrupt(monkeypatch, capsys):
    async def interrupted(args, settings, input_fn=input):
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "run", interrupted)
    with pytest.raises(SystemExit) as exc:
        cli.main(["--history"])
    assert exc.value.code == 130
    assert "Interrupted." in capsys.readouterr().out


async def test_update_notice_is_silent_when_offline(monkeypatch, capsys):
    from tacli import update

    class OfflineSession:
        def get(self, url, **kwargs):
            raise aiohttp.ClientConnectionError("network is unreachable")

        async def close(self):
            pass

    monkeypatch.setattr(update, "new_session", OfflineSession)
    await cli.notify_update()
    assert capsys.readouterr().out == ""


def test_main_entry_point_runs_a_command(monkeypatch, tmp_path, capsys):
    path = tmp_path / "watch-history.json"
    WatchHistory(path, log_fn=lambda *a: None).save(WatchHistoryEntry("1", "Naruto", 0, "Naruto 1", fansub_name="A"))
    monkeypatch.setenv("TACLI_HISTORY_PATH", str(path))

    with pytest.raises(SystemExit) as exc:
        cli.main(["--history"])

    assert exc.value.code == 0
    assert "Naruto - Naruto 1 [A]" in capsys.readouterr().out
