import pytest

from tacli.models import (
    NO_FANSUB,
    AcquisitionRequest,
    Episode,
    FansubChoice,
    PlaybackSession,
    WatchHistoryEntry,
)


def test_episode_url_adds_scheme():
    assert Episode("A", "//host/video/a").url == "https://host/video/a"
    assert Episode("A", "https://host/video/a").url == "https://host/video/a"


def test_fansub_from_onclick():
    assert FansubChoice.from_onclick(" Subs ", "IndexIcerik('abc','videodetay')") == FansubChoice("Subs", "abc")
    assert FansubChoice.from_onclick("Plain", None) == FansubChoice("Plain", NO_FANSUB)


def test_next_request_carries_label_as_token(episodes):
    req = AcquisitionRequest.for_episode(episodes, 0, FansubChoice("FansubA", "tok"), resume_position=300, title_id="9")
    nxt = req.next_request()

    assert nxt.episode_index == 1
    assert nxt.episode_link == episodes[1].url
    assert nxt.episode_title == episodes[1].title
    assert nxt.fansub_token == "FansubA"
    assert nxt.fansub_label == "FansubA"
    assert nxt.resume_position == 0
    assert nxt.title_id == "9"
    assert nxt.episodes is req.episodes
    assert nxt.rediscover_token
    assert not req.rediscover_token


def test_last_episode_has_no_next(episodes):
    req = AcquisitionRequest.for_episode(episodes, 2, FansubChoice(NO_FANSUB))
    assert not req.has_next
    assert req.next_episode is None
    with pytest.raises(IndexError):
        req.next_request()


def test_no_fansub_never_rediscovers(episodes):
    req = AcquisitionRequest.for_episode(episodes, 0, FansubChoice(NO_FANSUB)).next_request()
    assert req.fansub_token == NO_FANSUB
    assert not req.rediscover_token


def test_as_background_keeps_everything_else(episodes):
    req = AcquisitionRequest.for_episode(episodes, 1, FansubChoice("A", "t"))
    bg = req.as_background()
    assert bg.background and not req.background
    assert bg.episode_link == req.episode_link


def test_history_entry_from_session(episodes):
    req = AcquisitionRequest.for_episode(episodes, 1, FansubChoice("A", "t"), title_id="5", title_name="Test Anime")
    entry = WatchHistoryEntry.from_session(PlaybackSession("s", req, 10, 250))
    assert (entry.anime_id, entry.title, entry.episode_index, entry.fansub_name, entry.position) == ("5", "Test Anime", 1, "A", 250)
    assert entry.timestamp > 1_600_000_000_000


def test_history_entry_dict():
    entry = WatchHistoryEntry("5", "T", 1, "T 2", timestamp=1700000000000, fansub_name="A", position=42)
    assert WatchHistoryEntry.from_dict(entry.to_dict()) == entry
    assert WatchHistoryEntry.from_dict({"animeId": 5}).position == 0
