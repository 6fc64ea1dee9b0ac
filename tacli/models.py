import enum
import re
import time
from dataclasses import dataclass, field, replace, asdict
from typing import Optional, Tuple

NO_FANSUB = "null"

_QUOTED = re.compile(r"'([^']+)'")


class Outcome(enum.Enum):
    """Result of an acquisition: played to a stop, cached only, or failed."""

    STOPPED = "stopped"
    CACHED = "cached"
    FAILED = "failed"


@dataclass(frozen=True)
class SearchResult:
    title: str
    anime_id: str


@dataclass(frozen=True)
class Episode:
    """One entry of a title's ordered episode list."""

    title: str
    link: str
    index: int = 0

    @property
    def url(self) -> str:
        if self.link.startswith("//"):
            return "https:" + self.link
        return self.link


@dataclass(frozen=True)
class FansubChoice:
    label: str
    token: str = NO_FANSUB

    @classmethod
    def from_onclick(cls, label: str, onclick: Optional[str]) -> "FansubChoice":
        """Build a choice from a selector button's onclick action."""
        m = _QUOTED.search(onclick or "")
        return cls(label.strip(), m.group(1) if m else NO_FANSUB)


@dataclass(frozen=True)
class AcquisitionRequest:
    """Everything one acquisition attempt needs; passed by value."""

    episode_link: str
    fansub_token: str
    episode_title: str
    episode_index: int
    episodes: Tuple[Episode, ...]
    fansub_label: str = NO_FANSUB
    background: bool = False
    resume_position: int = 0
    title_id: Optional[str] = None
    title_name: Optional[str] = None

    @classmethod
    def for_episode(cls, episodes, index: int, fansub: FansubChoice, **kwargs) -> "AcquisitionRequest":
        episodes = tuple(episodes)
        ep = episodes[index]
        return cls(
            episode_link=ep.url,
            fansub_token=fansub.token,
            episode_title=ep.title,
            episode_index=index,
            episodes=episodes,
            fansub_label=fansub.label,
            **kwargs,
        )

    @property
    def has_next(self) -> bool:
        return self.episode_index + 1 < len(self.episodes)

    @property
    def next_episode(self) -> Optional[Episode]:
        if not self.has_next:
            return None
        return self.episodes[self.episode_index + 1]

    def next_request(self) -> "AcquisitionRequest":
        """Request for the following episode.

        Only the fansub label is known for the next page, so the label doubles
        as the token and the locator re-discovers the real token.
        """
        ep = self.next_episode
        if ep is None:
            raise IndexError("no episode after index %d" % self.episode_index)
        return replace(
            self,
            episode_link=ep.url,
            fansub_token=self.fansub_label,
            episode_title=ep.title,
            episode_index=self.episode_index + 1,
            resume_position=0,
        )

    def as_background(self) -> "AcquisitionRequest":
        return replace(self, background=True)

    @property
    def rediscover_token(self) -> bool:
        return self.fansub_label != NO_FANSUB and self.fansub_token == self.fansub_label


@dataclass
class PlaybackSession:
    slug: str
    request: AcquisitionRequest
    start_position: int = 0
    live_position: int = 0


@dataclass
class WatchHistoryEntry:
    anime_id: str
    title: str
    episode_index: int
    episode_title: str
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))
    fansub_name: str = NO_FANSUB
    position: int = 0

    def to_dict(self) -> dict:
        d = asdict(self)
        # camelCase keys: the on-disk format predates this package
        return {
            "animeId": d["anime_id"],
            "title": d["title"],
            "episodeIndex": d["episode_index"],
            "episodeTitle": d["episode_title"],
            "timestamp": d["timestamp"],
            "fansubName": d["fansub_name"],
            "position": d["position"],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "WatchHistoryEntry":
        return cls(
            anime_id=str(d.get("animeId", "")),
            title=d.get("title") or "",
            episode_index=int(d.get("episodeIndex") or 0),
            episode_title=d.get("episodeTitle") or "",
            timestamp=int(d.get("timestamp") or 0),
            fansub_name=d.get("fansubName") or NO_FANSUB,
            position=int(d.get("position") or 0),
        )

    @classmethod
    def from_session(cls, session: PlaybackSession) -> "WatchHistoryEntry":
        req = session.request
        return cls(
            anime_id=req.title_id,
            title=req.title_name or "",
            episode_index=req.episode_index,
            episode_title=req.episode_title,
            fansub_name=req.fansub_label,
            position=session.live_position,
        )
