"""
Search, episode lists and fansub choices scraped from the site.
"""

import asyncio
import re
from typing import List, Optional

import aiohttp
from bs4 import BeautifulSoup

from .config import SITE_URL
from .models import Episode, FansubChoice, SearchResult
from .utils import fetch_text, new_session, post_form

_ANIME_ID = re.compile(r"animeId=(\d+)")


def parse_search(html: str) -> List[SearchResult]:
    """Search result panels, de-duplicated by title."""
    soup = BeautifulSoup(html, "html.parser")
    results, seen = [], set()
    for panel in soup.select("#orta-icerik .panel-body"):
        link = panel.select_one(".media-heading a")
        button = panel.select_one(".btn-def.reactions")
        title = link.get_text(strip=True) if link else ""
        anime_id = button.get("data-unique-id") if button else None
        if title and anime_id and title not in seen:
            results.append(SearchResult(title, str(anime_id)))
            seen.add(title)
    return results


def parse_redirect_path(html: str) -> Optional[str]:
    """Title path the site redirects to when a search has a single hit."""
    soup = BeautifulSoup(html, "html.parser")
    script = soup.select_one("#orta-icerik script")
    text = script.string if script else None
    if not text or "=" not in text:
        return None
    path = re.sub(r"['\";]", "", text.split("=", 1)[1]).strip()
    return path or None


def parse_anime_id(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    active = soup.select_one("div.panel-menu #aktif-sekme li.active a")
    if active is None:
        return None
    m = _ANIME_ID.search(active.get("data-url") or "")
    return m.group(1) if m else None


def parse_episodes(html: str) -> List[Episode]:
    soup = BeautifulSoup(html, "html.parser")
    episodes = []
    for item in soup.select("#bolumler #bolum-list .menum li"):
        name = item.select_one(".bolumAdi")
        links = item.find_all("a")
        title = name.get_text(strip=True) if name else ""
        href = links[1].get("href") if len(links) > 1 else None
        if title and href:
            episodes.append(Episode(title, href, len(episodes)))
    return episodes


def parse_fansubs(html: str) -> List[FansubChoice]:
    soup = BeautifulSoup(html, "html.parser")
    return [
        FansubChoice.from_onclick(b.get_text(strip=True), b.get("onclick"))
        for b in soup.select(".pull-right button")
    ]


class Catalog:
    """Read-only view of the site's titles and episodes."""

    def __init__(self, base_url: str = SITE_URL, session: Optional[aiohttp.ClientSession] = None, log_fn=print):
        self.base_url = base_url.rstrip("/")
        self.log_fn = log_fn
        self._session = session
        self._owned = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = new_session()
        return self._session

    async def close(self):
        if self._owned and self._session is not None:
            await self._session.close()
        self._session = None

    async def search(self, query: str) -> Optional[List[SearchResult]]:
        try:
            html = await post_form(self.session, f"{self.base_url}/arama", {"arama": query})
            results = parse_search(html)
            if results:
                return results

            path = parse_redirect_path(html)
            if not path:
                return None
            url = f"{self.base_url}/{path.lstrip('/')}"
            self.log_fn(f"Alternative URL: {url}")
            anime_id = parse_anime_id(await fetch_text(self.session, url))
            if not anime_id:
                self.log_fn("[Warning] Anime ID not found in panel menu.")
                return None
            title = path.rstrip("/").split("/")[-1] or "Unknown Anime"
            return [SearchResult(title, anime_id)]
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.log_fn(f"[ERROR] {e}")
            return None

    async def episodes(self, anime_id: str) -> Optional[List[Episode]]:
        url = f"{self.base_url}/ajax/bolumler?animeId={anime_id}"
        try:
            html = await fetch_text(self.session, url, {"X-Requested-With": "XMLHttpRequest"})
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.log_fn(f"[ERROR] {e}")
            return None
        return parse_episodes(html) or None

    async def fansubs(self, episode: Episode) -> List[FansubChoice]:
        try:
            html = await fetch_text(self.session, episode.url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.log_fn(f"[ERROR] {e}")
            return []
        return parse_fansubs(html)
