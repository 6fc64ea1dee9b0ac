"""
Discord Rich Presence: "now watching" status. Best effort only; nothing here
may ever block or break playback.
"""

import asyncio
import inspect
import re

import aiohttp
from pypresence import AioPresence
from pypresence.exceptions import PyPresenceException

from .config import GITHUB_URL

_TRAILING_NUMBER = re.compile(r"\d+$")


def activity_for(episode_title: str, episode_url: str) -> dict:
    """Presence fields for an episode title like ``"One Piece 1071"``."""
    m = _TRAILING_NUMBER.search(episode_title)
    return {
        "details": f"Watching {_TRAILING_NUMBER.sub('', episode_title).strip()}",
        "state": f"Episode {m.group(0) if m else 'Unknown'}",
        "large_image": "ads_z",
        "large_text": "Turk Ani Cli",
        "buttons": [
            {"label": "GitHub Project", "url": GITHUB_URL},
            {"label": "Watch Episode", "url": episode_url},
        ],
    }


class PresenceNotifier:
    def __init__(self, client_id: str, catalog, enabled: bool = True):
        self.client_id = client_id
        self.catalog = catalog
        self.enabled = enabled
        self._rpc = None

    async def _connect(self):
        if self._rpc is None:
            rpc = AioPresence(self.client_id)
            await rpc.connect()
            self._rpc = rpc
        return self._rpc

    async def now_watching(self, anime_id: str, index: int):
        """Look up the episode and publish it. Failures are ignored."""
        if not self.enabled:
            return
        try:
            episodes = await self.catalog.episodes(anime_id)
            if not episodes or index >= len(episodes):
                return
            episode = episodes[index]
            rpc = await self._connect()
            await rpc.update(**activity_for(episode.title, episode.url))
        except (PyPresenceException, OSError, asyncio.TimeoutError, aiohttp.ClientError):
            # Discord not running; try again on the next episode
            self._rpc = None

    async def close(self):
        rpc, self._rpc = self._rpc, None
        if rpc is None:
            return
        try:
            result = rpc.close()
            if inspect.isawaitable(result):
                await result
        except (PyPresenceException, OSError):
            pass
