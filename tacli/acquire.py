"""
Per-episode acquisition: cache check, stream discovery, playlist download and
rewrite, then hand-off to playback.

The cache directory is the only index. An episode counts as acquired once
``<cache_dir>/<slug>/master.m3u8`` is a complete playlist, and that file is
always written last, with an atomic rename.
"""

import asyncio
import os
from pathlib import Path
from typing import Callable

from playwright.async_api import Error as PlaywrightError

from .browser import browser_session
from .config import Settings
from .errors import FilesystemError, ManifestTimeout, NotFound, PartialCache
from .hls import SOURCE_NAME, fetch_manifest, is_complete_manifest, master_path, rewrite_master
from .models import AcquisitionRequest, Outcome
from .utils import ensure_dir, quiet, sanitize_filename


class Orchestrator:
    """Top-level flow for one episode, foreground or background.

    Foreground acquisitions end in playback and return its outcome;
    background ones only fill the cache and return ``Outcome.CACHED``.
    Failures never raise: the foreground prints one line, the background
    stays silent, and both return ``Outcome.FAILED``.
    """

    def __init__(self, settings: Settings, locator, coordinator, session_factory=browser_session):
        self.settings = settings
        self.locator = locator
        self.coordinator = coordinator
        self.session_factory = session_factory
        self.fetch_count = 0

    def slug_for(self, request: AcquisitionRequest) -> str:
        return sanitize_filename(request.episode_title)

    def is_cached(self, slug: str) -> bool:
        return is_complete_manifest(master_path(self.settings.cache_dir, slug))

    async def acquire(self, request: AcquisitionRequest) -> Outcome:
        log_fn = quiet if request.background else print
        slug = self.slug_for(request)

        if self.is_cached(slug):
            log_fn("Stream data already exists. Opening existing stream...")
            return await self._hand_off(slug, request)

        try:
            await self.fetch(slug, request, log_fn)
        except asyncio.CancelledError:
            raise
        except NotFound:
            log_fn(f"Error: no stream found for {request.episode_title}")
            return Outcome.FAILED
        except (ManifestTimeout, FilesystemError, PartialCache, PlaywrightError) as e:
            log_fn(f"Download error: {e}")
            return Outcome.FAILED
        return await self._hand_off(slug, request)

    async def _hand_off(self, slug: str, request: AcquisitionRequest) -> Outcome:
        if request.background:
            return Outcome.CACHED
        return await self.coordinator.play(slug, request)

    async def fetch(self, slug: str, request: AcquisitionRequest, log_fn: Callable = print) -> Path:
        """Run discovery, download and rewrite for ``slug``; returns the master path.

        Raises:
            NotFound: if no stream URL could be discovered
            ManifestTimeout: if a playlist download never lands
        """
        self.fetch_count += 1
        stream_url = await self.locator.locate(
            request.episode_link,
            request.fansub_token,
            request.fansub_label,
            request.background,
        )
        if not stream_url:
            raise NotFound(request.episode_title)

        s = self.settings
        slug_dir = ensure_dir(s.cache_dir / slug)
        log_fn("Starting download process for URL: " + stream_url)
        async with self.session_factory(s, accept_downloads=True) as (_browser, _context, page):
            raw = await fetch_manifest(
                page, stream_url, slug_dir, s.manifest_timeout,
                rename=False, interval=s.manifest_poll, log_fn=log_fn,
            )
            source = slug_dir / SOURCE_NAME
            try:
                os.replace(raw, source)
            except OSError as e:
                raise FilesystemError(f"Cannot move {raw}: {e}") from e
            log_fn("Download completed: " + str(source))

            async def fetch_sub(url: str, out_dir: Path) -> Path:
                return await fetch_manifest(
                    page, url, out_dir, s.manifest_timeout,
                    rename=True, interval=s.manifest_poll, log_fn=log_fn,
                )

            return await rewrite_master(
                source, slug, slug_dir, s.base_url, fetch_sub,
                prefix=s.url_prefix, log_fn=log_fn,
            )
