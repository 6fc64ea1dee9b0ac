"""
Locate the hidden video host's playlist URL behind an episode page.

The episode page only talks to the video host after a fansub panel has been
loaded, so the page is driven in a real Chromium while the DevTools network
domain is watched for the first playlist request. If nothing shows up in the
capture window, the rendered markup is scanned instead.
"""

import asyncio
import re
from typing import Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .browser import browser_session
from .config import Settings, VIDEO_HOST
from .models import NO_FANSUB, FansubChoice
from .utils import quiet

FANSUB_BUTTONS = ".pull-right button"
LOAD_PANEL_JS = "(token) => IndexIcerik(token, 'videodetay')"

_PLAYLIST_PATTERNS = (
    re.compile(r"https://alucard\.stream/cdn/playlist/[^\"']*"),
    re.compile(r"https://[^\"']*alucard[^\"']*\.m3u8", re.IGNORECASE),
)


def is_stream_url(url: str, host: str = VIDEO_HOST) -> bool:
    """True for a video-host URL that looks like a playlist."""
    return host in url and ("playlist" in url or url.endswith(".m3u8"))


def find_stream_url(html: str) -> Optional[str]:
    """Regex scan of rendered page markup for a playlist URL."""
    for pattern in _PLAYLIST_PATTERNS:
        m = pattern.search(html or "")
        if m:
            return m.group(0)
    return None


class TrafficCapture:
    """Resolve a future with the first playlist URL seen on a CDP session."""

    EVENTS = ("Network.requestWillBeSent", "Network.responseReceived")

    def __init__(self, host: str = VIDEO_HOST, log_fn: Callable = quiet, verbose: bool = False):
        self.host = host
        self.log_fn = log_fn
        self.verbose = verbose
        self.future: Optional[asyncio.Future] = None
        self._cdp = None

    async def attach(self, cdp):
        self.future = asyncio.get_running_loop().create_future()
        self._cdp = cdp
        cdp.on(self.EVENTS[0], self._on_request)
        cdp.on(self.EVENTS[1], self._on_response)
        await cdp.send("Network.enable")
        self.log_fn("Network monitoring started...")

    def _on_request(self, params):
        self._observe(params.get("request", {}).get("url", ""), "request")

    def _on_response(self, params):
        self._observe(params.get("response", {}).get("url", ""), "response")

    def _observe(self, url: str, kind: str):
        if self.verbose:
            self.log_fn(f"Network {kind}: {url}")
        if self.future is None or self.future.done():
            return
        if is_stream_url(url, self.host):
            self.log_fn(f"Found stream URL in {kind}: {url}")
            self.future.set_result(url)

    async def wait(self, timeout: float) -> Optional[str]:
        try:
            return await asyncio.wait_for(asyncio.shield(self.future), timeout=max(0.0, timeout))
        except asyncio.TimeoutError:
            return None

    async def detach(self):
        cdp, self._cdp = self._cdp, None
        if self.future is not None and not self.future.done():
            self.future.cancel()
        if cdp is None:
            return
        for event, handler in zip(self.EVENTS, (self._on_request, self._on_response)):
            try:
                cdp.remove_listener(event, handler)
            except Exception:
                pass
        try:
            await cdp.detach()
        except Exception:
            pass


class StreamLocator:
    """Drive an episode page until the video host reveals its playlist URL.

    One browser per call. ``locate`` never raises (cancellation aside): every
    failure is logged, unless in background mode, and reported as ``None``.
    """

    def __init__(self, settings: Settings, session_factory=browser_session):
        self.settings = settings
        self.session_factory = session_factory
        self.calls = 0

    async def locate(self, episode_link: str, fansub_token: str, fansub_label: str, background: bool = False) -> Optional[str]:
        self.calls += 1
        log_fn = quiet if background else print
        try:
            async with self.session_factory(self.settings, debug_port=self.settings.debug_port) as (_browser, context, page):
                return await self._locate(context, page, episode_link, fansub_token, fansub_label, log_fn)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_fn(f"Stream discovery error: {e}")
            return None
        finally:
            log_fn("Browser closed.")

    async def _locate(self, context, page, episode_link, fansub_token, fansub_label, log_fn) -> Optional[str]:
        s = self.settings
        loop = asyncio.get_running_loop()
        capture = TrafficCapture(VIDEO_HOST, log_fn=log_fn, verbose=s.verbose)
        cdp = await context.new_cdp_session(page)
        try:
            await capture.attach(cdp)
            started = loop.time()

            log_fn("Navigating to URL: " + episode_link)
            await page.goto(episode_link, wait_until="domcontentloaded")
            await self._select_fansub(page, fansub_token, fansub_label, log_fn)

            await asyncio.sleep(s.settle_delay)
            await self._inspect_iframe(page, log_fn)

            remaining = s.capture_timeout - (loop.time() - started)
            url = await capture.wait(remaining)
            if url:
                return url

            log_fn("Network capture found nothing, falling back to page source scan...")
            return await self._scan_page_source(page, log_fn)
        finally:
            await capture.detach()

    async def _select_fansub(self, page, token: str, label: str, log_fn):
        if token == NO_FANSUB:
            return
        if token == label:
            log_fn("Next episode, looking up fansub: " + label)
            token = await self._rediscover_token(page, label, log_fn)
            if token is None:
                return
        log_fn("Loading fansub panel: " + token)
        await page.evaluate(LOAD_PANEL_JS, token)

    async def _rediscover_token(self, page, label: str, log_fn) -> Optional[str]:
        """Find the selector button whose text matches ``label`` and return its token."""
        try:
            await page.wait_for_selector(FANSUB_BUTTONS, timeout=self.settings.fansub_wait * 1000)
            buttons = await page.query_selector_all(FANSUB_BUTTONS)
            for button in buttons:
                text = (await button.inner_text()).strip()
                if text != label:
                    continue
                choice = FansubChoice.from_onclick(text, await button.get_attribute("onclick"))
                if choice.token != NO_FANSUB:
                    return choice.token
        except (PlaywrightTimeoutError, PlaywrightError) as e:
            log_fn(f"Error finding fansub buttons: {e}")
            return None
        log_fn(f"Could not find button for fansub: {label}")
        return None

    async def _inspect_iframe(self, page, log_fn):
        # The player iframe sometimes only starts requesting once it is touched.
        try:
            handle = await page.query_selector("iframe")
            if handle is None:
                return
            frame = await handle.content_frame()
            if frame is not None:
                await frame.wait_for_load_state("domcontentloaded", timeout=self.settings.iframe_pause * 1000)
            await asyncio.sleep(self.settings.iframe_pause)
        except Exception as e:
            log_fn(f"Error checking iframes: {e}")

    async def _scan_page_source(self, page, log_fn) -> Optional[str]:
        s = self.settings
        for attempt in range(1, s.fallback_attempts + 1):
            await asyncio.sleep(s.fallback_delay)
            log_fn("Checking page source for stream URL...")
            try:
                url = find_stream_url(await page.content())
            except PlaywrightError as e:
                log_fn(f"Cannot read page source: {e}")
                url = None
            if url:
                log_fn("Found stream URL in page source: " + url)
                return url
            if attempt < s.fallback_attempts:
                log_fn(f"Retry {attempt}/{s.fallback_attempts}: waiting for stream...")
                await asyncio.sleep(s.fallback_delay)
        log_fn("Failed to find stream URL after all retries")
        return None
