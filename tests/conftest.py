import asyncio
import socket
from contextlib import asynccontextmanager

import pytest

from tacli.config import Settings
from tacli.models import Episode, Outcome
from tacli.utils import sanitize_filename


def free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        cache_dir=tmp_path / "cache",
        history_path=tmp_path / "watch-history.json",
        host="127.0.0.1",
        port=free_port(),
        capture_timeout=0.2,
        settle_delay=0,
        iframe_pause=0,
        fansub_wait=0.1,
        fallback_attempts=3,
        fallback_delay=0,
        manifest_timeout=1,
        manifest_poll=0.01,
        poll_interval=0.01,
        presence=False,
    )


@pytest.fixture
def episodes():
    return tuple(Episode(f"Test Anime {n}", f"//www.turkanime.co/video/test-anime-{n}-bolum", n - 1) for n in (1, 2, 3))


def master_body(tag):
    return "\n".join([
        "#EXTM3U",
        "#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360",
        f"https://alucard.stream/cdn/hls/360/{tag}/index.m3u8",
        "",
        "#EXT-X-STREAM-INF:BANDWIDTH=2000000,RESOLUTION=1280x720",
        f"https://alucard.stream/cdn/hls/720/{tag}/index.m3u8",
    ])


def sub_body(url):
    res = url.split("/hls/")[1].split("/")[0]
    return f"#EXTM3U\n#EXTINF:10.0,\nhttps://alucard.stream/seg/{res}/0.ts\n#EXT-X-ENDLIST\n"


class FakeResponse:
    def __init__(self, body):
        self.ok = True
        self._body = body

    async def text(self):
        return self._body


class PlaylistPage:
    """Browser page that renders playlists inline instead of downloading them."""

    def __init__(self):
        self.visited = []
        self.listeners = {}

    def once(self, event, fn):
        self.listeners[event] = fn

    def remove_listener(self, event, fn):
        self.listeners.pop(event, None)

    async def goto(self, url, **kwargs):
        self.visited.append(url)
        if "/cdn/playlist/" in url:
            return FakeResponse(master_body(url.rsplit("/", 1)[-1]))
        return FakeResponse(sub_body(url))


@pytest.fixture
def download_sessions():
    pages = []

    @asynccontextmanager
    async def factory(settings, **kwargs):
        page = PlaylistPage()
        pages.append(page)
        yield None, None, page

    factory.pages = pages
    return factory


class FakeLocator:
    def __init__(self, found=True, delay=0):
        self.found = found
        self.delay = delay
        self.calls = []

    async def locate(self, episode_link, fansub_token, fansub_label, background=False):
        self.calls.append((episode_link, fansub_token, fansub_label, background))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.found:
            return None
        return "https://alucard.stream/cdn/playlist/" + episode_link.rsplit("/", 1)[-1]

    def count(self, link_part):
        return sum(1 for c in self.calls if link_part in c[0])


@pytest.fixture
def locator():
    return FakeLocator()


class FakeCoordinator:
    def __init__(self):
        self.played = []

    async def play(self, slug, request):
        self.played.append((slug, request))
        return Outcome.STOPPED


class FakeProc:
    def __init__(self, code):
        self.code = code
        self.returncode = None

    async def wait(self):
        await asyncio.sleep(0)
        self.returncode = self.code
        return self.code

    def terminate(self):
        self.returncode = -15


class FakeLauncher:
    """Stands in for mpv: hands out exit codes in order."""

    def __init__(self, *codes):
        self.codes = list(codes)
        self.commands = []

    async def __call__(self, cmd):
        self.commands.append(cmd)
        return FakeProc(self.codes.pop(0) if self.codes else 0)


class FakeServer:
    def __init__(self):
        self.starts = 0
        self.stops = 0

    async def start(self):
        self.starts += 1

    async def stop(self):
        self.stops += 1


def slug(title):
    return sanitize_filename(title)
