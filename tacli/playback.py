"""
Playback of a cached episode: local server, mpv, position tracking, and
chaining into the next episode.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional

from . import mpv
from .config import Settings
from .errors import ProcessError
from .hls import is_complete_manifest, master_path
from .models import AcquisitionRequest, Outcome, PlaybackSession, WatchHistoryEntry
from .utils import sanitize_filename


class SingleFlight:
    """At most one running task per key; later submissions are dropped.

    Failures inside a task are discarded: work started here is speculative and
    must never surface in the caller's flow.
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def in_flight(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def submit(self, key: str, factory: Callable[[], Awaitable]) -> Optional[asyncio.Task]:
        if self.in_flight(key):
            return None
        task = asyncio.ensure_future(self._run(key, factory))
        self._tasks[key] = task
        return task

    async def _run(self, key: str, factory):
        try:
            return await factory()
        except asyncio.CancelledError:
            raise
        except Exception:
            return None
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]

    async def wait(self, key: str):
        """Wait for the task under ``key`` if one is running."""
        task = self._tasks.get(key)
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def cancel_all(self):
        tasks = [t for t in self._tasks.values() if not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.wait(tasks)
        self._tasks.clear()


class PlaybackCoordinator:
    """Runs one mpv session per episode and chains sessions on "next".

    States per session: STARTING -> PLAYING -> (NEXT_REQUESTED | STOPPED).
    The orchestrator is bound after construction since the two call each
    other.
    """

    def __init__(self, settings: Settings, server, prefetch: SingleFlight, history=None, presence=None, launcher=mpv.launch, log_fn: Callable = print):
        self.settings = settings
        self.server = server
        self.prefetch = prefetch
        self.history = history
        self.presence = presence
        self.launcher = launcher
        self.log_fn = log_fn
        self.orchestrator = None
        self.session: Optional[PlaybackSession] = None
        self._background = set()

    def bind(self, orchestrator):
        self.orchestrator = orchestrator

    async def play(self, slug: str, request: AcquisitionRequest) -> Outcome:
        session = PlaybackSession(
            slug=slug,
            request=request,
            start_position=request.resume_position,
            live_position=request.resume_position,
        )
        self.session = session

        # STARTING
        try:
            await self.server.start()
        except OSError as e:
            self.log_fn(f"Server error: {e}")
            return Outcome.FAILED
        conf = mpv.write_input_conf(self.settings.cache_dir / "mpv-input.conf", self.settings)
        self._print_controls(request)

        ipc_path = mpv.new_ipc_path()
        try:
            code = await self._run_player(session, conf, ipc_path)
        finally:
            mpv.remove_ipc_path(ipc_path)
        if code is None:
            return Outcome.FAILED
        return await self._on_exit(code, session)

    async def _run_player(self, session: PlaybackSession, conf, ipc_path: str) -> Optional[int]:
        """Launch mpv and wait for it; None if it could not be started."""
        request = session.request
        cmd = mpv.build_command(self.settings, self.settings.master_url(session.slug), conf, ipc_path, session.start_position)
        self.log_fn("Starting mpv...")
        try:
            proc = await self.launcher(cmd)
        except ProcessError as e:
            self.log_fn(f"Error: {e}")
            return None

        # PLAYING
        self._notify(request)
        poller = asyncio.ensure_future(self._poll_position(session, ipc_path))
        self.prefetch_next(request)
        try:
            return await proc.wait()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.terminate()
            raise
        finally:
            poller.cancel()
            await asyncio.gather(poller, return_exceptions=True)

    async def _on_exit(self, code: int, session: PlaybackSession) -> Outcome:
        request = session.request
        if code == self.settings.next_exit_code and request.has_next:
            # NEXT_REQUESTED: the next session saves its own position
            nxt = request.next_request()
            self.log_fn(f"\nPlaying next episode: {nxt.episode_title}")
            await self.prefetch.wait(sanitize_filename(nxt.episode_title))
            return await self.orchestrator.acquire(nxt)

        if code in (self.settings.quit_exit_code, self.settings.next_exit_code):
            # STOPPED
            self.save_position(session)
            self.log_fn("Playback ended.")
            await self.server.stop()
            return Outcome.STOPPED

        self.log_fn(f"mpv exited with code {code}")
        return Outcome.FAILED

    def prefetch_next(self, request: AcquisitionRequest) -> Optional[asyncio.Task]:
        """Start caching the episode after ``request`` in the background."""
        if not request.has_next or self.orchestrator is None:
            return None
        nxt = request.next_request().as_background()
        slug = sanitize_filename(nxt.episode_title)
        if is_complete_manifest(master_path(self.settings.cache_dir, slug)):
            return None
        task = self.prefetch.submit(slug, lambda: self.orchestrator.acquire(nxt))
        if task is not None:
            self.log_fn(f"Caching the next episode: {nxt.episode_title}")
        return task

    def save_position(self, session: PlaybackSession):
        if self.history is None or not session.request.title_id:
            return
        self.history.save(WatchHistoryEntry.from_session(session))

    async def _poll_position(self, session: PlaybackSession, ipc_path: str):
        client = mpv.MpvIpc(ipc_path)
        try:
            while True:
                await asyncio.sleep(self.settings.poll_interval)
                try:
                    pos = await client.get_property("time-pos")
                except (OSError, asyncio.TimeoutError):
                    await client.close()
                    continue
                if isinstance(pos, (int, float)):
                    session.live_position = int(pos)
        finally:
            await client.close()

    def _notify(self, request: AcquisitionRequest):
        if self.presence is None or not request.title_id:
            return
        task = asyncio.ensure_future(self.presence.now_watching(request.title_id, request.episode_index))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _print_controls(self, request: AcquisitionRequest):
        self.log_fn("\nAvailable controls:")
        for key, action in mpv.CONTROLS:
            self.log_fn(f"{key} - {action}")
        if request.has_next:
            self.log_fn(f"\nNext episode available: {request.next_episode.title}")
            self.log_fn("Press N for next episode\n")
