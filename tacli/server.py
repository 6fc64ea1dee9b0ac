import errno
from pathlib import Path
from typing import Callable

from aiohttp import web

from .utils import ensure_dir


class StaticServer:
    """Serve the cache directory read-only under ``/<prefix>/``.

    One instance lives for the whole process. ``start`` is idempotent; if the
    port is already bound (another tacli, or a previous run) the running
    server is assumed to serve the same tree.
    """

    def __init__(self, root: Path, host: str = "localhost", port: int = 8000, prefix: str = "downloads", log_fn: Callable = print):
        self.root = Path(root)
        self.host = host
        self.port = port
        self.prefix = prefix.strip("/")
        self.log_fn = log_fn
        self._runner = None
        self.external = False

    @property
    def running(self) -> bool:
        return self._runner is not None or self.external

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def build_app(self) -> web.Application:
        ensure_dir(self.root)
        app = web.Application()
        app.router.add_static(f"/{self.prefix}", str(self.root), show_index=False, follow_symlinks=False)
        return app

    async def start(self):
        if self.running:
            return
        runner = web.AppRunner(self.build_app(), access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError as e:
            await runner.cleanup()
            if e.errno != errno.EADDRINUSE:
                raise
            self.log_fn("Server already running, continuing with mpv...")
            self.external = True
            return
        self._runner = runner
        self.log_fn(f"Server is running at {self.url}")

    async def stop(self):
        runner, self._runner = self._runner, None
        self.external = False
        if runner is not None:
            await runner.cleanup()
            self.log_fn("Server closed")
