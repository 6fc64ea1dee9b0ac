"""
Runtime settings for tacli.

Defaults mirror the behaviour of the site and of mpv that the pipeline was
tuned against; every value can be overridden through ``TACLI_*`` environment
variables or command line flags.
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

from .utils import DEFAULT_UA

SITE_URL = "https://www.turkanime.co"
VIDEO_HOST = "alucard.stream"
GITHUB_URL = "https://github.com/Luxotick/turk-ani-cli"
DISCORD_CLIENT_ID = "1335425935578628208"
PACKAGE_NAME = "tacli"

CONFIG_DIR = Path.home() / ".tacli"


@dataclass
class Settings:
    cache_dir: Path = field(default_factory=lambda: CONFIG_DIR / "downloads")
    history_path: Path = field(default_factory=lambda: CONFIG_DIR / "watch-history.json")
    host: str = "localhost"
    port: int = 8000
    url_prefix: str = "downloads"
    debug_port: int = 9224
    headless: bool = True
    user_agent: str = DEFAULT_UA
    verbose: bool = False

    # Player
    mpv_path: str = "mpv"
    volume: int = 50
    fullscreen: bool = True
    next_exit_code: int = 51
    quit_exit_code: int = 0
    poll_interval: float = 1.0

    # Stream discovery and manifest download (seconds)
    capture_timeout: float = 30.0
    settle_delay: float = 3.0
    iframe_pause: float = 1.0
    fansub_wait: float = 10.0
    fallback_attempts: int = 3
    fallback_delay: float = 5.0
    manifest_timeout: float = 60.0
    manifest_poll: float = 1.0

    # Collaborators
    history_limit: int = 20
    presence: bool = True
    discord_client_id: str = DISCORD_CLIENT_ID

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def master_url(self, slug: str) -> str:
        return f"{self.base_url}/{self.url_prefix}/{slug}/master.m3u8"

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings, applying ``TACLI_<FIELD>`` overrides."""
        environ = os.environ if environ is None else environ
        s = cls()
        overrides = {}
        for f in fields(cls):
            raw = environ.get(f"TACLI_{f.name.upper()}")
            if raw is None:
                continue
            current = getattr(s, f.name)
            if isinstance(current, bool):
                overrides[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(current, Path):
                overrides[f.name] = Path(raw).expanduser()
            elif isinstance(current, int):
                overrides[f.name] = int(raw)
            elif isinstance(current, float):
                overrides[f.name] = float(raw)
            else:
                overrides[f.name] = raw
        return replace(s, **overrides)

    def with_args(self, args) -> "Settings":
        """Apply the command line flags that map onto settings."""
        overrides = {}
        if getattr(args, "no_headless", False):
            overrides["headless"] = False
        if getattr(args, "port", None):
            overrides["port"] = args.port
        if getattr(args, "cache_dir", None):
            overrides["cache_dir"] = Path(args.cache_dir).expanduser()
        if getattr(args, "mpv", None):
            overrides["mpv_path"] = args.mpv
        if getattr(args, "no_presence", False):
            overrides["presence"] = False
        if getattr(args, "verbose", False):
            overrides["verbose"] = True
        return replace(self, **overrides)
