import os
import re
import tempfile
from pathlib import Path

import aiohttp

from .errors import FilesystemError

DEFAULT_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*]')
_NON_PRINTABLE = re.compile(r"[^\x20-\x7E]")
_RESERVED_NAMES = re.compile(r"^(con|prn|aux|nul|com\d|lpt\d)$", re.IGNORECASE)
MAX_NAME_LENGTH = 255


def quiet(*_args, **_kwargs):
    """log_fn used by background work: prints nothing."""


def sanitize_filename(name: str) -> str:
    """Turn arbitrary text into a safe, bounded directory name.

    Spaces, path separators, Windows-reserved characters and anything outside
    printable ASCII are dropped; leading dots are stripped; reserved device
    names get a ``_`` prefix. Never returns an empty string.
    """
    s = (name or "").replace(" ", "")
    s = _UNSAFE_CHARS.sub("", s)
    s = _NON_PRINTABLE.sub("", s)
    s = s.lstrip(".")
    s = _RESERVED_NAMES.sub(r"_\1", s)
    s = s[:MAX_NAME_LENGTH]
    return s or "_"


def ensure_dir(path: Path) -> Path:
    """Create a directory (and parents) if missing."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"Cannot create directory {path}: {e}") from e
    return path


def atomic_write_text(path: Path, text: str):
    """Write text next to ``path`` and rename over it only once fully written."""
    ensure_dir(path.parent)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        os.replace(tmp, path)
    except OSError as e:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise FilesystemError(f"Cannot write {path}: {e}") from e


async def fetch_text(session: aiohttp.ClientSession, url: str, headers: dict = None, **kwargs):
    """Fetch text content from a URL using an existing aiohttp session."""
    async with session.get(url, headers=headers, **kwargs) as r:
        r.raise_for_status()
        return await r.text()


async def post_form(session: aiohttp.ClientSession, url: str, data: dict, headers: dict = None):
    """POST a urlencoded form and return the response body as text."""
    async with session.post(url, data=data, headers=headers) as r:
        r.raise_for_status()
        return await r.text()


def new_session(user_agent: str = DEFAULT_UA) -> aiohttp.ClientSession:
    """aiohttp session with the timeouts used for site scraping."""
    timeout = aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=60)
    return aiohttp.ClientSession(timeout=timeout, headers={"User-Agent": user_agent})
