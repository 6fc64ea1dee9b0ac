import asyncio
import os
import re
import uuid
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError

from .errors import FilesystemError, ManifestTimeout, PartialCache
from .utils import atomic_write_text, ensure_dir

MASTER_NAME = "master.m3u8"
SOURCE_NAME = "source.m3u8"
DOWNLOAD_PATTERN = "download-*.m3u8"
STREAM_INF = "#EXT-X-STREAM-INF"

RESOLUTION_RE = re.compile(r"/(\d+)/")


def master_path(cache_dir: Path, slug: str) -> Path:
    return cache_dir / slug / MASTER_NAME


def is_complete_manifest(path: Path) -> bool:
    """True if ``path`` holds a non-empty, well-formed playlist.

    A leftover partial or empty file must not count as a cache hit.
    """
    try:
        if not path.is_file() or path.stat().st_size == 0:
            return False
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False
    return is_playlist(text.splitlines())


def is_playlist(lines) -> bool:
    """First non-blank line is #EXTM3U and at least one URI line follows."""
    lines = [l.strip() for l in lines if l.strip()]
    if not lines or lines[0] != "#EXTM3U":
        return False
    return any(not l.startswith("#") for l in lines)


def resolution_marker(text: str) -> Optional[str]:
    """Numeric directory segment (``/1080/``) embedded in a URL or playlist."""
    m = RESOLUTION_RE.search(text or "")
    return m.group(1) if m else None


def newest_match(directory: Path, pattern: str = DOWNLOAD_PATTERN) -> Optional[Path]:
    """Most recently modified file matching ``pattern``, or None."""
    try:
        candidates = [(p.stat().st_mtime, p) for p in directory.glob(pattern) if p.is_file()]
    except OSError:
        return None
    if not candidates:
        return None
    return max(candidates, key=lambda c: c[0])[1]


def settle_manifest(path: Path, rename: bool = True, log_fn: Callable = print) -> Path:
    """Rename a downloaded playlist to ``<resolution>.m3u8`` when it names one."""
    if not rename:
        return path
    try:
        res = resolution_marker(path.read_text(encoding="utf-8", errors="replace"))
        if res:
            target = path.with_name(f"{res}.m3u8")
            os.replace(path, target)
            return target
    except OSError as e:
        log_fn(f"Error reading file content for renaming: {e}")
    return path


async def wait_for_manifest(
    output_dir: Path,
    timeout: float = 60,
    *,
    pattern: str = DOWNLOAD_PATTERN,
    interval: float = 1.0,
    rename: bool = True,
    log_fn: Callable = print,
) -> Path:
    """Poll ``output_dir`` until a downloaded playlist appears.

    Browser downloads give no completion signal we can rely on, so the newest
    match is only accepted once it is non-empty.

    Raises:
        ManifestTimeout: if nothing usable shows up within ``timeout`` seconds
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        found = newest_match(output_dir, pattern)
        try:
            ready = found is not None and found.stat().st_size > 0
        except OSError:
            ready = False
        if ready:
            return settle_manifest(found, rename=rename, log_fn=log_fn)
        if loop.time() >= deadline:
            log_fn(f"Download timeout after {timeout}s")
            raise ManifestTimeout(f"No playlist in {output_dir} after {timeout}s")
        await asyncio.sleep(interval)


def _download_name() -> str:
    return f"download-{uuid.uuid4().hex[:12]}.m3u8"


async def _save_download(download, output_dir: Path):
    # Save under a name the poller ignores, then move into place in one step.
    final = output_dir / _download_name()
    partial = final.with_suffix(".part")
    await download.save_as(str(partial))
    os.replace(partial, final)


async def fetch_manifest(
    page,
    target_url: str,
    output_dir: Path,
    timeout: float = 60,
    *,
    rename: bool = True,
    interval: float = 1.0,
    log_fn: Callable = print,
) -> Path:
    """Make the browser fetch ``target_url`` and return the local playlist path.

    Chromium treats playlists as downloads; each download is saved into
    ``output_dir`` and picked up by :func:`wait_for_manifest`. A playlist that
    is rendered inline instead is written out from the response body.
    """
    ensure_dir(output_dir)
    pending = []

    def on_download(download):
        pending.append(asyncio.ensure_future(_save_download(download, output_dir)))

    page.once("download", on_download)
    response = None
    try:
        response = await page.goto(target_url)
    except PlaywrightError as e:
        if "Download is starting" not in str(e):
            log_fn(f"Navigation error: {e}")
    if response is not None and response.ok:
        try:
            body = await response.text()
        except PlaywrightError:
            body = ""
        if body.lstrip().startswith("#EXTM3U"):
            atomic_write_text(output_dir / _download_name(), body)
    log_fn("GET request sent: " + target_url)

    try:
        return await wait_for_manifest(output_dir, timeout, interval=interval, rename=rename, log_fn=log_fn)
    finally:
        try:
            page.remove_listener("download", on_download)
        except Exception:
            pass
        for task in pending:
            if not task.done():
                task.cancel()


def rewrite_lines(lines, slug: str, base_url: str, prefix: str = "downloads") -> Tuple[List[str], List[Tuple[str, str]]]:
    """Point every per-resolution reference at the local file server.

    Returns ``(new_lines, refs)`` where ``refs`` lists ``(remote_url,
    local_name)`` for each rewritten line, in order. Stream-info lines and
    other lines pass through unchanged; blank lines are dropped.
    """
    out, refs = [], []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if line.startswith(STREAM_INF):
            out.append(line)
            continue
        if not line.strip():
            continue
        res = None if line.startswith("#") else resolution_marker(line)
        if res:
            name = f"{res}.m3u8"
            refs.append((line.strip(), name))
            out.append(f"{base_url}/{prefix}/{slug}/{name}")
        else:
            out.append(line)
    return out, refs


async def rewrite_master(
    raw_path: Path,
    slug: str,
    slug_dir: Path,
    base_url: str,
    fetch_sub: Callable[[str, Path], Awaitable[Path]],
    *,
    prefix: str = "downloads",
    log_fn: Callable = print,
) -> Path:
    """Materialise every sub-playlist and write the locally playable master.

    The master is written with an atomic rename as the very last step, so an
    interrupted rewrite never leaves a file that looks like a finished cache.

    Raises:
        PartialCache: if the source is not an HLS playlist
        FilesystemError: if the source cannot be read or a file cannot be moved
    """
    try:
        text = raw_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise FilesystemError(f"Cannot read {raw_path}: {e}") from e

    new_lines, refs = rewrite_lines(text.splitlines(), slug, base_url, prefix)
    if not is_playlist(new_lines):
        raise PartialCache(f"{raw_path} is not a playable playlist")
    done = set()
    for url, name in refs:
        if name in done:
            continue
        target = slug_dir / name
        log_fn(f"Downloading {url} to {target}")
        local = await fetch_sub(url, slug_dir)
        if local != target:
            try:
                os.replace(local, target)
            except OSError as e:
                raise FilesystemError(f"Cannot move {local} to {target}: {e}") from e
        done.add(name)

    out = slug_dir / MASTER_NAME
    atomic_write_text(out, "\n".join(new_lines))
    log_fn(f"{MASTER_NAME} created at {out}")
    return out
