"""Check PyPI for a newer release."""

import asyncio
from importlib import metadata
from typing import Callable

import aiohttp

from .config import PACKAGE_NAME
from .utils import new_session

PYPI_URL = f"https://pypi.org/pypi/{PACKAGE_NAME}/json"
UNKNOWN = "0.0.0"


def current_version() -> str:
    try:
        return metadata.version(PACKAGE_NAME)
    except metadata.PackageNotFoundError:
        return UNKNOWN


async def latest_version(session: aiohttp.ClientSession = None, log_fn: Callable = print) -> str:
    owned = session is None
    session = session or new_session()
    try:
        async with session.get(PYPI_URL, timeout=aiohttp.ClientTimeout(total=10)) as r:
            r.raise_for_status()
            data = await r.json()
        return data["info"]["version"]
    except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, ValueError) as e:
        log_fn(f"Error checking for updates: {e}")
        return UNKNOWN
    finally:
        if owned:
            await session.close()


def _parts(v: str):
    out = []
    for p in v.split("."):
        digits = "".join(c for c in p if c.isdigit())
        out.append(int(digits) if digits else 0)
    return out


def compare_versions(v1: str, v2: str) -> int:
    """-1 if v1 < v2, 0 if equal, 1 if v1 > v2 (missing parts count as 0)."""
    a, b = _parts(v1), _parts(v2)
    n = max(len(a), len(b))
    a += [0] * (n - len(a))
    b += [0] * (n - len(b))
    return (a > b) - (a < b)


async def check_for_updates(session: aiohttp.ClientSession = None, log_fn: Callable = print):
    """Return ``(current, latest, update_available)``."""
    current = current_version()
    latest = await latest_version(session, log_fn)
    return current, latest, compare_versions(current, latest) < 0


def update_notice(current: str, latest: str) -> str:
    line = f" Update available: {current} -> {latest}"
    cmd = f" Run: pip install -U {PACKAGE_NAME}"
    width = max(len(line), len(cmd)) + 1
    return "\n".join([
        "+" + "-" * width + "+",
        "|" + line.ljust(width) + "|",
        "|" + cmd.ljust(width) + "|",
        "+" + "-" * width + "+",
    ])
