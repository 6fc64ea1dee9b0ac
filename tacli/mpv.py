"""
mpv command line, key bindings and JSON IPC client.
"""

import asyncio
import errno
import json
import os
import shutil
import sys
import tempfile
import uuid
from pathlib import Path
from typing import Any, List, Optional

from .config import Settings
from .errors import ProcessError
from .utils import atomic_write_text

CONTROLS = (
    ("Space", "Play/Pause"),
    ("Arrow Right", "Forward 5 seconds"),
    ("Arrow Left", "Backward 5 seconds"),
    ("Arrow Up", "Forward 60 seconds"),
    ("Arrow Down", "Backward 60 seconds"),
    ("N", "Next episode"),
    ("Q", "Quit"),
)

IS_WINDOWS = sys.platform == "win32"


def input_conf(next_code: int = 51, quit_code: int = 0) -> str:
    return "\n".join([
        f"n quit {next_code}",
        "RIGHT seek 5",
        "LEFT seek -5",
        "UP seek 60",
        "DOWN seek -60",
        "SPACE cycle pause",
        f"q quit {quit_code}",
    ]) + "\n"


def write_input_conf(path: Path, settings: Settings) -> Path:
    atomic_write_text(path, input_conf(settings.next_exit_code, settings.quit_exit_code))
    return path


def new_ipc_path() -> str:
    tag = uuid.uuid4().hex[:8]
    if IS_WINDOWS:
        return rf"\\.\pipe\tacli_mpv_{os.getpid()}_{tag}"
    d = tempfile.mkdtemp(prefix="tacli_mpv_")
    return os.path.join(d, f"{tag}.sock")


def remove_ipc_path(path: str):
    """Delete the private socket directory made by new_ipc_path."""
    if IS_WINDOWS:
        return
    shutil.rmtree(os.path.dirname(path), ignore_errors=True)


def build_command(settings: Settings, url: str, conf_path: Path, ipc_path: Optional[str] = None, start: int = 0) -> List[str]:
    cmd = [
        settings.mpv_path,
        "--display-tags-clr",
        f"--user-agent={settings.user_agent}",
        f"--volume={settings.volume}",
        "--cache=yes",
        "--cache-pause=no",
        "--cache-secs=120",
        "--demuxer-readahead-secs=120",
        "--force-seekable=yes",
        "--stream-lavf-o=stimeout=60000000",
        "--network-timeout=60",
        "--hls-bitrate=max",
        "--stream-buffer-size=128M",
        "--vd-lavc-threads=8",
        "--no-ytdl",
        "--demuxer-max-bytes=512MiB",
        "--demuxer-max-back-bytes=128MiB",
        f"--input-conf={conf_path}",
    ]
    if settings.fullscreen:
        cmd.append("--fullscreen")
    if ipc_path:
        cmd.append(f"--input-ipc-server={ipc_path}")
    if start and start > 0:
        cmd.append(f"--start={int(start)}")
    cmd.append(url)
    return cmd


async def launch(cmd: List[str]) -> asyncio.subprocess.Process:
    """Start mpv; raises ProcessError if the binary cannot be executed."""
    try:
        return await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        raise ProcessError(f"Cannot start {cmd[0]}: {e}") from e


def encode_command(*args) -> bytes:
    return (json.dumps({"command": list(args)}) + "\n").encode("utf-8")


def parse_reply(line) -> Optional[dict]:
    """Decode one IPC line; None for events and garbage."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="ignore")
    try:
        msg = json.loads(line)
    except (TypeError, ValueError):
        return None
    if not isinstance(msg, dict) or "event" in msg or "error" not in msg:
        return None
    return msg


class MpvIpc:
    """Minimal JSON IPC client; one persistent connection on Unix sockets,
    one pipe open per request on Windows."""

    def __init__(self, path: str, timeout: float = 2.0):
        self.path = path
        self.timeout = timeout
        self._reader = None
        self._writer = None

    async def command(self, *args) -> Any:
        """Send a command and return its ``data`` (None on error replies)."""
        payload = encode_command(*args)
        if IS_WINDOWS:
            reply = await asyncio.to_thread(self._pipe_request, payload)
        else:
            reply = await asyncio.wait_for(self._socket_request(payload), self.timeout)
        if reply is None or reply.get("error") != "success":
            return None
        return reply.get("data")

    async def get_property(self, name: str) -> Any:
        return await self.command("get_property", name)

    async def _socket_request(self, payload: bytes) -> Optional[dict]:
        if self._writer is None:
            self._reader, self._writer = await asyncio.open_unix_connection(self.path)
        try:
            self._writer.write(payload)
            await self._writer.drain()
            while True:
                line = await self._reader.readline()
                if not line:
                    raise ConnectionResetError("mpv closed the IPC socket")
                reply = parse_reply(line)
                if reply is not None:
                    return reply
        except (OSError, asyncio.IncompleteReadError):
            await self.close()
            raise

    def _pipe_request(self, payload: bytes) -> Optional[dict]:
        try:
            with open(self.path, "r+b", buffering=0) as f:
                f.write(payload)
                while True:
                    line = f.readline()
                    if not line:
                        return None
                    reply = parse_reply(line)
                    if reply is not None:
                        return reply
        except OSError as e:
            if e.errno == errno.ENOENT or getattr(e, "winerror", None) in (2, 231, 232):
                return None
            raise

    async def close(self):
        writer, self._writer, self._reader = self._writer, None, None
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
