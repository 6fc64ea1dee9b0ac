import json
from pathlib import Path
from typing import Callable, List, Optional

from .errors import FilesystemError
from .models import WatchHistoryEntry
from .utils import atomic_write_text


class WatchHistory:
    """Newest-first JSON list with at most one entry per anime."""

    def __init__(self, path: Path, limit: int = 20, log_fn: Callable = print):
        self.path = Path(path)
        self.limit = limit
        self.log_fn = log_fn

    def _load(self) -> List[dict]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            self.log_fn(f"Error reading watch history: {e}")
            return []
        try:
            data = json.loads(text)
        except ValueError:
            return []
        if not isinstance(data, list):
            return []
        data = [d for d in data if isinstance(d, dict)]
        if any("position" not in d for d in data):
            for d in data:
                d.setdefault("position", 0)
            try:
                self._dump(data)
                self.log_fn("Watch history migrated to include position field")
            except FilesystemError as e:
                self.log_fn(f"Error migrating watch history: {e}")
        return data

    def _dump(self, data: List[dict]):
        atomic_write_text(self.path, json.dumps(data, indent=2, ensure_ascii=False))

    def save(self, entry: WatchHistoryEntry) -> bool:
        data = [d for d in self._load() if str(d.get("animeId")) != str(entry.anime_id)]
        data.insert(0, entry.to_dict())
        try:
            self._dump(data[: self.limit])
        except FilesystemError as e:
            self.log_fn(f"Error saving watch history: {e}")
            return False
        return True

    def entries(self, limit: int = 10) -> List[WatchHistoryEntry]:
        return [WatchHistoryEntry.from_dict(d) for d in self._load()[:limit]]

    def last(self) -> Optional[WatchHistoryEntry]:
        entries = self.entries(1)
        return entries[0] if entries else None

    def clear(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return True
        except OSError as e:
            self.log_fn(f"Error deleting watch history: {e}")
            return False
        self.log_fn("Watch history deleted successfully")
        return True
