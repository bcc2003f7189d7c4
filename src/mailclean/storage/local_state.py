import os
from typing import Optional, Dict, Protocol

from mailclean.logging import logger


# -----------------------------
# Snapshot storage boundary
# -----------------------------
class SnapshotStorage(Protocol):
    """String key-value store holding serialized cache snapshots."""
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...
    def clear(self) -> None: ...


class JsonFileStorage:
    """
    One JSON file per key under `root`; snapshots outlive the process.

    Default storage of the CLI, where every command runs in its own process.
    """

    SUFFIX = ".json"

    def __init__(self, root: str) -> None:
        self.root = root
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key: str) -> str:
        safe = (key or "").strip().replace(os.sep, "_").replace("/", "_")
        if not safe:
            raise ValueError("Storage key must not be empty")
        return os.path.join(self.root, f"{safe}{self.SUFFIX}")

    def get(self, key: str) -> Optional[str]:
        p = self._path(key)
        if not os.path.exists(p):
            return None
        try:
            with open(p, "r", encoding="utf-8") as fh:
                return fh.read()
        except OSError as e:
            logger.error(f"Failed to read snapshot file {p}: {e}")
            return None

    def set(self, key: str, value: str) -> None:
        """Replace the file atomically, so a reader never sees half a snapshot."""
        p = self._path(key)
        tmp = f"{p}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(value)
        os.replace(tmp, p)
        logger.debug(f"Wrote snapshot file {p} ({len(value)} bytes)")

    def clear(self) -> None:
        removed = 0
        for name in os.listdir(self.root):
            if name.endswith(self.SUFFIX):
                os.remove(os.path.join(self.root, name))
                removed += 1
        logger.debug(f"Removed {removed} snapshot file(s) from {self.root}")


class InMemoryStorage:
    """Process-local storage for tests; snapshots are lost on exit."""
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def clear(self) -> None:
        self._data.clear()
