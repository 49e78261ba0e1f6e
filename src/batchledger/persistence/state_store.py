"""State snapshot store: the latest committed state as one JSON file.

The event log is the source of truth; the snapshot exists so that a
restart does not need to replay the log. The file is replaced
atomically (write to a temporary sibling, then rename), so a crash
mid-write leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional


class StateStore:
    """JSON snapshot of registry, notice workflow and root store state."""

    FORMAT_VERSION = 1

    def __init__(self, storage_path: Path) -> None:
        self._path = storage_path

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def save(
        self,
        registry: dict[str, Any],
        notices: dict[str, Any],
        roots: dict[str, str],
        event_count: int,
    ) -> None:
        """Write a full snapshot. Raises OSError on failure."""
        data = {
            "format_version": self.FORMAT_VERSION,
            "event_count": event_count,
            "registry": registry,
            "notices": notices,
            "roots": roots,
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True, ensure_ascii=False)
        os.replace(tmp, self._path)

    def load(self) -> Optional[dict[str, Any]]:
        """Return the snapshot, or None if nothing has been saved yet."""
        if not self._path.exists():
            return None
        with self._path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        version = data.get("format_version")
        if version != self.FORMAT_VERSION:
            raise ValueError(
                f"Unsupported state snapshot version {version!r} in {self._path}"
            )
        return data
