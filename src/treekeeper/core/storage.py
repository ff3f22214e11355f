"""string key-value backends for workspace persistence."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable
from urllib.parse import quote, unquote

from .errors import StorageUnavailable


# --- configuration ---

DEFAULT_DATA_DIR = Path.home() / ".treekeeper"


@runtime_checkable
class StorageBackend(Protocol):
    """get/set/remove over a flat string namespace."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStorage:
    """dict-backed store. nothing survives the process."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self.data)


class FileStorage:
    """one file per key in a data directory."""

    suffix = ".json"

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory) if directory else get_data_dir()

    def _path(self, key: str) -> Path:
        return self.directory / (quote(key, safe="-_.") + self.suffix)

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailable(key, e) from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # write then rename so readers never see a half-written payload
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=self.suffix)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(value)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageUnavailable(key, e) from e

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageUnavailable(key, e) from e

    def keys(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(
            unquote(p.name[: -len(self.suffix)])
            for p in self.directory.glob(f"*{self.suffix}")
            if not p.name.startswith(".")
        )


def get_data_dir() -> Path:
    """data directory, overridable with TREEKEEPER_DATA_DIR."""
    override = os.environ.get("TREEKEEPER_DATA_DIR")
    data_dir = Path(override).expanduser() if override else DEFAULT_DATA_DIR
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir
