"""Key-value byte stores backing the trip ledger.

The ledger only needs get/set/remove over a handful of named records, so any host
persistence mechanism can be plugged in. Two implementations ship here:

    - MemoryStore: dict-backed, for tests and short-lived hosts.
    - FileStore: one file per key in a directory, replaced atomically on write.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class StoreError(OSError):
    """Raised when a store cannot persist or remove a record."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """In-memory store (key -> bytes)."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self._data: dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        if not isinstance(value, (bytes, bytearray)):
            raise StoreError(f"value for {key!r} must be bytes, got {type(value).__name__}")
        self._data[key] = bytes(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


_SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]+$")


class FileStore:
    """A directory of files persisted on disk (key -> file content)."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)

    def _path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key) or key in (".", ".."):
            raise ValueError(f"非法存储键：{key!r}")
        return self._dir / f"{key}.json"

    def get(self, key: str) -> bytes | None:
        """Read a record; missing or unreadable files read as None."""

        p = self._path_for(key)
        try:
            return p.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            # 文件不可读时按“不存在”处理，由上层回退到默认值
            logger.warning("读取存储文件失败 %s：%s", p, exc)
            return None

    def set(self, key: str, value: bytes) -> None:
        """Persist a record (atomic on a single filesystem)."""

        p = self._path_for(key)
        tmp = p.with_suffix(p.suffix + ".tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(value)
            tmp.replace(p)
        except OSError as exc:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass
            raise StoreError(f"写入存储文件失败 {p}：{exc}") from exc

    def remove(self, key: str) -> None:
        p = self._path_for(key)
        try:
            p.unlink(missing_ok=True)
        except OSError as exc:
            raise StoreError(f"删除存储文件失败 {p}：{exc}") from exc
