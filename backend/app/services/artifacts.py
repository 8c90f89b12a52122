"""Filesystem-backed object store for error reports and staged uploads."""

from __future__ import annotations

import json
from pathlib import Path, PurePosixPath
from typing import Any

from app.core.logging import get_logger

logger = get_logger(__name__)


class LocalObjectStore:
    """Stores blobs under ``root`` using slash-separated keys such as ``jobs/<id>/errors.json``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        relative = PurePosixPath(key)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise ValueError(f"Invalid object key: {key!r}")
        return self.root.joinpath(*relative.parts)

    def put_bytes(self, key: str, data: bytes) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("artifacts.stored", key=key, size=len(data))
        return key

    def put_json(self, key: str, payload: Any) -> str:
        return self.put_bytes(key, json.dumps(payload, ensure_ascii=False, indent=2, default=str).encode("utf-8"))

    def get_bytes(self, key: str) -> bytes:
        """Return the blob at ``key``; raise :class:`FileNotFoundError` when absent."""

        return self._path(key).read_bytes()

    def get_json(self, key: str) -> Any:
        return json.loads(self.get_bytes(key).decode("utf-8"))

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def list(self, prefix: str) -> list[str]:
        base = self._path(prefix)
        if not base.is_dir():
            return []
        return sorted(path.relative_to(self.root).as_posix() for path in base.rglob("*") if path.is_file())
