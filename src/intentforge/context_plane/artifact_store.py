"""Read-only artifact stores backing the context router."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from importlib import resources
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

from intentforge.constants import BUNDLED_ARTIFACT_ROOT
from intentforge.domain.errors import ArtifactNotFoundError


@runtime_checkable
class ArtifactStore(Protocol):
    """Read-only source of raw artifact bytes keyed by relative POSIX path."""

    def read_bytes(self, path: str) -> bytes: ...

    def exists(self, path: str) -> bool: ...


class FileArtifactStore:
    """Artifact store rooted at a directory; paths may not escape the root."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def read_bytes(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as exc:
            raise ArtifactNotFoundError(path) from exc
        except IsADirectoryError as exc:
            raise ArtifactNotFoundError(path) from exc

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ArtifactNotFoundError(path)
        target = (self._root / Path(*relative.parts)).resolve()
        if not target.is_relative_to(self._root):
            raise ArtifactNotFoundError(path)
        return target


class InMemoryArtifactStore:
    """Dictionary-backed store; counts reads so cache behaviour is observable."""

    def __init__(self, artifacts: Mapping[str, bytes | str] | None = None) -> None:
        self._artifacts: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self._reads: dict[str, int] = {}
        for path, content in (artifacts or {}).items():
            self.put(path, content)

    def put(self, path: str, content: bytes | str) -> None:
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        with self._lock:
            self._artifacts[path] = data

    def exists(self, path: str) -> bool:
        with self._lock:
            return path in self._artifacts

    def read_bytes(self, path: str) -> bytes:
        with self._lock:
            if path not in self._artifacts:
                raise ArtifactNotFoundError(path)
            self._reads[path] = self._reads.get(path, 0) + 1
            return self._artifacts[path]

    def read_count(self, path: str | None = None) -> int:
        with self._lock:
            if path is None:
                return sum(self._reads.values())
            return self._reads.get(path, 0)


def bundled_artifact_root() -> Path:
    """Directory of the artifact store shipped inside the package."""

    return Path(str(resources.files("intentforge").joinpath("brain")))


def open_artifact_store(artifact_root: str | Path) -> FileArtifactStore:
    """Open the configured store; ``<bundled>`` selects the packaged artifacts."""

    if str(artifact_root) == BUNDLED_ARTIFACT_ROOT:
        return FileArtifactStore(bundled_artifact_root())
    return FileArtifactStore(artifact_root)


__all__ = [
    "ArtifactStore",
    "FileArtifactStore",
    "InMemoryArtifactStore",
    "bundled_artifact_root",
    "open_artifact_store",
]
