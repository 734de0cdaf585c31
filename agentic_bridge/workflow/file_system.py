"""In-memory project snapshot (path -> file content).

Snapshots are never mutated; every change produces a new snapshot, so a
half-applied tool call cannot be observed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from ..errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_DIRS = frozenset({".git", "node_modules", "dist", "build", "__pycache__", ".venv"})


class FileSystemSnapshot(Mapping[str, str]):
    __slots__ = ("_files",)

    def __init__(self, files: Optional[Mapping[str, str]] = None) -> None:
        self._files: Dict[str, str] = dict(files or {})

    def __getitem__(self, path: str) -> str:
        return self._files[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)

    def __repr__(self) -> str:
        return f"FileSystemSnapshot({len(self._files)} files)"

    def paths(self) -> List[str]:
        return sorted(self._files)

    def with_files(self, files: Mapping[str, str]) -> "FileSystemSnapshot":
        updated = dict(self._files)
        updated.update(files)
        return FileSystemSnapshot(updated)

    def without(self, path: str) -> "FileSystemSnapshot":
        if path not in self._files:
            return self
        updated = dict(self._files)
        del updated[path]
        return FileSystemSnapshot(updated)

    def to_dict(self) -> Dict[str, str]:
        return dict(self._files)

    @classmethod
    def from_wire(cls, raw: Any) -> "FileSystemSnapshot":
        """Validate a request body's ``fileSystem`` object."""
        if not isinstance(raw, Mapping):
            raise ValidationError("fileSystem must be an object mapping paths to contents")
        for path, content in raw.items():
            if not isinstance(path, str) or not isinstance(content, str):
                raise ValidationError(f"fileSystem entry {path!r} must map a string path to string content")
        return cls(raw)

    @classmethod
    def from_directory(cls, root: str, *, ignored_dirs: Iterable[str] = DEFAULT_IGNORED_DIRS) -> "FileSystemSnapshot":
        """Load every UTF-8 text file under ``root``; binaries are skipped."""
        base = Path(root)
        skip = set(ignored_dirs)
        files: Dict[str, str] = {}
        for path in sorted(base.rglob("*")):
            rel = path.relative_to(base)
            if not path.is_file() or any(part in skip for part in rel.parts):
                continue
            try:
                files[rel.as_posix()] = path.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                logger.debug("skipping non-text file %s", rel)
        return cls(files)

    def write_to(self, root: str, *, previous: Optional[Mapping[str, str]] = None) -> List[str]:
        """Write the snapshot under ``root``; delete paths present only in ``previous``.

        Returns the list of paths written or removed.
        """
        base = Path(root).resolve()

        def _inside(path: str) -> Path:
            target = (base / path).resolve()
            if base != target and base not in target.parents:
                raise ValidationError(f"Refusing to write outside {base}: {path}")
            return target

        # Every target is checked before anything touches the disk.
        writes = [
            (path, _inside(path), content)
            for path, content in self._files.items()
            if previous is None or previous.get(path) != content
        ]
        removals = [(path, _inside(path)) for path in (previous or {}) if path not in self._files]

        touched: List[str] = []
        for path, target, content in writes:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            touched.append(path)
        for path, target in removals:
            target.unlink(missing_ok=True)
            touched.append(path)
        return touched


__all__ = ["DEFAULT_IGNORED_DIRS", "FileSystemSnapshot"]
