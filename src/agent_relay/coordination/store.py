"""Record store abstraction with atomic replace semantics."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Protocol


class RecordReader(Protocol):
    """Read-only view of the coordination store."""

    def read_text(self, key: str, *, errors: str = "strict") -> str | None:
        """Return the record content or ``None`` if it does not exist.

        Undecodable bytes raise ``UnicodeDecodeError`` unless ``errors`` says otherwise.
        """

    def exists(self, key: str) -> bool:
        """Return whether the record exists."""

    def mtime_ns(self, key: str) -> int | None:
        """Return the record modification time in nanoseconds."""

    def list_keys(self, prefix: str) -> list[str]:
        """List record keys directly under ``prefix`` (sorted)."""


class RecordStore(RecordReader, Protocol):
    """Writable coordination store; every write is atomic for readers."""

    def write_atomic(self, key: str, text: str) -> None:
        """Replace the record content in one step."""

    def create_exclusive(self, key: str, text: str) -> bool:
        """Create a write-once record; return ``False`` if it already exists."""

    def append_line(self, key: str, line: str) -> None:
        """Append one line to an append-only record."""


class FileRecordStore:
    """Local filesystem store rooted at the shared coordination directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        root = self.root.resolve()
        if path != root and root not in path.parents:
            raise ValueError(f"Record key escapes store root: {key!r}")
        return path

    def read_text(self, key: str, *, errors: str = "strict") -> str | None:
        path = self.path_for(key)
        try:
            return path.read_text("utf-8", errors=errors)
        except FileNotFoundError:
            return None

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def mtime_ns(self, key: str) -> int | None:
        try:
            return self.path_for(key).stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def list_keys(self, prefix: str) -> list[str]:
        directory = self.path_for(prefix.rstrip("/") or ".")
        if not directory.is_dir():
            return []
        base = prefix.rstrip("/")
        keys = [
            f"{base}/{entry.name}" if base else entry.name
            for entry in directory.iterdir()
            if entry.is_file() and not entry.name.startswith(".")
        ]
        return sorted(keys)

    def write_atomic(self, key: str, text: str) -> None:
        path = self.path_for(key)
        temp_path = self._write_temp(path, text)
        try:
            os.replace(temp_path, path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

    def create_exclusive(self, key: str, text: str) -> bool:
        path = self.path_for(key)
        temp_path = self._write_temp(path, text)
        try:
            os.link(temp_path, path)
        except FileExistsError:
            return False
        finally:
            temp_path.unlink(missing_ok=True)
        return True

    def append_line(self, key: str, line: str) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = line.rstrip("\n") + "\n"
        with path.open("a", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())

    def _write_temp(self, path: Path, text: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            # mkstemp creates 0600; other agents and the monitor must read it.
            temp_path.chmod(0o644)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        return temp_path
