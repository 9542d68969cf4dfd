import threading
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Protocol

import maxminddb

from geopal.errors import DatabaseOpenError
from geopal.logger import logger
from geopal.models.common import DatabaseKind


class GeoDatabase(Protocol):
    """An opened, read-only snapshot of one database kind."""

    def lookup(self, ip: str) -> Mapping[str, Any] | None:
        """Return the raw record for the most specific range containing `ip`, or None."""
        ...

    def close(self) -> None: ...


class MaxMindDatabase:
    """`GeoDatabase` backed by a `.mmdb` file opened with maxminddb."""

    def __init__(self, path: Path) -> None:
        self.path = path
        try:
            self._reader = maxminddb.open_database(str(path))
        except (maxminddb.InvalidDatabaseError, OSError, ValueError) as exc:
            raise DatabaseOpenError(f"Failed to open MaxMind database {path}: {exc!r}") from exc

    def lookup(self, ip: str) -> Mapping[str, Any] | None:
        return self._reader.get(ip)

    def close(self) -> None:
        self._reader.close()

    @property
    def build_epoch(self) -> int:
        return self._reader.metadata().build_epoch


class DatabaseStore:
    """Owns the opened database handles and the canonical paths backing them.

    Handles live in an immutable mapping that is replaced as a whole on every
    swap. Readers grab the current mapping once per query and never lock, so a
    query always sees either the old or the new handle. Swapped-out handles are
    not closed; they are released when the last in-flight query drops them.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self._handles: Mapping[DatabaseKind, GeoDatabase | None] = MappingProxyType(
            {kind: None for kind in DatabaseKind}
        )
        self._swap_lock = threading.Lock()

    def path_for(self, kind: DatabaseKind) -> Path:
        """Canonical on-disk location for a kind."""
        return self.data_dir / kind.filename

    def open(self, kind: DatabaseKind, path: Path | None = None) -> GeoDatabase | None:
        """Open the database file for `kind`.

        Returns None when the file does not exist or cannot be read; the
        latter is logged as an error.
        """
        path = path or self.path_for(kind)
        if not path.exists():
            logger.warning(f"{kind.edition_id} database not found path={path}")
            return None
        try:
            handle = MaxMindDatabase(path)
        except DatabaseOpenError as exc:
            logger.error(f"Unable to load {kind.edition_id} database path={path} error={exc}")
            return None
        logger.info(f"{kind.edition_id} database loaded path={path} build_epoch={handle.build_epoch}")
        return handle

    def swap(self, kind: DatabaseKind, handle: GeoDatabase | None) -> GeoDatabase | None:
        """Install `handle` for `kind` and return the handle it replaced."""
        with self._swap_lock:
            handles = dict(self._handles)
            previous = handles[kind]
            handles[kind] = handle
            self._handles = MappingProxyType(handles)
        return previous

    def reload(self, kind: DatabaseKind) -> bool:
        """Reopen `kind` from its canonical path and swap it in.

        If the file cannot be opened the current handle stays in service.
        Returns True when a new handle was installed.
        """
        handle = self.open(kind)
        if handle is None:
            return False
        self.swap(kind, handle)
        return True

    def handle(self, kind: DatabaseKind) -> GeoDatabase | None:
        return self._handles[kind]

    def is_loaded(self, kind: DatabaseKind) -> bool:
        return self._handles[kind] is not None

    def query(self, kind: DatabaseKind, ip: str) -> Mapping[str, Any] | None:
        """Look `ip` up in the currently installed handle; None if absent or not found."""
        handle = self._handles[kind]
        if handle is None:
            return None
        return handle.lookup(ip)

    def last_modified(self, kind: DatabaseKind) -> datetime | None:
        """Modification time of the canonical file, in UTC, or None if it is missing."""
        try:
            mtime = self.path_for(kind).stat().st_mtime
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    def close(self) -> None:
        """Close and drop every installed handle. Used on shutdown."""
        with self._swap_lock:
            handles = self._handles
            self._handles = MappingProxyType({kind: None for kind in DatabaseKind})
        for handle in handles.values():
            if handle is not None:
                handle.close()
