"""Download, extract and install GeoLite2 database snapshots.

A refresh for one database kind is a short pipeline:

    fetch -> stage archive -> extract -> locate -> commit -> cleanup

Each step raises a `RefreshError` subclass on failure, which short-circuits
the rest of the pipeline; `RefreshOrchestrator.refresh` converts that into a
`RefreshOutcome` so nothing escapes to the caller. Only the commit step
touches the canonical database path, and it does so with an atomic rename.
"""

import asyncio
import os
import shutil
import tarfile
import tempfile
from http import HTTPStatus
from pathlib import Path

import aiofiles
import httpx

from geopal.config import Settings
from geopal.errors import ArchiveError, DownloadError, RefreshError, UnauthorizedDownloadError
from geopal.logger import logger
from geopal.models.common import DatabaseKind, RefreshOutcome
from geopal.store import DatabaseStore

UNAUTHORIZED_STATUSES = (HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN)


class RefreshOrchestrator:
    """Keeps the on-disk databases current and (re)populates a `DatabaseStore`."""

    def __init__(
        self,
        settings: Settings,
        store: DatabaseStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._transport = transport

    @property
    def data_dir(self) -> Path:
        return self._store.data_dir

    async def initialize(self) -> dict[DatabaseKind, RefreshOutcome]:
        """Startup sequence.

        Downloads every kind whose canonical file is missing, then opens
        whatever files are present. Returns the outcomes of the downloads
        that were attempted.
        """
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if not self._settings.has_license_key:
            logger.warning(
                "MAXMIND_LICENSE_KEY not set, database downloads are disabled. "
                "Sign up at https://www.maxmind.com/en/geolite2/signup to get a free license key."
            )

        outcomes: dict[DatabaseKind, RefreshOutcome] = {}
        for kind in DatabaseKind:
            if not self._store.path_for(kind).exists():
                outcomes[kind] = await self.refresh(kind)

        await self._reload_all()
        return outcomes

    async def run_cycle(self) -> dict[DatabaseKind, RefreshOutcome]:
        """Scheduled sequence: refresh every kind, reopen all of them if any was downloaded."""
        logger.info("Starting scheduled database update")
        outcomes = {kind: await self.refresh(kind) for kind in DatabaseKind}

        if RefreshOutcome.downloaded in outcomes.values():
            await self._reload_all()

        summary = " ".join(f"{kind.health_key}={outcome.value}" for kind, outcome in outcomes.items())
        logger.info(f"Database update completed {summary}")
        return outcomes

    async def refresh(self, kind: DatabaseKind) -> RefreshOutcome:
        """Fetch and install a fresh snapshot of one database kind."""
        if not self._settings.has_license_key:
            logger.warning(f"MAXMIND_LICENSE_KEY not set, skipping {kind.edition_id} download")
            return RefreshOutcome.skipped_no_credential

        archive_path: Path | None = None
        staging_dir: Path | None = None
        try:
            archive_path = await asyncio.to_thread(self._new_archive_path, kind)
            logger.info(f"Downloading {kind.edition_id} database archive={archive_path.name}")
            await self._fetch(kind, archive_path)

            logger.info(f"Extracting {kind.edition_id} database")
            staging_dir = await asyncio.to_thread(self._extract, kind, archive_path)
            database_file = await asyncio.to_thread(self._locate, kind, staging_dir)
            await asyncio.to_thread(self._commit, kind, database_file)
        except UnauthorizedDownloadError as exc:
            logger.warning(
                f"{kind.edition_id} database not available with your license key, "
                f"it may not be included in your subscription error={exc}"
            )
            return RefreshOutcome.skipped_unauthorized
        except RefreshError as exc:
            logger.error(f"Error refreshing {kind.edition_id} database error={exc}")
            return RefreshOutcome.failed_transient
        finally:
            await asyncio.to_thread(self._cleanup, archive_path, staging_dir)

        logger.info(f"{kind.edition_id} database updated successfully path={self._store.path_for(kind)}")
        return RefreshOutcome.downloaded

    async def _reload_all(self) -> None:
        for kind in DatabaseKind:
            await asyncio.to_thread(self._store.reload, kind)

    def _new_archive_path(self, kind: DatabaseKind) -> Path:
        # A unique name per call keeps overlapping refreshes from sharing files.
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{kind.edition_id}-", suffix=".tar.gz")
        except OSError as exc:
            raise DownloadError(f"Cannot create temporary archive in {self.data_dir}: {exc!r}") from exc
        os.close(fd)
        return Path(name)

    async def _fetch(self, kind: DatabaseKind, archive_path: Path) -> None:
        """Stream the provider's archive for `kind` into `archive_path`."""
        params = {
            "edition_id": kind.edition_id,
            "license_key": self._settings.license_key,
            "suffix": "tar.gz",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.download_timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", self._settings.download_url, params=params) as response:
                    if response.status_code in UNAUTHORIZED_STATUSES:
                        raise UnauthorizedDownloadError(f"Provider returned HTTP {response.status_code}")
                    if not response.is_success:
                        # The request URL carries the license key, keep it out of the message.
                        raise DownloadError(f"Provider returned HTTP {response.status_code}")
                    async with aiofiles.open(archive_path, "wb") as archive:
                        async for chunk in response.aiter_bytes():
                            await archive.write(chunk)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Request to provider failed: {type(exc).__name__}: {exc}") from exc
        except OSError as exc:
            raise DownloadError(f"Cannot write archive {archive_path}: {exc!r}") from exc

    def _extract(self, kind: DatabaseKind, archive_path: Path) -> Path:
        """Unpack the archive into a fresh staging directory inside the data dir."""
        try:
            staging_dir = Path(tempfile.mkdtemp(dir=self.data_dir, prefix=f".{kind.edition_id}-extract-"))
        except OSError as exc:
            raise ArchiveError(f"Cannot create staging directory: {exc!r}") from exc
        try:
            with tarfile.open(archive_path, "r:gz") as tar:
                tar.extractall(path=staging_dir, filter="data")
        except (tarfile.TarError, OSError, EOFError) as exc:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise ArchiveError(f"Cannot extract {archive_path.name}: {exc!r}") from exc
        return staging_dir

    @staticmethod
    def _locate(kind: DatabaseKind, staging_dir: Path) -> Path:
        """Find `<edition>_<build>/<edition>.mmdb` inside the staging directory."""
        candidates = [
            path for path in staging_dir.iterdir() if path.is_dir() and path.name.startswith(f"{kind.edition_id}_")
        ]
        if len(candidates) != 1:
            raise ArchiveError(
                f"Expected one {kind.edition_id}_* directory in archive, found {len(candidates)}"
            )

        database_file = candidates[0] / kind.filename
        if not database_file.is_file():
            raise ArchiveError(f"{kind.filename} not found in {candidates[0].name}")
        return database_file

    def _commit(self, kind: DatabaseKind, database_file: Path) -> None:
        """Install `database_file` at the canonical path via copy + atomic rename."""
        target = self._store.path_for(kind)
        try:
            fd, name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        except OSError as exc:
            raise ArchiveError(f"Cannot stage {target.name}: {exc!r}") from exc
        os.close(fd)

        staged = Path(name)
        try:
            shutil.copyfile(database_file, staged)
            os.replace(staged, target)
        except OSError as exc:
            staged.unlink(missing_ok=True)
            raise ArchiveError(f"Cannot install {target.name}: {exc!r}") from exc

    @staticmethod
    def _cleanup(archive_path: Path | None, staging_dir: Path | None) -> None:
        if staging_dir is not None:
            try:
                shutil.rmtree(staging_dir)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning(f"Failed to remove staging directory path={staging_dir} error={exc!r}")
        if archive_path is not None:
            try:
                archive_path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning(f"Failed to remove temporary archive path={archive_path} error={exc!r}")
