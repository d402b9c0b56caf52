from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Mapping, Optional, Sequence

from ..auth import OAuthAuthenticator
from .models import ScanFile, ScanMetadata, ScanRecord, ScanRequest, utc_now_iso
from .notifications import Notifier, NullStatusIndicator, StatusIndicator
from .poll_scheduler import PollScheduler
from .result_store import ResultStore
from .scan_api_client import ScanApiClient

logger = logging.getLogger(__name__)

SCANNABLE_EXTENSIONS = (".sol",)
UNKNOWN_PROJECT = "Unknown Project"


class ScanSubmissionError(Exception):
    """Base exception for failures while submitting a scan."""


class NoValidFilesError(ScanSubmissionError):
    pass


class NotAuthenticatedError(ScanSubmissionError):
    pass


class ScanService:
    """Submit files for scanning and hand the new scan over to polling."""

    def __init__(
        self,
        authenticator: OAuthAuthenticator,
        api_client: ScanApiClient,
        store: ResultStore,
        scheduler: PollScheduler,
        notifier: Notifier,
        *,
        workspace_root: Optional[Path] = None,
        status_indicator: Optional[StatusIndicator] = None,
    ) -> None:
        self._auth = authenticator
        self._api = api_client
        self._store = store
        self._scheduler = scheduler
        self._notifier = notifier
        self._workspace_root = workspace_root.resolve() if workspace_root else None
        self._indicator = status_indicator or NullStatusIndicator()

    async def start_scan(
        self,
        file_paths: Sequence[Path],
        metadata: Optional[ScanMetadata] = None,
    ) -> str:
        """Submit ``file_paths`` and start polling; returns the new scan id.

        Unreadable files are skipped with a warning.

        Raises:
            NoValidFilesError: None of the files could be read.
            NotAuthenticatedError: No access token could be obtained.
            ScanApiClientError: The service refused or failed the request.
        """
        files = await self._read_files(file_paths)
        if not files:
            raise NoValidFilesError("No valid files to scan")

        access_token = await self._auth.get_access_token()
        if not access_token:
            raise NotAuthenticatedError("Not authenticated")

        metadata = self._default_metadata(metadata)
        root_name = self._workspace_root.name if self._workspace_root else None
        request = ScanRequest(
            title=generate_scan_title(files, metadata, root_name=root_name),
            files=files,
            metadata=metadata,
        )
        started = await self._api.create_scan(request, access_token)

        now = utc_now_iso()
        record = ScanRecord(
            id=started.scan_id,
            created_at=now,
            updated_at=now,
            title=request.title,
            status=started.status,
            metadata=request.metadata,
        )
        await self._store.upsert(record)
        self._scheduler.start(started.scan_id)
        self._indicator.set_results_available(True)
        logger.info("Scan %s started for %d file(s)", started.scan_id, len(files))
        return started.scan_id

    async def fetch_scan_status(self, scan_id: str) -> ScanRecord:
        """Fetch a scan record with a fresh token (used by the poll scheduler)."""
        access_token = await self._auth.get_access_token()
        if not access_token:
            raise NotAuthenticatedError("Not authenticated")
        return await self._api.get_scan(scan_id, access_token)

    async def remove_scan_result(self, scan_id: str) -> bool:
        removed = await self._store.remove(scan_id)
        if not self._store.has_results:
            self._indicator.set_results_available(False)
        return removed

    async def remove_all_scan_results(self) -> int:
        removed = await self._store.remove_all()
        self._indicator.set_results_available(False)
        return removed

    def scan_url(self, scan_id: str) -> str:
        return self._api.scan_url(scan_id)

    async def _read_files(self, file_paths: Iterable[Path]) -> List[ScanFile]:
        files: List[ScanFile] = []
        for path in file_paths:
            path = Path(path)
            try:
                content = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Failed to read file %s: %s", path, exc)
                await self._notifier.warning(f"Failed to read file {path}: {exc}")
                continue
            files.append(ScanFile(path=self._relative_path(path), content=content))
        return files

    def _relative_path(self, path: Path) -> str:
        resolved = path.resolve()
        if self._workspace_root is not None:
            try:
                return resolved.relative_to(self._workspace_root).as_posix()
            except ValueError:
                pass
        return resolved.as_posix()

    def _default_metadata(self, metadata: Optional[Mapping[str, object]]) -> ScanMetadata:
        merged: ScanMetadata = {}
        if self._workspace_root is not None:
            merged["projectName"] = self._workspace_root.name
            merged["workspaceName"] = self._workspace_root.name
        for key, value in (metadata or {}).items():
            merged[str(key)] = _json_safe(value)
        return merged


def generate_scan_title(
    files: Sequence[ScanFile],
    metadata: Optional[Mapping[str, object]] = None,
    *,
    root_name: Optional[str] = None,
) -> str:
    """``"<project> / <first file>"``, plus ``"and N other file(s)"`` for batches.

    File paths are workspace relative; ``root_name`` is the workspace folder
    and is put back in front of them before the display name is computed.
    """
    metadata = metadata or {}
    context_name = metadata.get("projectName") or metadata.get("workspaceName") or UNKNOWN_PROJECT
    first_path = files[0].path
    if root_name and not PurePosixPath(first_path).is_absolute():
        first_path = f"{root_name}/{first_path}"
    first = display_file_name(first_path)
    others = len(files) - 1
    if others <= 0:
        return f"{context_name} / {first}"
    if others == 1:
        return f"{context_name} / {first} and 1 other file"
    return f"{context_name} / {first} and {others} other files"


def display_file_name(file_path: str) -> str:
    """Short label for a file path.

    The leading segment names the root folder, so the parent directory is only
    shown for files at least two levels below it.
    """
    parts = [part for part in PurePosixPath(file_path.replace("\\", "/")).parts if part != "/"]
    if not parts:
        return file_path
    file_name = parts[-1]

    if len(parts) > 2:
        parent_dir = parts[-2]
        if len(file_name) + len(parent_dir) > 40:
            return f"{parent_dir}/...{file_name[-20:]}"
        return f"{parent_dir}/{file_name}"

    if len(file_name) > 30:
        return f"...{file_name[-27:]}"
    return file_name


def _json_safe(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    logger.debug("Converting %s metadata value to a string", type(value).__name__)
    return str(value)


def filter_scannable(paths: Iterable[Path], extensions: Sequence[str] = SCANNABLE_EXTENSIONS) -> List[Path]:
    suffixes = tuple(ext.lower() for ext in extensions)
    return [Path(path) for path in paths if str(path).lower().endswith(suffixes)]
