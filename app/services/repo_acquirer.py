"""
Repository acquisition: download a GitHub branch as a zip archive, validate it,
extract it safely into a job-scoped directory and hand back a releasable handle.

Archive downloads do not count against the REST rate limit, which is why this
path is used instead of cloning.
"""

import asyncio
import logging
import os
import re
import shutil
import tempfile
import threading
import time
import uuid
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx

from app.core.errors import AcquisitionError

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

JOB_DIR_PREFIX = "repo-"
ARCHIVE_NAME = "archive.zip"
EXTRACT_DIR_NAME = "repo"

_ZIP_MAGIC = b"PK"
_HEAD_BYTES = 200
_DOWNLOAD_CHUNK = 1024 * 1024
_MACOS_METADATA_DIR = "__MACOSX"

# https://github.com/owner/repo(.git), git@github.com:owner/repo.git, ssh://git@github.com/owner/repo
_GITHUB_URL_RE = re.compile(
    r"github\.com[/:](?P<owner>[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?)/(?P<repo>[A-Za-z0-9._-]+?)(?:\.git)?/?$"
)


def parse_repo_url(repo_url: str) -> tuple[str, str]:
    """Extract (owner, repo) from an HTTPS or SSH GitHub URL."""
    match = _GITHUB_URL_RE.search((repo_url or "").strip())
    if not match or match.group("repo") in {".", ".."}:
        raise AcquisitionError(
            f"Invalid GitHub repository URL: {repo_url!r}",
            reason=AcquisitionError.INVALID_URL,
        )
    return match.group("owner"), match.group("repo")


def archive_url(settings: "Settings", owner: str, repo: str, branch: str, authenticated: bool) -> str:
    """Authenticated downloads go through the API zipball; public ones through the web archive."""
    ref = quote(branch, safe="/")
    if authenticated:
        return f"{settings.GITHUB_API_URL}/repos/{owner}/{repo}/zipball/{ref}"
    return f"{settings.GITHUB_WEB_URL}/{owner}/{repo}/archive/refs/heads/{ref}.zip"


def looks_like_html(head: bytes) -> bool:
    text = head.decode("utf-8", errors="replace").lower()
    return "<!doctype" in text or "<html" in text


@dataclass
class RepositoryHandle:
    """
    Extracted repository owned by one job.

    root_path is what the engines scan; work_dir is the job directory that
    contains it and is removed as a whole by release().
    """

    root_path: Path
    work_dir: Path
    owner: str = ""
    repo: str = ""
    branch: str = ""
    _released: bool = field(default=False, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """
        Remove the job directory. Idempotent; a missing directory is not an error.
        A failed removal leaves the handle unreleased so a later call retries it.
        Blocking; async callers run it in a worker thread.
        """
        with self._lock:
            if self._released:
                return
            try:
                shutil.rmtree(self.work_dir)
                logger.info("Cleaned up temp directory: %s", self.work_dir)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error("Failed to clean up temp directory %s: %s", self.work_dir, e)
                return
            self._released = True


def _safe_extract(archive_path: Path, dest: Path, max_total_bytes: int) -> int:
    """
    Extract archive_path into dest. Entries escaping dest are rejected, macOS
    metadata is skipped and the declared uncompressed total is bounded.
    Returns the number of extracted entries.
    """
    dest_resolved = dest.resolve()
    try:
        with zipfile.ZipFile(archive_path) as zf:
            members: list[zipfile.ZipInfo] = []
            total = 0
            for info in zf.infolist():
                parts = Path(info.filename).parts
                if _MACOS_METADATA_DIR in parts:
                    continue
                target = (dest_resolved / info.filename).resolve()
                if target != dest_resolved and not target.is_relative_to(dest_resolved):
                    raise AcquisitionError(
                        f"Archive entry escapes extraction directory: {info.filename!r}",
                        reason=AcquisitionError.EXTRACT_FAILED,
                        retryable=False,
                    )
                total += info.file_size
                if total > max_total_bytes:
                    raise AcquisitionError(
                        f"Repository is too large when extracted (more than {max_total_bytes // (1024 * 1024)}MB).",
                        reason=AcquisitionError.TOO_LARGE,
                    )
                members.append(info)
            for info in members:
                zf.extract(info, dest)
            return len(members)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, EOFError) as e:
        raise AcquisitionError(
            f"Failed to extract repository: {e}",
            reason=AcquisitionError.EXTRACT_FAILED,
            cause=e,
        ) from e


def _flatten(extract_dir: Path) -> Path:
    """
    GitHub archives wrap everything in one "<repo>-<ref>" directory; move its
    children up so extract_dir is the repository root. On failure the nested
    directory is returned instead.
    """
    entries = list(extract_dir.iterdir())
    if len(entries) != 1 or not entries[0].is_dir():
        return extract_dir
    wrapper = entries[0]
    if not any(wrapper.iterdir()):
        logger.warning("Extracted repository directory %s is empty, skipping flatten step", wrapper)
        return wrapper
    # Rename first so a child named like the wrapper does not collide with it.
    renamed = extract_dir / f".wrapper-{uuid.uuid4().hex}"
    try:
        wrapper.rename(renamed)
        wrapper = renamed
        for child in list(wrapper.iterdir()):
            child.rename(extract_dir / child.name)
        wrapper.rmdir()
    except OSError as e:
        logger.warning("Failed to flatten extracted repo, continuing with nested path: %s", e)
        return wrapper
    return extract_dir


class RepoAcquirer:
    """Turns (repo_url, branch, token?) into a RepositoryHandle on local storage."""

    def __init__(self, settings: "Settings", transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport
        self.base_dir = Path(settings.SCAN_WORK_DIR).resolve()

    async def acquire(self, repo_url: str, branch: str, token: str | None = None) -> RepositoryHandle:
        owner, repo = parse_repo_url(repo_url)
        authenticated = bool(token)
        url = archive_url(self._settings, owner, repo, branch, authenticated)

        self.base_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix=JOB_DIR_PREFIX, dir=self.base_dir))
        try:
            logger.info(
                "Downloading %s/%s@%s as zip (token present: %s, %s endpoint)",
                owner,
                repo,
                branch,
                "yes" if authenticated else "no",
                "API" if authenticated else "archive",
            )
            archive_path = work_dir / ARCHIVE_NAME
            size = await self._download(url, archive_path, token)
            logger.info("Downloaded %d bytes to %s", size, archive_path)

            extract_dir = work_dir / EXTRACT_DIR_NAME
            extract_dir.mkdir()
            count = await asyncio.to_thread(
                _safe_extract, archive_path, extract_dir, self._settings.MAX_EXTRACTED_BYTES
            )
            archive_path.unlink(missing_ok=True)
            if count == 0:
                raise AcquisitionError(
                    "Zip extraction failed - no files found",
                    reason=AcquisitionError.EMPTY_ARCHIVE,
                )
            root_path = await asyncio.to_thread(_flatten, extract_dir)
        except BaseException:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise

        logger.info("Repository extracted to %s", root_path)
        return RepositoryHandle(
            root_path=root_path,
            work_dir=work_dir,
            owner=owner,
            repo=repo,
            branch=branch,
        )

    async def _download(self, url: str, dest: Path, token: str | None) -> int:
        headers = {"User-Agent": self._settings.GITHUB_USER_AGENT}
        if token:
            # Installation and personal tokens use the "token" scheme here.
            headers["Authorization"] = f"token {token}"
        try:
            return await asyncio.wait_for(
                self._stream_to_file(url, dest, headers),
                timeout=self._settings.DOWNLOAD_TIMEOUT_SEC,
            )
        except asyncio.TimeoutError as e:
            raise AcquisitionError(
                f"Download did not finish within {self._settings.DOWNLOAD_TIMEOUT_SEC:.0f}s",
                reason=AcquisitionError.TRANSFER_FAILED,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise AcquisitionError(
                f"Failed to download repository: {e}",
                reason=AcquisitionError.TRANSFER_FAILED,
                cause=e,
            ) from e

    async def _stream_to_file(self, url: str, dest: Path, headers: dict[str, str]) -> int:
        limit = self._settings.MAX_ARCHIVE_BYTES
        timeout = httpx.Timeout(self._settings.GITHUB_REQUEST_TIMEOUT_SEC)
        async with httpx.AsyncClient(
            timeout=timeout, follow_redirects=True, transport=self._transport
        ) as client:
            async with client.stream("GET", url, headers=headers) as response:
                logger.info("Download responded with HTTP status: %s", response.status_code)
                if not response.is_success:
                    raise AcquisitionError(
                        f"Failed to download repository: HTTP {response.status_code}. "
                        "The repository may be private or the branch may not exist.",
                        reason=AcquisitionError.HTTP_STATUS,
                        retryable=response.status_code >= 500 or response.status_code == 429,
                    )
                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > limit:
                    raise self._too_large(int(declared), limit)

                size = 0
                head = b""
                with dest.open("wb") as fh:
                    async for chunk in response.aiter_bytes(_DOWNLOAD_CHUNK):
                        size += len(chunk)
                        if size > limit:
                            raise self._too_large(size, limit)
                        if len(head) < _HEAD_BYTES:
                            head += chunk[: _HEAD_BYTES - len(head)]
                        fh.write(chunk)

        if size == 0:
            raise AcquisitionError(
                "Downloaded file is empty (0 bytes)",
                reason=AcquisitionError.EMPTY_ARCHIVE,
            )
        if not head.startswith(_ZIP_MAGIC):
            logger.error(
                "Downloaded file is not a valid zip. First 4 bytes (hex): %s",
                head[:4].hex(),
            )
            if looks_like_html(head):
                raise AcquisitionError(
                    "Downloaded content is an HTML page, not a zip file. The repository "
                    "may be private, the branch may not exist, or authentication failed.",
                    reason=AcquisitionError.HTML_RESPONSE,
                )
            raise AcquisitionError(
                "Downloaded file is not a valid zip file.",
                reason=AcquisitionError.NOT_ARCHIVE,
            )
        return size

    @staticmethod
    def _too_large(size: int, limit: int) -> AcquisitionError:
        return AcquisitionError(
            f"Repository is too large ({size // (1024 * 1024)}MB). "
            f"Maximum size is {limit // (1024 * 1024)}MB.",
            reason=AcquisitionError.TOO_LARGE,
        )


def sweep_stale_workdirs(base_dir: str | os.PathLike[str], max_age_sec: float, now: float | None = None) -> int:
    """
    Remove entries under base_dir last modified more than max_age_sec ago.
    Catches job directories leaked by crashed runs. Returns how many were removed.
    """
    base = Path(base_dir)
    if not base.is_dir():
        return 0
    cutoff = (now if now is not None else time.time()) - max_age_sec
    removed = 0
    for entry in base.iterdir():
        try:
            if entry.lstat().st_mtime >= cutoff:
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.error("Failed to clean up %s: %s", entry.name, e)
            continue
        removed += 1
        logger.info("Cleaned up old temp file/directory: %s", entry.name)
    if removed:
        logger.info("Cleaned up %d old temp file(s)", removed)
    return removed


async def run_periodic_sweep(settings: "Settings") -> None:
    """Sweep once immediately, then every SWEEP_INTERVAL_SEC until cancelled."""
    while True:
        try:
            await asyncio.to_thread(
                sweep_stale_workdirs,
                Path(settings.SCAN_WORK_DIR).resolve(),
                settings.SWEEP_MAX_AGE_SEC,
            )
        except OSError as e:
            logger.error("Failed to sweep %s: %s", settings.SCAN_WORK_DIR, e)
        await asyncio.sleep(settings.SWEEP_INTERVAL_SEC)
