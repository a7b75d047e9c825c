"""GitHub App installation tokens: sign an app assertion, exchange it, cache the result."""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import jwt
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import CredentialError
from app.models import GithubAppInstallation
from app.schemas.credentials import InstallationCredential

if TYPE_CHECKING:
    from app.core.config import Settings
    from app.core.database import SessionFactory

logger = logging.getLogger(__name__)

DEFAULT_PRIVATE_KEY_PATH = Path(__file__).resolve().parents[2] / "config" / "github-app-private-key.pem"

# GitHub rejects assertions valid for more than 10 minutes; back-date iat for clock drift.
ASSERTION_CLOCK_SKEW_SEC = 60
ASSERTION_LIFETIME_SEC = 9 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore(ABC):
    """Keyed store: installation id -> most recent installation credential."""

    @abstractmethod
    def get(self, installation_id: str) -> InstallationCredential | None:
        """Cached credential, or None when nothing usable is cached."""

    @abstractmethod
    def put(self, credential: InstallationCredential) -> None:
        """Record a freshly minted credential (last writer wins)."""


class MemoryCredentialStore(CredentialStore):
    """Process-local store. Reads are lock-free; only writes take the lock."""

    def __init__(self) -> None:
        self._credentials: dict[str, InstallationCredential] = {}
        self._write_lock = threading.Lock()

    def get(self, installation_id: str) -> InstallationCredential | None:
        return self._credentials.get(installation_id)

    def put(self, credential: InstallationCredential) -> None:
        with self._write_lock:
            self._credentials[credential.installation_id] = credential


class DatabaseCredentialStore(CredentialStore):
    """
    Store backed by github_app_installations, so tokens survive restarts and are
    shared between worker instances. An installation without a row is unknown.
    """

    def __init__(self, session_factory: "SessionFactory") -> None:
        self._session_factory = session_factory

    def get(self, installation_id: str) -> InstallationCredential | None:
        db = self._session_factory()
        try:
            row = (
                db.query(GithubAppInstallation)
                .filter(GithubAppInstallation.installation_id == installation_id)
                .first()
            )
        except SQLAlchemyError as e:
            raise CredentialError(f"Failed to load installation {installation_id}", cause=e) from e
        finally:
            db.close()
        if row is None:
            raise CredentialError(f"Installation not found: {installation_id}", retryable=False)
        if not row.access_token or row.token_expires_at is None:
            return None
        expires_at = row.token_expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return InstallationCredential(
            installation_id=installation_id,
            access_token=row.access_token,
            expires_at=expires_at,
        )

    def put(self, credential: InstallationCredential) -> None:
        db = self._session_factory()
        try:
            db.query(GithubAppInstallation).filter(
                GithubAppInstallation.installation_id == credential.installation_id
            ).update(
                {
                    GithubAppInstallation.access_token: credential.token,
                    GithubAppInstallation.token_expires_at: credential.expires_at,
                    GithubAppInstallation.updated_at: _utcnow(),
                },
                synchronize_session=False,
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            # The token is still valid; only the cache write was lost.
            logger.warning(
                "Failed to cache installation token for %s: %s",
                credential.installation_id,
                e,
            )
        finally:
            db.close()


def load_app_private_key(settings: "Settings") -> str:
    """
    Resolve the GitHub App private key: explicit path, then the default
    config/ path, then the legacy inline GITHUB_APP_PRIVATE_KEY variable.
    """
    explicit = settings.GITHUB_APP_PRIVATE_KEY_PATH
    for candidate in (explicit, DEFAULT_PRIVATE_KEY_PATH):
        if not candidate:
            continue
        path = Path(candidate)
        if not path.is_file():
            if candidate == explicit:
                logger.error("GitHub App private key path does not exist: %s", path)
            continue
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error("Unable to read GitHub App private key from %s: %s", path, e)

    if settings.GITHUB_APP_PRIVATE_KEY is not None:
        inline = settings.GITHUB_APP_PRIVATE_KEY.get_secret_value()
        if inline.strip():
            logger.warning(
                "Loading GitHub App private key from environment variable. "
                "Prefer using GITHUB_APP_PRIVATE_KEY_PATH."
            )
            return inline.replace("\\n", "\n")

    raise CredentialError(
        "GitHub App credentials not configured. Set GITHUB_APP_ID and "
        "GITHUB_APP_PRIVATE_KEY_PATH (or legacy GITHUB_APP_PRIVATE_KEY).",
        retryable=False,
    )


def build_app_assertion(app_id: str, private_key: str, now: datetime | None = None) -> str:
    """Sign the short-lived RS256 JWT that authenticates as the GitHub App itself."""
    issued = int((now or _utcnow()).timestamp())
    payload = {
        "iat": issued - ASSERTION_CLOCK_SKEW_SEC,
        "exp": issued + ASSERTION_LIFETIME_SEC,
        "iss": str(app_id),
    }
    try:
        return jwt.encode(payload, private_key, algorithm="RS256")
    except (ValueError, TypeError, jwt.PyJWTError) as e:
        raise CredentialError(
            "Unable to sign GitHub App assertion; check the private key.",
            cause=e,
            retryable=False,
        ) from e


def _parse_expiry(value: str) -> datetime:
    expires_at = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at


class CredentialProvider:
    """
    Hands out installation tokens, reusing cached ones while they have more than
    TOKEN_REFRESH_MARGIN_SEC left.

    Concurrent callers for the same installation may both refresh; each exchange
    yields a valid token, so whichever write lands last is fine.
    """

    def __init__(
        self,
        settings: "Settings",
        store: CredentialStore,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._store = store
        self._transport = transport
        self._clock = clock
        self._refresh_margin = timedelta(seconds=settings.TOKEN_REFRESH_MARGIN_SEC)

    async def get_token(self, installation_id: str) -> InstallationCredential:
        installation_id = (installation_id or "").strip()
        if not installation_id.isdigit():
            raise CredentialError(f"Invalid installation ID: {installation_id!r}", retryable=False)

        now = self._clock()
        cached = self._store.get(installation_id)
        if cached is not None and cached.expires_at - now > self._refresh_margin:
            logger.info(
                "Using cached installation token for %s (expires in %d minutes)",
                installation_id,
                int((cached.expires_at - now).total_seconds() // 60),
            )
            return cached

        logger.info("Fetching new installation token for %s", installation_id)
        credential = await self._exchange(installation_id, now)
        self._store.put(credential)
        logger.info(
            "New installation token fetched for %s (expires %s)",
            installation_id,
            credential.expires_at.isoformat(),
        )
        return credential

    async def _exchange(self, installation_id: str, now: datetime) -> InstallationCredential:
        app_id = self._settings.GITHUB_APP_ID
        if not app_id:
            raise CredentialError(
                "GitHub App credentials not configured. Set GITHUB_APP_ID.",
                retryable=False,
            )
        assertion = build_app_assertion(app_id, load_app_private_key(self._settings), now)
        url = f"{self._settings.GITHUB_API_URL}/app/installations/{installation_id}/access_tokens"
        headers = {
            "Authorization": f"Bearer {assertion}",
            "Accept": "application/vnd.github+json",
            "User-Agent": self._settings.GITHUB_USER_AGENT,
        }
        timeout = httpx.Timeout(self._settings.GITHUB_REQUEST_TIMEOUT_SEC)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(url, headers=headers)
        except httpx.HTTPError as e:
            raise CredentialError(
                f"Installation token request failed for {installation_id}: {e}",
                cause=e,
            ) from e

        if not response.is_success:
            raise CredentialError(
                f"Failed to fetch installation token ({response.status_code} "
                f"{response.reason_phrase}): {response.text[:500]}",
                # 404: unknown installation; 401: bad key or app id. Neither fixes itself.
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise CredentialError(
                f"GitHub API returned non-JSON response: {response.text[:500]}",
                cause=e,
            ) from e
        token = data.get("token") if isinstance(data, dict) else None
        expires_raw = data.get("expires_at") if isinstance(data, dict) else None
        if not token or not expires_raw:
            raise CredentialError("GitHub API response missing token or expires_at fields")
        try:
            expires_at = _parse_expiry(str(expires_raw))
        except ValueError as e:
            raise CredentialError(f"Unparseable expires_at: {expires_raw!r}", cause=e) from e

        return InstallationCredential(
            installation_id=installation_id,
            access_token=token,
            expires_at=expires_at,
        )
