"""Google Drive credentials for the clipdrive upload pipeline.

This module separates *where* a bearer token comes from (an identity
provider) from *how* the pipeline uses it (the credential manager):

- IdentityProvider: protocol for anything that can hand out or forget a token
- GoogleOAuthIdentityProvider: installed-app OAuth2 flow with an on-disk token
- StaticTokenProvider: a fixed token, for scripted uploads and tests
- CredentialManager: acquire / refresh / revoke on top of a provider

Example:
    from clipdrive.gdrive.auth import CredentialManager, GoogleOAuthIdentityProvider

    provider = GoogleOAuthIdentityProvider(
        client_secrets_path=Path("client_secrets.json"),
        token_path=Path(".clipdrive_token.json"),
    )
    credentials = CredentialManager(provider)
    token = await credentials.acquire(interactive=True)
"""

import asyncio
from pathlib import Path
from typing import Any, List, Optional, Protocol

import httpx
import structlog

from clipdrive.gdrive.config import DriveConfig
from clipdrive.gdrive.errors import AuthError, AuthErrorReason

logger = structlog.get_logger()

REVOKE_URL = "https://oauth2.googleapis.com/revoke"
ABOUT_URL = "https://www.googleapis.com/drive/v3/about"

DEFAULT_SCOPES: List[str] = [
    "https://www.googleapis.com/auth/drive.file",
]


class IdentityProvider(Protocol):
    """Protocol for bearer token sources.

    Providers own persistence. They never raise for "no token available";
    they return None instead and leave the classification to the caller.
    """

    async def get_token(self, interactive: bool) -> Optional[str]:
        """Return a cached token, or run consent when interactive.

        Raises:
            AuthError: If the consent flow itself fails.
        """
        ...

    async def remove_cached_token(self, token: str) -> None:
        """Drop ``token`` from the cache so it is never handed out again."""
        ...

    async def forget(self) -> None:
        """Discard every persisted grant (used on disconnect)."""
        ...


class StaticTokenProvider:
    """Identity provider serving one fixed token.

    Once the token has been removed it is gone for good; interactive
    acquisition cannot mint a new one.
    """

    def __init__(self, token: Optional[str]) -> None:
        self._token = token or None

    async def get_token(self, interactive: bool) -> Optional[str]:
        return self._token

    async def remove_cached_token(self, token: str) -> None:
        if self._token == token:
            self._token = None

    async def forget(self) -> None:
        self._token = None


class GoogleOAuthIdentityProvider:
    """Identity provider using the installed application OAuth2 flow.

    The first interactive call opens a browser for consent. Tokens are cached
    in ``token_path`` and silently refreshed from the stored refresh token
    on later runs. All google-auth calls are blocking and are run in a
    worker thread.

    Attributes:
        client_secrets_path: Path to the OAuth2 client secrets JSON file.
        token_path: Path where the access/refresh tokens are stored.
        scopes: List of OAuth2 scopes to request.
    """

    def __init__(
        self,
        client_secrets_path: Path,
        token_path: Optional[Path] = None,
        scopes: Optional[List[str]] = None,
    ) -> None:
        """Initialize the OAuth2 identity provider.

        Args:
            client_secrets_path: Path to OAuth2 client secrets JSON file.
                Download this from Google Cloud Console.
            token_path: Path to store/load the token. Defaults to
                .clipdrive_token.json next to the client secrets.
            scopes: OAuth2 scopes to request. Defaults to drive.file.
        """
        self.client_secrets_path = Path(client_secrets_path)
        self.token_path = token_path or self.client_secrets_path.parent / ".clipdrive_token.json"
        self.scopes = scopes or DEFAULT_SCOPES.copy()
        self._credentials: Optional[Any] = None
        self._loaded = False

    async def get_token(self, interactive: bool) -> Optional[str]:
        return await asyncio.to_thread(self._get_token_sync, interactive)

    async def remove_cached_token(self, token: str) -> None:
        creds = self._credentials
        if creds is not None and creds.token == token:
            # Keep the refresh token; the next call mints a new access token
            creds.token = None
            logger.debug("oauth_token_removed", token_path=str(self.token_path))

    async def forget(self) -> None:
        self._credentials = None
        self._loaded = True
        await asyncio.to_thread(self.token_path.unlink, missing_ok=True)
        logger.info("oauth_token_forgotten", token_path=str(self.token_path))

    def _get_token_sync(self, interactive: bool) -> Optional[str]:
        # Import here to avoid loading Google auth libraries until needed
        from google.auth.transport.requests import Request

        creds = self._load_credentials()

        if creds is not None and creds.valid:
            return str(creds.token)

        if creds is not None and creds.refresh_token:
            try:
                logger.debug("oauth_token_refreshing")
                creds.refresh(Request())  # type: ignore[no-untyped-call]
                self._save_credentials(creds)
                return str(creds.token)
            except Exception as e:
                logger.warning(
                    "oauth_token_refresh_failed",
                    error=str(e),
                    token_path=str(self.token_path),
                )
                self._credentials = None

        if not interactive:
            return None

        creds = self._run_consent_flow()
        self._save_credentials(creds)
        return str(creds.token)

    def _load_credentials(self) -> Optional[Any]:
        """Load cached credentials from disk once per provider lifetime."""
        if self._loaded:
            return self._credentials
        self._loaded = True

        from google.oauth2.credentials import Credentials

        if self.token_path.exists():
            try:
                self._credentials = Credentials.from_authorized_user_file(  # type: ignore[no-untyped-call]
                    str(self.token_path), self.scopes
                )
            except Exception as e:
                # Token file is invalid, will re-authenticate
                logger.warning("oauth_token_file_invalid", error=str(e))
                self._credentials = None
        return self._credentials

    def _run_consent_flow(self) -> Any:
        from google_auth_oauthlib.flow import InstalledAppFlow

        if not self.client_secrets_path.exists():
            logger.error(
                "client_secrets_not_found",
                path=str(self.client_secrets_path),
            )
            raise AuthError(
                f"Client secrets file not found: {self.client_secrets_path}. "
                "Download OAuth2 credentials from Google Cloud Console: "
                "https://console.cloud.google.com/apis/credentials",
                reason=AuthErrorReason.CONSENT_FAILED,
            )

        try:
            logger.info("oauth_flow_started", detail="browser will open for authorization")
            flow = InstalledAppFlow.from_client_secrets_file(
                str(self.client_secrets_path), self.scopes
            )
            return flow.run_local_server(port=0)
        except Exception as e:
            logger.error(
                "oauth_flow_failed",
                error=str(e),
                client_secrets_path=str(self.client_secrets_path),
            )
            raise AuthError(
                f"OAuth2 flow failed: {e}. "
                "Ensure you have enabled the Google Drive API in your GCP project "
                "and configured the OAuth consent screen.",
                reason=AuthErrorReason.CONSENT_FAILED,
            ) from e

    def _save_credentials(self, creds: Any) -> None:
        self._credentials = creds
        try:
            self.token_path.parent.mkdir(parents=True, exist_ok=True)
            self.token_path.write_text(creds.to_json())
        except OSError as e:
            # Non-fatal: we have valid creds, just can't cache them
            logger.warning("oauth_token_save_failed", error=str(e))


class CredentialManager:
    """Acquires, refreshes and revokes the bearer token used by the transport.

    No expiry is tracked locally. A token is considered stale only when a
    request carrying it comes back with 401, at which point the transport
    calls ``refresh``.

    Refreshes are serialised: when several uploads hit 401 at the same time,
    the first one runs the refresh and the others reuse its result.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the credential manager.

        Args:
            provider: Source of bearer tokens.
            http_client: Client used for revocation and connection checks.
                Created lazily when omitted.
        """
        self._provider = provider
        self._http_client = http_client
        self._token: Optional[str] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def current_token(self) -> Optional[str]:
        """The last token handed out, if any."""
        return self._token

    async def acquire(self, interactive: bool = False) -> str:
        """Return a bearer token.

        Args:
            interactive: Allow a user-facing consent flow when no token is
                cached.

        Returns:
            The bearer token.

        Raises:
            AuthError: If no token is cached and consent was not allowed, or
                consent was declined or failed.
        """
        token = await self._provider.get_token(interactive)
        if not token:
            if interactive:
                message = "Authorization was declined or no token was received."
            else:
                message = "Not authenticated with Google Drive. Run 'clipdrive connect' first."
            raise AuthError(message, reason=AuthErrorReason.NO_TOKEN)

        self._token = token
        return token

    async def refresh(self, stale_token: Optional[str] = None) -> str:
        """Replace a rejected token with a fresh one.

        Args:
            stale_token: The token that was rejected. If another caller has
                already replaced it, the replacement is returned without a
                second refresh.

        Returns:
            The new bearer token.

        Raises:
            AuthError: With reason REFRESH_FAILED if no new token could be
                obtained.
        """
        async with self._refresh_lock:
            if stale_token is not None and self._token is not None and self._token != stale_token:
                logger.debug("token_refresh_reused")
                return self._token

            old_token = self._token or stale_token
            if old_token:
                await self._provider.remove_cached_token(old_token)
            self._token = None

            try:
                token = await self.acquire(interactive=True)
            except AuthError as e:
                logger.error("token_refresh_failed", error=str(e))
                raise AuthError(
                    f"Failed to refresh Google Drive credentials: {e}",
                    reason=AuthErrorReason.REFRESH_FAILED,
                ) from e

            logger.info("token_refreshed")
            return token

    async def revoke(self) -> None:
        """Revoke the cached token with Google and drop it locally.

        Does nothing when no token is cached. The remote call is best
        effort: the local cache is cleared even when it fails.
        """
        token = await self._provider.get_token(False)
        if not token:
            return

        try:
            client = self._get_http_client()
            response = await client.post(REVOKE_URL, data={"token": token})
            if response.status_code >= 400:
                logger.warning("token_revoke_rejected", status_code=response.status_code)
        except httpx.HTTPError as e:
            logger.warning("token_revoke_failed", error=str(e))
        finally:
            await self._provider.remove_cached_token(token)
            await self._provider.forget()
            self._token = None

        logger.info("token_revoked")

    async def check_connection(self) -> bool:
        """Return True if a cached token exists and Drive accepts it.

        Never prompts the user and never raises.
        """
        try:
            token = await self.acquire(interactive=False)
        except AuthError:
            return False

        try:
            client = self._get_http_client()
            response = await client.get(
                ABOUT_URL,
                params={"fields": "user"},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.warning("connection_check_failed", error=str(e))
            return False
        return response.is_success

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client


def create_identity_provider(config: Optional[DriveConfig] = None) -> IdentityProvider:
    """Factory function to create the appropriate identity provider.

    Returns a StaticTokenProvider when a fixed token is configured (for
    example through CLIPDRIVE_TOKEN), otherwise the OAuth2 provider.
    """
    if config is None:
        config = DriveConfig()

    if config.auth.static_token:
        return StaticTokenProvider(config.auth.static_token)

    return GoogleOAuthIdentityProvider(
        client_secrets_path=config.auth.client_secrets_path,
        token_path=config.auth.token_path,
        scopes=config.auth.scopes,
    )
