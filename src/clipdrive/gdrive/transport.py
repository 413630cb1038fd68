"""HTTP transport for Google Drive API calls.

Every Drive request in clipdrive goes through ``DriveTransport.send``, which
attaches the bearer token and recovers from the three transient conditions
the API produces:

- network failures (DNS, timeouts, resets): exponential backoff
- 429 rate limiting: wait ``Retry-After`` seconds, else exponential backoff
- 401 on the first attempt: refresh the credential once and retry

All three share one attempt counter, so a call never makes more than
``max_attempts`` requests whatever the mix of failures.

Example:
    async with DriveTransport(credentials) as transport:
        response = await transport.send(
            "GET", transport.drive_url("files"), params={"q": query}
        )
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx
import structlog

from clipdrive.gdrive.auth import CredentialManager
from clipdrive.gdrive.errors import MaxRetriesExceededError, NetworkError
from clipdrive.gdrive.rate_limiter import RateLimiter

logger = structlog.get_logger()

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
UPLOAD_API_BASE = "https://www.googleapis.com/upload/drive/v3"

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_TIMEOUT_SECONDS = 30.0


class SendPhase(Enum):
    """States of a single ``send`` call."""

    ATTEMPTING = "attempting"
    WAITING = "waiting"
    REFRESHING = "refreshing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RetryState:
    """Per-call retry bookkeeping. Never shared between calls.

    Attributes:
        attempt: Zero-based index of the current attempt.
        last_error: Last exception or retryable status observed.
        refreshed: Whether the credential was already refreshed.
        wait_seconds: Delay scheduled for the WAITING phase.
        wait_reason: Why the call is waiting ("network" or "rate_limited").
    """

    attempt: int = 0
    last_error: Optional[object] = None
    refreshed: bool = False
    wait_seconds: float = 0.0
    wait_reason: str = ""


def backoff_seconds(attempt: int) -> float:
    """Exponential backoff delay for a zero-based attempt index."""
    return float(2 ** attempt)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (delta-seconds or HTTP-date).

    Returns:
        Seconds to wait, or None if the header is absent or unparseable.
    """
    if value is None:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
        return max(0.0, seconds)
    return seconds if math.isfinite(seconds) and seconds >= 0 else None


def api_error_message(response: httpx.Response, default: str) -> str:
    """Extract ``error.message`` from a Drive error body, if there is one."""
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return default


class DriveTransport:
    """Authorized, retrying HTTP primitive for the Drive REST API.

    The underlying ``httpx.AsyncClient`` is created on first use and reused
    until ``aclose`` is called.
    """

    def __init__(
        self,
        credentials: CredentialManager,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the transport.

        Args:
            credentials: Credential manager supplying the bearer token.
            client: HTTP client to use. Created lazily when omitted.
            rate_limiter: Optional limiter awaited before every attempt.
            max_attempts: Default attempt ceiling per call.
            timeout_seconds: Per-request timeout for the lazily created client.
            sleep: Coroutine used for backoff waits.
        """
        self._credentials = credentials
        self._client = client
        self._rate_limiter = rate_limiter
        self._max_attempts = max_attempts
        self._timeout_seconds = timeout_seconds
        self._sleep = sleep

    @property
    def credentials(self) -> CredentialManager:
        return self._credentials

    @staticmethod
    def drive_url(path: str) -> str:
        return f"{DRIVE_API_BASE}/{path.lstrip('/')}"

    @staticmethod
    def upload_url(path: str) -> str:
        return f"{UPLOAD_API_BASE}/{path.lstrip('/')}"

    async def __aenter__(self) -> "DriveTransport":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_seconds)
        return self._client

    async def send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        max_attempts: Optional[int] = None,
    ) -> httpx.Response:
        """Send one logical request, retrying transient failures.

        Any status other than 429 (and a first 401) is returned unchanged;
        interpreting business success or failure is the caller's job.

        Args:
            method: HTTP method.
            url: Absolute URL.
            params: Query parameters.
            json: JSON body.
            content: Raw body bytes.
            headers: Extra headers. Authorization is always overwritten.
            max_attempts: Attempt ceiling for this call.

        Returns:
            The final HTTP response.

        Raises:
            AuthError: If no credential is available or a refresh fails.
            NetworkError: If every remaining attempt failed at the I/O level.
            MaxRetriesExceededError: If the attempt budget ran out.
        """
        limit = max(1, max_attempts or self._max_attempts)
        state = RetryState()
        token = self._credentials.current_token or await self._credentials.acquire(
            interactive=False
        )
        client = self._get_client()

        phase = SendPhase.ATTEMPTING
        response: Optional[httpx.Response] = None

        while phase not in (SendPhase.DONE, SendPhase.FAILED):
            if phase is SendPhase.ATTEMPTING:
                phase, response = await self._attempt(
                    client, state, limit, token, method, url, params, json, content, headers
                )

            elif phase is SendPhase.WAITING:
                logger.info(
                    "request_retry_wait",
                    reason=state.wait_reason,
                    wait_seconds=state.wait_seconds,
                    attempt=state.attempt + 1,
                    max_attempts=limit,
                )
                await self._sleep(state.wait_seconds)
                state.attempt += 1
                phase = SendPhase.ATTEMPTING

            elif phase is SendPhase.REFRESHING:
                logger.info("auth_token_expired", detail="attempting refresh")
                state.refreshed = True
                token = await self._credentials.refresh(stale_token=token)
                state.attempt += 1
                phase = SendPhase.ATTEMPTING

        if phase is SendPhase.DONE and response is not None:
            return response

        logger.error(
            "request_failed",
            method=method,
            url=url,
            attempts=state.attempt + 1,
            error=str(state.last_error),
        )
        if isinstance(state.last_error, httpx.TransportError):
            raise NetworkError(
                f"Network error after {state.attempt + 1} attempts: {state.last_error}",
                attempts=state.attempt + 1,
                last_error=state.last_error,
            ) from state.last_error
        raise MaxRetriesExceededError(
            f"Max retries exceeded after {state.attempt + 1} attempts: {state.last_error}",
            attempts=state.attempt + 1,
            last_error=state.last_error,
        )

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        state: RetryState,
        limit: int,
        token: str,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]],
        json: Optional[Any],
        content: Optional[bytes],
        headers: Optional[Dict[str, str]],
    ) -> Tuple[SendPhase, Optional[httpx.Response]]:
        """Run one HTTP attempt and decide the next phase."""
        has_budget = state.attempt < limit - 1

        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()

        request_headers = dict(headers or {})
        request_headers["Authorization"] = f"Bearer {token}"

        try:
            response = await client.request(
                method,
                url,
                params=params,
                json=json,
                content=content,
                headers=request_headers,
            )
        except httpx.TransportError as e:
            state.last_error = e
            logger.warning(
                "request_network_error",
                method=method,
                url=url,
                attempt=state.attempt + 1,
                error=str(e),
            )
            if not has_budget:
                return SendPhase.FAILED, None
            state.wait_seconds = backoff_seconds(state.attempt)
            state.wait_reason = "network"
            return SendPhase.WAITING, None

        if response.status_code == 429:
            state.last_error = "HTTP 429"
            if not has_budget:
                return SendPhase.FAILED, None
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            state.wait_seconds = (
                retry_after if retry_after is not None else backoff_seconds(state.attempt)
            )
            state.wait_reason = "rate_limited"
            return SendPhase.WAITING, None

        if (
            response.status_code == 401
            and state.attempt == 0
            and not state.refreshed
            and has_budget
        ):
            state.last_error = "HTTP 401"
            return SendPhase.REFRESHING, None

        return SendPhase.DONE, response
