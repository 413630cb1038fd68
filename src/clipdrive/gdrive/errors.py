"""Custom exception classes for the Google Drive upload pipeline.

This module defines the error taxonomy for every layer of the pipeline:
credentials, transport, folder resolution, upload and the pipeline itself.
Each exception carries the context needed to produce a useful message for
the user who triggered the export.
"""

from enum import Enum
from typing import Optional


class ClipDriveError(Exception):
    """Base class for all clipdrive errors."""


class AuthErrorReason(Enum):
    """Why a credential could not be obtained.

    Attributes:
        NO_TOKEN: No cached token and interactive consent was not allowed,
            or the user declined consent.
        CONSENT_FAILED: The consent flow itself failed (browser, network,
            misconfigured client secrets).
        REFRESH_FAILED: A refresh was requested after a 401 and did not
            produce a new token.
    """

    NO_TOKEN = "no_token"
    CONSENT_FAILED = "consent_failed"
    REFRESH_FAILED = "refresh_failed"


class AuthError(ClipDriveError):
    """Raised when no bearer token can be obtained.

    This typically occurs when:
    - The user has never connected the Drive account
    - The user declined the consent screen
    - The cached token was revoked and re-consent failed

    To resolve: Run `clipdrive connect` to authorize the application.
    """

    def __init__(
        self,
        message: str,
        reason: AuthErrorReason = AuthErrorReason.NO_TOKEN,
    ) -> None:
        self.reason = reason
        super().__init__(message)


class TransportError(ClipDriveError):
    """Raised when an HTTP call could not be completed."""


class MaxRetriesExceededError(TransportError):
    """Raised when a request exhausted its attempt budget.

    The last observed failure is kept in ``last_error``: either the
    exception raised by the HTTP client or a short description of the
    last retryable status (for example ``"HTTP 429"``).
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[object] = None,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


class NetworkError(MaxRetriesExceededError):
    """Raised when the attempt budget was exhausted by I/O failures.

    This typically occurs when:
    - DNS resolution fails
    - The connection times out or is reset
    - The machine is offline
    """


class ResolveError(ClipDriveError):
    """Raised when a folder path segment cannot be found or created.

    This typically occurs when:
    - The parent folder was deleted or is not shared with the account
    - The account only has 'Viewer' access to the parent folder
    - The transport gave up after repeated failures
    """

    def __init__(
        self,
        message: str,
        segment: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> None:
        self.segment = segment
        self.parent_id = parent_id
        super().__init__(message)


class UploadError(ClipDriveError):
    """Raised when the multipart create call does not succeed.

    This typically occurs when:
    - No write permission on the target folder
    - Storage quota exceeded
    - The target folder no longer exists
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        file_name: Optional[str] = None,
        folder_id: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.file_name = file_name
        self.folder_id = folder_id
        super().__init__(message)


class PipelineErrorReason(Enum):
    """Terminal failure classes reported by the upload pipeline."""

    NOT_AUTHENTICATED = "not_authenticated"
    INVALID_FOLDER = "invalid_folder"
    UPLOAD_FAILED = "upload_failed"


class PipelineError(ClipDriveError):
    """Raised when the pipeline cannot deliver the document."""

    def __init__(
        self,
        message: str,
        reason: PipelineErrorReason,
        cause: Optional[Exception] = None,
    ) -> None:
        self.reason = reason
        self.cause = cause
        super().__init__(message)
