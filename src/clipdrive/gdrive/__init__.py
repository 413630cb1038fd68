"""Google Drive integration for the clipdrive upload pipeline.

This module provides:
- Credential acquisition, refresh and revocation (OAuth2 or a fixed token)
- A retrying, authorized HTTP transport for the Drive REST API
- Idempotent resolution of nested folder paths
- Multipart file upload

Example:
    from clipdrive.gdrive import (
        CredentialManager,
        DriveTransport,
        DriveUploader,
        FolderPathSpec,
        FolderResolver,
        StaticTokenProvider,
    )

    credentials = CredentialManager(StaticTokenProvider(token))
    async with DriveTransport(credentials) as transport:
        folder_id = await FolderResolver(transport).resolve(
            FolderPathSpec.parse("2024/January"), root_folder_id
        )
"""

# Authentication
from clipdrive.gdrive.auth import (
    CredentialManager,
    GoogleOAuthIdentityProvider,
    IdentityProvider,
    StaticTokenProvider,
    create_identity_provider,
)

# Configuration
from clipdrive.gdrive.config import (
    AuthConfig,
    DriveConfig,
    RateLimitConfig,
    TransportConfig,
    UploadTargetConfig,
    load_config,
)

# Errors
from clipdrive.gdrive.errors import (
    AuthError,
    AuthErrorReason,
    ClipDriveError,
    MaxRetriesExceededError,
    NetworkError,
    PipelineError,
    PipelineErrorReason,
    ResolveError,
    TransportError,
    UploadError,
)

# Folders
from clipdrive.gdrive.folders import FolderPathSpec, FolderResolver

# Rate limiting
from clipdrive.gdrive.rate_limiter import RateLimiter

# Transport
from clipdrive.gdrive.transport import DriveTransport

# Uploader
from clipdrive.gdrive.uploader import DriveUploader, RemoteFile, UploadRequest

__all__ = [
    # Authentication
    "CredentialManager",
    "IdentityProvider",
    "GoogleOAuthIdentityProvider",
    "StaticTokenProvider",
    "create_identity_provider",
    # Configuration
    "DriveConfig",
    "AuthConfig",
    "TransportConfig",
    "RateLimitConfig",
    "UploadTargetConfig",
    "load_config",
    # Folders
    "FolderPathSpec",
    "FolderResolver",
    # Rate limiting
    "RateLimiter",
    # Transport
    "DriveTransport",
    # Uploader
    "DriveUploader",
    "RemoteFile",
    "UploadRequest",
    # Errors
    "ClipDriveError",
    "AuthError",
    "AuthErrorReason",
    "TransportError",
    "MaxRetriesExceededError",
    "NetworkError",
    "ResolveError",
    "UploadError",
    "PipelineError",
    "PipelineErrorReason",
]
