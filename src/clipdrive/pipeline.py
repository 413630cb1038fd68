"""
Upload Pipeline Coordinator

Delivers a rendered markdown document to Google Drive.

Processing flow:
1. Credential check - a cached token must exist (no consent prompt)
2. Root folder - parsed from a raw id or a folder sharing URL
3. Folder path - resolved (found or created) below the root; on failure the
   document goes to the root folder instead
4. Upload - one multipart create of ``<title>.md``

The pipeline only reports success or failure. Whether to fall back to a
local download is decided by the caller.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

import structlog

from clipdrive.gdrive.auth import CredentialManager, create_identity_provider
from clipdrive.gdrive.config import DriveConfig, UploadTargetConfig
from clipdrive.gdrive.errors import (
    AuthError,
    PipelineError,
    PipelineErrorReason,
    TransportError,
    UploadError,
)
from clipdrive.gdrive.folders import FolderPathSpec, FolderResolver
from clipdrive.gdrive.rate_limiter import RateLimiter
from clipdrive.gdrive.transport import DriveTransport
from clipdrive.gdrive.uploader import MARKDOWN_MIME, DriveUploader, RemoteFile, UploadRequest

logger = structlog.get_logger()

FOLDER_URL_PATTERN = re.compile(r"/folders/([a-zA-Z0-9_-]+)")


def parse_folder_id(value: Optional[str]) -> Optional[str]:
    """Extract a Drive folder id from a raw id or a folder sharing URL.

    Examples:
        >>> parse_folder_id("https://drive.google.com/drive/folders/XYZ123")
        'XYZ123'
        >>> parse_folder_id("  ") is None
        True
    """
    if not value or not value.strip():
        return None

    trimmed = value.strip()
    if "drive.google.com" in trimmed:
        match = FOLDER_URL_PATTERN.search(trimmed)
        return match.group(1) if match else None

    return trimmed


@dataclass
class PipelineResult:
    """Outcome of one pipeline run.

    Attributes:
        success: Whether the file was created in Drive.
        message: Human-readable summary for the user.
        remote_file: Metadata of the created file on success.
        target_folder_id: Folder the upload was aimed at.
        folder_fallback: True if folder resolution failed and the root
            folder was used instead.
        reason: Failure class when ``success`` is False.
    """

    success: bool
    message: str
    remote_file: Optional[RemoteFile] = None
    target_folder_id: Optional[str] = None
    folder_fallback: bool = False
    reason: Optional[PipelineErrorReason] = None

    def raise_for_failure(self) -> None:
        if not self.success:
            raise PipelineError(self.message, reason=self.reason or PipelineErrorReason.UPLOAD_FAILED)


class UploadPipeline:
    """
    Coordinates credential check, folder resolution and upload.

    Folder resolution failures never fail the run: the file is uploaded to
    the root folder and ``PipelineResult.folder_fallback`` is set.
    """

    def __init__(
        self,
        credentials: CredentialManager,
        resolver: FolderResolver,
        uploader: DriveUploader,
    ):
        self.credentials = credentials
        self.resolver = resolver
        self.uploader = uploader

    async def run(
        self,
        content: str,
        title: str,
        folder_path_template: str,
        config: UploadTargetConfig,
    ) -> PipelineResult:
        """
        Upload ``content`` as ``<title>.md``.

        Args:
            content: Rendered markdown.
            title: File name without extension.
            folder_path_template: Slash-delimited folder path, already
                substituted. Empty means the root folder.
            config: Upload target settings.

        Returns:
            PipelineResult describing success or the terminal failure.
        """
        log = logger.bind(title=title)

        try:
            await self.credentials.acquire(interactive=False)
        except AuthError as e:
            log.warning("pipeline_not_authenticated", error=str(e))
            return PipelineResult(
                success=False,
                message="Not authenticated with Google Drive. Please connect first.",
                reason=PipelineErrorReason.NOT_AUTHENTICATED,
            )

        root_folder_id = parse_folder_id(config.folder_id)
        if root_folder_id is None:
            log.warning("pipeline_invalid_folder", folder_id=config.folder_id)
            return PipelineResult(
                success=False,
                message="Invalid Google Drive folder ID. Please check your settings.",
                reason=PipelineErrorReason.INVALID_FOLDER,
            )

        target_folder_id, fallback = await self._resolve_target(
            folder_path_template, root_folder_id
        )

        file_name = f"{title}.md"
        request = UploadRequest(
            file_name=file_name,
            content=content.encode("utf-8"),
            mime_type=MARKDOWN_MIME,
            parent_folder_id=target_folder_id,
        )

        try:
            remote = await self.uploader.upload(request)
        except (UploadError, TransportError, AuthError) as e:
            log.error("pipeline_upload_failed", folder_id=target_folder_id, error=str(e))
            return PipelineResult(
                success=False,
                message=str(e),
                target_folder_id=target_folder_id,
                folder_fallback=fallback,
                reason=(
                    PipelineErrorReason.NOT_AUTHENTICATED
                    if isinstance(e, AuthError)
                    else PipelineErrorReason.UPLOAD_FAILED
                ),
            )

        log.info(
            "pipeline_completed",
            file_id=remote.id,
            folder_id=target_folder_id,
            folder_fallback=fallback,
        )
        return PipelineResult(
            success=True,
            message=f"Uploaded to Google Drive: {file_name}",
            remote_file=remote,
            target_folder_id=target_folder_id,
            folder_fallback=fallback,
        )

    async def run_or_raise(
        self,
        content: str,
        title: str,
        folder_path_template: str,
        config: UploadTargetConfig,
    ) -> RemoteFile:
        """Like ``run`` but raises PipelineError on failure."""
        result = await self.run(content, title, folder_path_template, config)
        result.raise_for_failure()
        if result.remote_file is None:
            raise PipelineError(result.message, reason=PipelineErrorReason.UPLOAD_FAILED)
        return result.remote_file

    async def _resolve_target(self, template: str, root_folder_id: str) -> tuple[str, bool]:
        """Resolve the folder path, falling back to the root on any error."""
        if not template:
            return root_folder_id, False

        folder_path = template[:-1] if template.endswith("/") else template
        path_spec = FolderPathSpec.parse(folder_path)
        if not path_spec:
            return root_folder_id, False

        try:
            return await self.resolver.resolve(path_spec, root_folder_id), False
        except Exception as e:
            logger.warning(
                "folder_resolution_failed",
                path=str(path_spec),
                root_folder_id=root_folder_id,
                error=str(e),
                detail="uploading to root folder instead",
            )
            return root_folder_id, True


def create_pipeline(
    config: DriveConfig | None = None,
    credentials: CredentialManager | None = None,
) -> tuple[UploadPipeline, DriveTransport]:
    """
    Factory function to wire a pipeline from configuration.

    Args:
        config: Drive configuration. Defaults are used when omitted.
        credentials: Existing credential manager to share between pipelines.

    Returns:
        The pipeline and its transport. Close the transport with
        ``await transport.aclose()`` when done.
    """
    config = config or DriveConfig()
    credentials = credentials or CredentialManager(create_identity_provider(config))

    rate_limiter = None
    if config.rate_limit.enabled:
        rate_limiter = RateLimiter(
            max_requests=config.rate_limit.requests_per_100_seconds,
            window_seconds=100,
        )

    transport = DriveTransport(
        credentials,
        rate_limiter=rate_limiter,
        max_attempts=config.transport.max_attempts,
        timeout_seconds=config.transport.timeout_seconds,
    )
    pipeline = UploadPipeline(
        credentials=credentials,
        resolver=FolderResolver(transport),
        uploader=DriveUploader(transport),
    )
    return pipeline, transport
