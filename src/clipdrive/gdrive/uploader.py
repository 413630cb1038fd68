"""Google Drive file uploader for the clipdrive pipeline.

This module builds ``multipart/related`` create requests (JSON metadata part
plus raw content part) and submits them through the Drive transport.

Example:
    from clipdrive.gdrive.uploader import DriveUploader, UploadRequest

    uploader = DriveUploader(transport)
    remote = await uploader.upload(
        UploadRequest(
            file_name="notes.md",
            content=b"# Notes",
            mime_type="text/markdown",
            parent_folder_id="folder123",
        )
    )
"""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

import structlog

from clipdrive.gdrive.errors import TransportError, UploadError
from clipdrive.gdrive.transport import DriveTransport, api_error_message

logger = structlog.get_logger()

MARKDOWN_MIME = "text/markdown"


@dataclass(frozen=True)
class UploadRequest:
    """One file to create in Drive.

    Attributes:
        file_name: Name of the remote file, extension included.
        content: Raw file bytes.
        mime_type: MIME type recorded on the remote file.
        parent_folder_id: Folder the file is created in.
    """

    file_name: str
    content: bytes
    mime_type: str
    parent_folder_id: str


@dataclass
class RemoteFile:
    """Metadata of a file created in Drive.

    Attributes:
        id: Google Drive file ID.
        name: Name of the file.
        mime_type: MIME type reported by Drive.
        parents: Parent folder IDs.
    """

    id: str
    name: str
    mime_type: str = ""
    parents: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteFile":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            mime_type=str(data.get("mimeType", "")),
            parents=list(data.get("parents", [])),
        )


def new_boundary(content: bytes) -> str:
    """Return a multipart boundary that does not occur in ``content``."""
    while True:
        boundary = f"clipdrive-{uuid.uuid4().hex}"
        if boundary.encode("ascii") not in content:
            return boundary


def build_multipart_body(request: UploadRequest, boundary: str) -> Tuple[bytes, str]:
    """Encode ``request`` as a two-part ``multipart/related`` body.

    Returns:
        The body bytes and the matching Content-Type header value.
    """
    metadata = {
        "name": request.file_name,
        "mimeType": request.mime_type,
        "parents": [request.parent_folder_id],
    }
    delimiter = f"\r\n--{boundary}\r\n".encode("ascii")
    close_delimiter = f"\r\n--{boundary}--".encode("ascii")

    body = b"".join([
        delimiter,
        b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
        json.dumps(metadata).encode("utf-8"),
        delimiter,
        f"Content-Type: {request.mime_type}\r\n\r\n".encode("utf-8"),
        request.content,
        close_delimiter,
    ])
    return body, f"multipart/related; boundary={boundary}"


class DriveUploader:
    """Creates files in Google Drive with a single multipart request."""

    def __init__(self, transport: DriveTransport) -> None:
        self._transport = transport

    async def upload(self, request: UploadRequest) -> RemoteFile:
        """Create the file described by ``request``.

        Args:
            request: File name, content, MIME type and parent folder.

        Returns:
            Metadata of the created file.

        Raises:
            UploadError: If Drive answers with a non-2xx status or an
                unreadable body.
            TransportError: If the transport gave up.
            AuthError: If no credential is available.
        """
        body, content_type = build_multipart_body(request, new_boundary(request.content))

        try:
            response = await self._transport.send(
                "POST",
                self._transport.upload_url("files"),
                params={"uploadType": "multipart", "fields": "id,name,mimeType,parents"},
                content=body,
                headers={"Content-Type": content_type},
            )
        except TransportError as e:
            logger.error(
                "upload_transport_failed",
                file_name=request.file_name,
                folder_id=request.parent_folder_id,
                error=str(e),
            )
            raise

        if not response.is_success:
            message = api_error_message(response, f"Upload failed with status {response.status_code}")
            logger.error(
                "upload_failed",
                file_name=request.file_name,
                folder_id=request.parent_folder_id,
                status_code=response.status_code,
                error=message,
            )
            raise UploadError(
                message,
                status_code=response.status_code,
                file_name=request.file_name,
                folder_id=request.parent_folder_id,
            )

        try:
            remote = RemoteFile.from_api(response.json())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(
                "upload_response_unreadable",
                file_name=request.file_name,
                folder_id=request.parent_folder_id,
                status_code=response.status_code,
                error=str(e),
            )
            raise UploadError(
                "Upload succeeded but response was unreadable",
                status_code=response.status_code,
                file_name=request.file_name,
                folder_id=request.parent_folder_id,
            ) from e

        logger.info(
            "file_uploaded",
            file_id=remote.id,
            file_name=remote.name,
            folder_id=request.parent_folder_id,
            size_bytes=len(request.content),
        )
        return remote
