"""Folder path resolution for Google Drive uploads.

Turns a slash-delimited path such as ``"2024/January/Articles"`` into the id
of the deepest folder under a root folder, creating the missing segments.
Each segment is searched for before it is created, so resolving the same
path again reuses the folders created the first time.

Example:
    resolver = FolderResolver(transport)
    folder_id = await resolver.resolve(FolderPathSpec.parse("2024/January"), root_id)
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import structlog

from clipdrive.gdrive.errors import ResolveError, TransportError
from clipdrive.gdrive.transport import DriveTransport, api_error_message

logger = structlog.get_logger()

# MIME type for folders
FOLDER_MIME = "application/vnd.google-apps.folder"


@dataclass(frozen=True)
class FolderPathSpec:
    """Ordered, non-empty folder name segments of a target path.

    Attributes:
        segments: Folder names from outermost to innermost.
    """

    segments: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, path: str) -> "FolderPathSpec":
        """Split ``path`` on ``/`` and drop empty or blank segments."""
        return cls(tuple(name for name in path.split("/") if name.strip()))

    def __bool__(self) -> bool:
        return bool(self.segments)

    def __len__(self) -> int:
        return len(self.segments)

    def __str__(self) -> str:
        return "/".join(self.segments)


def escape_query_value(value: str) -> str:
    """Escape a literal for use inside a single-quoted Drive query string."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_folder_query(name: str, parent_id: str) -> str:
    """Build the Drive search query for a non-trashed child folder."""
    return (
        f"name='{escape_query_value(name)}' and "
        f"'{escape_query_value(parent_id)}' in parents and "
        f"mimeType='{FOLDER_MIME}' and "
        "trashed=false"
    )


class FolderResolver:
    """Finds or creates nested folders under a root folder.

    Segments are resolved strictly in order, because each segment's parent
    is the folder resolved for the previous one.
    """

    def __init__(self, transport: DriveTransport) -> None:
        self._transport = transport

    async def resolve(self, path_spec: FolderPathSpec, root_folder_id: str) -> str:
        """Return the id of the deepest folder of ``path_spec``.

        Args:
            path_spec: Folder segments to walk.
            root_folder_id: Folder the path is relative to.

        Returns:
            Id of the last segment's folder, or ``root_folder_id`` when the
            path has no segments.

        Raises:
            ResolveError: If searching or creating any segment fails.
        """
        current = root_folder_id

        for segment in path_spec.segments:
            existing = await self.find_folder(segment, current)
            if existing is not None:
                logger.debug("folder_found", name=segment, parent_id=current, folder_id=existing)
                current = existing
            else:
                current = await self.create_folder(segment, current)

        return current

    async def find_folder(self, name: str, parent_id: str) -> Optional[str]:
        """Return the id of a non-trashed folder named ``name`` in ``parent_id``.

        Raises:
            ResolveError: If the search request fails.
        """
        try:
            response = await self._transport.send(
                "GET",
                self._transport.drive_url("files"),
                params={"q": build_folder_query(name, parent_id), "fields": "files(id)"},
            )
        except TransportError as e:
            raise ResolveError(
                f"Failed to search for folder '{name}': {e}",
                segment=name,
                parent_id=parent_id,
            ) from e

        if not response.is_success:
            message = api_error_message(response, f"search failed with status {response.status_code}")
            logger.error(
                "folder_search_failed",
                name=name,
                parent_id=parent_id,
                status_code=response.status_code,
                error=message,
            )
            raise ResolveError(
                f"Failed to search for folder '{name}': {message}",
                segment=name,
                parent_id=parent_id,
            )

        try:
            files = response.json().get("files", [])
            return str(files[0]["id"]) if files else None
        except (ValueError, KeyError, TypeError, AttributeError, IndexError) as e:
            logger.error("folder_search_unreadable", name=name, parent_id=parent_id, error=str(e))
            raise ResolveError(
                f"Failed to search for folder '{name}': unreadable response",
                segment=name,
                parent_id=parent_id,
            ) from e

    async def create_folder(self, name: str, parent_id: str) -> str:
        """Create a folder named ``name`` inside ``parent_id``.

        Returns:
            Id of the new folder.

        Raises:
            ResolveError: If the create request fails.
        """
        metadata = {
            "name": name,
            "mimeType": FOLDER_MIME,
            "parents": [parent_id],
        }

        try:
            response = await self._transport.send(
                "POST",
                self._transport.drive_url("files"),
                json=metadata,
            )
        except TransportError as e:
            raise ResolveError(
                f"Failed to create folder '{name}': {e}",
                segment=name,
                parent_id=parent_id,
            ) from e

        if not response.is_success:
            message = api_error_message(response, "Failed to create folder")
            logger.error(
                "folder_create_failed",
                name=name,
                parent_id=parent_id,
                status_code=response.status_code,
                error=message,
            )
            raise ResolveError(
                f"Failed to create folder '{name}': {message}",
                segment=name,
                parent_id=parent_id,
            )

        try:
            folder_id = str(response.json()["id"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error("folder_create_unreadable", name=name, parent_id=parent_id, error=str(e))
            raise ResolveError(
                f"Failed to create folder '{name}': unreadable response",
                segment=name,
                parent_id=parent_id,
            ) from e

        logger.info("folder_created", name=name, parent_id=parent_id, folder_id=folder_id)
        return folder_id

    async def validate_folder_access(self, folder_id: str) -> bool:
        """Return True if ``folder_id`` exists and is visible to the account."""
        try:
            response = await self._transport.send(
                "GET",
                self._transport.drive_url(f"files/{folder_id}"),
                params={"fields": "id,name"},
            )
        except TransportError as e:
            logger.warning("folder_validation_failed", folder_id=folder_id, error=str(e))
            return False
        return response.is_success
