"""
Shared pytest fixtures for clipdrive tests.

This module provides common fixtures used across test modules including:
- An in-memory fake of the Drive REST endpoints served through httpx.MockTransport
- A recording sleep so backoff waits are observable without waiting
- Credential manager, transport, resolver and uploader wired to the fake
"""

import json
import re
import sys
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from clipdrive.gdrive.auth import CredentialManager, StaticTokenProvider
from clipdrive.gdrive.folders import FOLDER_MIME, FolderResolver
from clipdrive.gdrive.transport import DriveTransport
from clipdrive.gdrive.uploader import DriveUploader

ROOT_FOLDER_ID = "root_folder_123"

_QUERY_PATTERN = re.compile(r"name='((?:[^'\\]|\\.)*)' and '([^']*)' in parents")


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def parse_multipart(request: httpx.Request) -> Tuple[Dict[str, Any], str, bytes]:
    """Split a multipart/related upload into metadata, media type and content."""
    content_type = request.headers["Content-Type"]
    boundary = content_type.split("boundary=", 1)[1]
    parts = request.content.split(f"\r\n--{boundary}".encode("ascii"))
    # parts: leading empty chunk, metadata, media, closing "--"
    assert parts[-1] == b"--"
    metadata_headers, metadata_body = parts[1].lstrip(b"\r\n").split(b"\r\n\r\n", 1)
    media_headers, media_body = parts[2].lstrip(b"\r\n").split(b"\r\n\r\n", 1)
    assert b"application/json" in metadata_headers
    media_type = media_headers.decode("utf-8").split(":", 1)[1].strip()
    return json.loads(metadata_body), media_type, media_body


class FakeDrive:
    """In-memory stand-in for the Drive v3 endpoints used by clipdrive.

    Folders and files live in dictionaries. Every request is recorded, and
    ``fail_next`` queues canned responses or exceptions that are served
    before normal handling.
    """

    def __init__(self) -> None:
        self.folders: Dict[str, Dict[str, Any]] = {}
        self.files: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.queued: List[Any] = []
        self.valid_tokens = {"token-1"}
        self._next_id = 0

    def fail_next(self, *outcomes: Any) -> None:
        self.queued.extend(outcomes)

    def add_folder(self, name: str, parent_id: str, trashed: bool = False) -> str:
        folder_id = self._new_id("folder")
        self.folders[folder_id] = {"name": name, "parent": parent_id, "trashed": trashed}
        return folder_id

    def children(self, parent_id: str) -> List[str]:
        return [f["name"] for f in self.folders.values() if f["parent"] == parent_id]

    def count(self, method: str, path_fragment: str) -> int:
        return sum(
            1 for r in self.requests
            if r.method == method and path_fragment in r.url.path
        )

    @property
    def search_count(self) -> int:
        return sum(
            1 for r in self.requests
            if r.method == "GET" and r.url.path == "/drive/v3/files"
        )

    @property
    def create_folder_count(self) -> int:
        return sum(
            1 for r in self.requests
            if r.method == "POST" and r.url.path == "/drive/v3/files"
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.queued:
            outcome = self.queued.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token not in self.valid_tokens:
            return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})

        path = request.url.path
        if request.method == "GET" and path == "/drive/v3/files":
            return self._search(request)
        if request.method == "POST" and path == "/drive/v3/files":
            return self._create_folder(request)
        if request.method == "POST" and path == "/upload/drive/v3/files":
            return self._upload(request)
        if request.method == "GET" and path.startswith("/drive/v3/files/"):
            folder_id = path.rsplit("/", 1)[1]
            if folder_id in self.folders or folder_id == ROOT_FOLDER_ID:
                return httpx.Response(200, json={"id": folder_id, "name": "x"})
            return httpx.Response(404, json={"error": {"message": "File not found"}})
        if request.method == "GET" and path == "/drive/v3/about":
            return httpx.Response(200, json={"user": {"emailAddress": "me@example.com"}})
        return httpx.Response(404, json={"error": {"message": "Unknown endpoint"}})

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}_{self._next_id}"

    def _search(self, request: httpx.Request) -> httpx.Response:
        query = request.url.params["q"]
        match = _QUERY_PATTERN.search(query)
        assert match is not None, query
        assert f"mimeType='{FOLDER_MIME}'" in query
        assert "trashed=false" in query
        name, parent = _unescape(match.group(1)), match.group(2)
        hits = [
            {"id": folder_id}
            for folder_id, folder in self.folders.items()
            if folder["name"] == name and folder["parent"] == parent and not folder["trashed"]
        ]
        return httpx.Response(200, json={"files": hits})

    def _create_folder(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["mimeType"] == FOLDER_MIME
        folder_id = self.add_folder(body["name"], body["parents"][0])
        return httpx.Response(200, json={"id": folder_id})

    def _upload(self, request: httpx.Request) -> httpx.Response:
        assert request.url.params["uploadType"] == "multipart"
        metadata, media_type, content = parse_multipart(request)
        file_id = self._new_id("file")
        self.files[file_id] = {
            "metadata": metadata,
            "media_type": media_type,
            "content": content,
        }
        return httpx.Response(
            200,
            json={
                "id": file_id,
                "name": metadata["name"],
                "mimeType": metadata["mimeType"],
                "parents": metadata["parents"],
            },
        )


class SleepRecorder:
    """Async replacement for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class RecordingProvider(StaticTokenProvider):
    """Static provider that hands out a new token after each removal."""

    def __init__(self, tokens: List[str]) -> None:
        super().__init__(tokens[0] if tokens else None)
        self._pending = list(tokens[1:])
        self.removed: List[str] = []
        self.interactive_calls = 0
        self.forgotten = False

    async def get_token(self, interactive: bool) -> Optional[str]:
        if interactive:
            self.interactive_calls += 1
            if self._token is None and self._pending:
                self._token = self._pending.pop(0)
        return self._token

    async def remove_cached_token(self, token: str) -> None:
        self.removed.append(token)
        await super().remove_cached_token(token)

    async def forget(self) -> None:
        self.forgotten = True
        await super().forget()


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fake_drive() -> FakeDrive:
    """Create an empty in-memory Drive."""
    return FakeDrive()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    """Create a sleep replacement that records backoff delays."""
    return SleepRecorder()


@pytest.fixture
def provider() -> RecordingProvider:
    """Create an identity provider holding token-1, then token-2 on refresh."""
    return RecordingProvider(["token-1", "token-2"])


@pytest.fixture
def credentials(provider: RecordingProvider) -> CredentialManager:
    """Create a credential manager backed by the recording provider."""
    return CredentialManager(provider)


@pytest_asyncio.fixture
async def transport(
    credentials: CredentialManager,
    fake_drive: FakeDrive,
    sleep_recorder: SleepRecorder,
) -> AsyncIterator[DriveTransport]:
    """Create a transport routed to the fake Drive, closed after the test."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_drive.handler))
    transport = DriveTransport(credentials, client=client, sleep=sleep_recorder)
    yield transport
    await transport.aclose()


@pytest.fixture
def resolver(transport: DriveTransport) -> FolderResolver:
    """Create a folder resolver using the fake transport."""
    return FolderResolver(transport)


@pytest.fixture
def uploader(transport: DriveTransport) -> DriveUploader:
    """Create an uploader using the fake transport."""
    return DriveUploader(transport)
