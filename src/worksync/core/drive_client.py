"""Google Drive v3 REST client used as the mirror target.

``DriveClient`` is a blocking ``requests`` client, one session per thread.
``DriveMirrorStore`` adapts it to the async ``MirrorStore`` contract by
running each call in a worker thread.
"""

import logging
import threading
from typing import Any

import requests

from ..errors import DriveApiError
from .async_utils import run_sync

logger = logging.getLogger(__name__)

DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DRIVE_ROOT = "root"


def _escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveClient:
    """Minimal Drive v3 client: folders and resumable uploads.

    Args:
        api_url: Base URL of the Drive metadata API.
        upload_url: Base URL of the Drive upload API.
        timeout: ``(connect, read)`` timeout passed to every request.
    """

    def __init__(
        self,
        api_url: str = DRIVE_API,
        upload_url: str = DRIVE_UPLOAD_API,
        timeout: tuple[float, float] = (10, 120),
    ):
        self.api_url = api_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/")
        self.timeout = timeout
        self._thread_local = threading.local()

    @property
    def session(self) -> requests.Session:
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = requests.Session()
        return self._thread_local.session

    @staticmethod
    def _auth(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def _check(response: requests.Response, operation: str) -> None:
        if not response.ok:
            raise DriveApiError(operation, response.status_code, response.text)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def find_folder(self, name: str, parent_id: str, token: str) -> str | None:
        """
        Return the id of the non-trashed folder *name* under *parent_id*.
        """
        query = (
            f"name='{_escape_query_value(name)}' and '{parent_id}' in parents"
            f" and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        )
        return self._find(query, token, "findFolder")

    def create_folder(self, name: str, parent_id: str, token: str) -> str:
        """
        Create folder *name* under *parent_id* (Drive root when ``"root"``).
        """
        metadata: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id != DRIVE_ROOT:
            metadata["parents"] = [parent_id]
        response = self._get_session().post(
            f"{self.api_url}/files",
            json=metadata,
            headers=self._auth(token),
            timeout=self.timeout,
        )
        self._check(response, "createFolder")
        folder_id = response.json()["id"]
        logger.debug("Created Drive folder %r -> %s", name, folder_id)
        return folder_id

    def get_or_create_folder(
        self, name: str, parent_id: str, token: str
    ) -> str:
        """Find or create a folder (idempotent by name and parent)."""
        existing = self.find_folder(name, parent_id, token)
        if existing:
            return existing
        return self.create_folder(name, parent_id, token)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def upload_file_resumable(
        self,
        name: str,
        data: bytes,
        content_type: str,
        folder_id: str,
        token: str,
        existing_file_id: str | None = None,
    ) -> str:
        """Upload *data* with a resumable session.

        A new file is created in *folder_id*; with *existing_file_id* the
        content of that file is replaced instead (PATCH).

        Returns:
            The Drive file id.

        Raises:
            DriveApiError: If either the session init or the upload fails.
        """
        metadata: dict[str, Any] = {"name": name}
        if existing_file_id:
            init_url = (
                f"{self.upload_url}/files/{existing_file_id}"
                "?uploadType=resumable"
            )
            method = "PATCH"
        else:
            metadata["parents"] = [folder_id]
            init_url = f"{self.upload_url}/files?uploadType=resumable"
            method = "POST"

        session = self._get_session()
        headers = {
            **self._auth(token),
            "Content-Type": "application/json; charset=UTF-8",
            "X-Upload-Content-Type": content_type,
            "X-Upload-Content-Length": str(len(data)),
        }
        init = session.request(
            method, init_url, json=metadata, headers=headers, timeout=self.timeout
        )
        self._check(init, "resumable init")
        upload_uri = init.headers.get("Location")
        if not upload_uri:
            raise DriveApiError(
                "resumable init", init.status_code, "no upload URI returned"
            )

        upload = session.put(
            upload_uri,
            data=data,
            headers={
                "Content-Type": content_type,
                "Content-Length": str(len(data)),
            },
            timeout=self.timeout,
        )
        self._check(upload, "resumable upload")
        return upload.json()["id"]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _find(self, query: str, token: str, operation: str) -> str | None:
        response = self._get_session().get(
            f"{self.api_url}/files",
            params={"q": query, "fields": "files(id,name)", "spaces": "drive"},
            headers=self._auth(token),
            timeout=self.timeout,
        )
        self._check(response, operation)
        files = response.json().get("files") or []
        return files[0]["id"] if files else None


class DriveMirrorStore:
    """Async ``MirrorStore`` backed by a ``DriveClient``."""

    def __init__(self, client: DriveClient):
        self.client = client

    async def find_or_create_folder(
        self, name: str, parent_id: str, token: str
    ) -> str:
        return await run_sync(
            self.client.get_or_create_folder, name, parent_id, token
        )

    async def upload_or_replace_file(
        self,
        name: str,
        data: bytes,
        content_type: str,
        folder_id: str,
        token: str,
        existing_file_id: str | None = None,
    ) -> str:
        return await run_sync(
            self.client.upload_file_resumable,
            name,
            data,
            content_type,
            folder_id,
            token,
            existing_file_id=existing_file_id,
        )
