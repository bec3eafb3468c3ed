"""Media reference classification and blob layout helpers.

A media reference in a task payload is one of:

- ``https://...`` -- already stored remotely; left as-is.
- ``data:<mime>;base64,...`` -- inline data; uploaded, then replaced.
- ``file://...`` -- a file on this device; uploaded, then replaced.
- anything else -- unknown; left as-is.

Uploaded media live at
``teams/{team_id}/projects/{project_id}/tasks/{task_id}/{media_id}.{ext}``.
"""

from __future__ import annotations

import base64
import binascii
import mimetypes
import secrets
import string
import time
from enum import Enum
from pathlib import Path
from urllib.parse import unquote, unquote_to_bytes, urlparse

from ..models import TaskKind

_ID_ALPHABET = string.digits + string.ascii_lowercase

_DEFAULT_CONTENT_TYPE = {
    TaskKind.VIDEO: "video/mp4",
}

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/heic": "heic",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
}


class RefScheme(str, Enum):
    """How a media reference is handled during reconciliation."""

    REMOTE = "remote"
    INLINE = "inline"
    LOCAL_FILE = "local_file"
    UNKNOWN = "unknown"


def classify_reference(ref: str | None) -> RefScheme:
    if not ref:
        return RefScheme.UNKNOWN
    if ref.startswith(("https://", "http://")):
        return RefScheme.REMOTE
    if ref.startswith("data:"):
        return RefScheme.INLINE
    if ref.startswith("file://"):
        return RefScheme.LOCAL_FILE
    return RefScheme.UNKNOWN


def decode_data_uri(ref: str) -> tuple[bytes, str]:
    """Decode a ``data:`` URI into ``(bytes, content_type)``.

    Raises:
        ValueError: If *ref* is not a well-formed data URI.
    """
    if not ref.startswith("data:") or "," not in ref:
        raise ValueError("not a data URI")
    header, payload = ref[len("data:") :].split(",", 1)
    params = header.split(";")
    content_type = params[0] or "image/jpeg"
    if "base64" in params[1:]:
        try:
            return base64.b64decode(payload, validate=True), content_type
        except binascii.Error as exc:
            raise ValueError(f"invalid base64 payload: {exc}") from exc
    return unquote_to_bytes(payload), content_type


def local_path(ref: str) -> Path:
    """Return the filesystem path of a ``file://`` reference."""
    return Path(unquote(urlparse(ref).path))


def content_type_for(path: Path, kind: TaskKind) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or _DEFAULT_CONTENT_TYPE.get(kind, "image/jpeg")


def extension_for(content_type: str) -> str:
    if content_type in _EXTENSIONS:
        return _EXTENSIONS[content_type]
    guessed = mimetypes.guess_extension(content_type)
    return guessed.lstrip(".") if guessed else "bin"


def generate_media_id() -> str:
    """Return ``{epoch_ms}_{9 random base36 chars}``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}_{suffix}"


def blob_path(
    team_id: str,
    project_id: str,
    task_id: str,
    media_id: str,
    extension: str,
) -> str:
    return (
        f"teams/{team_id}/projects/{project_id}"
        f"/tasks/{task_id}/{media_id}.{extension}"
    )
