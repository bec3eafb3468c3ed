"""Spreadsheet rendering of mirrored summary and metadata documents.

Each document is a single-sheet ``.xlsx`` workbook written to a temporary
file; the caller uploads and then removes it.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Font

from .models import MediaMetadataItem

logger = logging.getLogger(__name__)

XLSX_CONTENT_TYPE = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
)

_SUMMARY_HEADERS = {
    "measurement": ["Title", "Description", "Measurement", "Completed"],
    "text": ["Title", "Description", "Note", "Completed"],
}
_METADATA_HEADERS = ["File", "Description", "Latitude", "Longitude", "Date"]

# Excel caps sheet titles at 31 characters and rejects these
_SHEET_TITLE_FORBIDDEN = str.maketrans({c: " " for c in "[]:*?/\\"})


def format_timestamp(epoch_ms: int | None) -> str:
    """Render epoch milliseconds as ``YYYY-MM-DD HH:MM`` (UTC), or ``""``."""
    if not epoch_ms:
        return ""
    moment = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M")


def _sheet_title(title: str) -> str:
    cleaned = title.translate(_SHEET_TITLE_FORBIDDEN).strip()
    return (cleaned or "Sheet")[:31]


class SpreadsheetDocumentGenerator:
    """``DocumentGenerator`` producing ``.xlsx`` workbooks with openpyxl.

    Args:
        temp_dir: Directory for the rendered files (system temp if None).
    """

    extension = "xlsx"
    content_type = XLSX_CONTENT_TYPE

    def __init__(self, temp_dir: Path | None = None) -> None:
        self.temp_dir = temp_dir

    def generate_summary_document(
        self, kind: str, title: str, rows: list[dict[str, Any]]
    ) -> Path:
        """Render the measurement or notes summary of a project.

        Args:
            kind: ``"measurement"`` or ``"text"``.
            title: Project name, used as the sheet title.
            rows: Dicts with ``title``, ``description``, ``value`` and
                ``completedAt``.

        Returns:
            Path of the rendered workbook.
        """
        headers = _SUMMARY_HEADERS.get(kind, _SUMMARY_HEADERS["text"])
        body = [
            [
                row.get("title") or "",
                row.get("description") or "",
                row.get("value") or "",
                format_timestamp(row.get("completedAt")),
            ]
            for row in rows
        ]
        return self._render(title, headers, body)

    def generate_media_metadata_document(
        self, title: str, kind: str, items: list[MediaMetadataItem]
    ) -> Path:
        """Render file name, description, location and date per item."""
        body = []
        for item in items:
            location = item.location
            body.append(
                [
                    item.filename,
                    item.description or "",
                    location.lat if location else None,
                    location.lng if location else None,
                    format_timestamp(item.date),
                ]
            )
        return self._render(title, _METADATA_HEADERS, body)

    def _render(
        self, title: str, headers: list[str], body: list[list[Any]]
    ) -> Path:
        wb = Workbook()
        ws = wb.active
        ws.title = _sheet_title(title)
        ws.append(headers)
        for cell in ws[1]:
            cell.font = Font(bold=True)
        for row in body:
            ws.append(row)
        ws.freeze_panes = "A2"

        temp_dir = str(self.temp_dir) if self.temp_dir else None
        if self.temp_dir:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=temp_dir, suffix=f".{self.extension}"
        )
        os.close(fd)
        try:
            wb.save(tmp_path)
        except Exception:
            os.unlink(tmp_path)
            raise
        logger.debug("Rendered %s (%d rows) -> %s", title, len(body), tmp_path)
        return Path(tmp_path)
