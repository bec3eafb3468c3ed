"""Bearer tokens for the Drive mirror, backed by the team record.

A connected team carries a ``driveConfig`` field::

    {"refreshToken": ..., "accessToken": ..., "tokenExpiry": <epoch ms>,
     "connectedEmail": ..., "connectedAt": ..., "rootFolderId": ...}

The cached access token is reused while it stays valid beyond the refresh
margin.  Otherwise it is refreshed at the OAuth token endpoint and written
back.  A refresh token the endpoint rejects as invalid or revoked clears
``driveConfig``, so the team reads as disconnected from then on.

The interactive consent flow that first populates ``driveConfig`` belongs
to the host application.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import requests

from ..errors import TokenRefreshError
from .async_utils import run_sync
from .protocols import DocumentStore

logger = logging.getLogger(__name__)

TEAMS = "teams"
DRIVE_CONFIG_FIELD = "driveConfig"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_REFRESH_MARGIN = 300
DEFAULT_EXPIRES_IN = 3600

_REVOKED_MARKERS = ("invalid_grant", "Token has been revoked")


def is_drive_connected(team_record: dict[str, Any] | None) -> bool:
    """``True`` if the team record holds a usable Drive connection."""
    config = (team_record or {}).get(DRIVE_CONFIG_FIELD) or {}
    return bool(config.get("refreshToken") and config.get("connectedEmail"))


class DriveCredentialProvider:
    """``CredentialProvider`` that refreshes Drive tokens on demand.

    Args:
        documents: Document store holding team records.
        client_id: OAuth client id.
        client_secret: OAuth client secret.
        token_url: OAuth token endpoint.
        refresh_margin: Seconds before expiry at which a token is
            considered stale.
        clock: Returns the current time in seconds (injectable for tests).
    """

    def __init__(
        self,
        documents: DocumentStore,
        client_id: str,
        client_secret: str | None = None,
        token_url: str = GOOGLE_TOKEN_URL,
        refresh_margin: float = DEFAULT_REFRESH_MARGIN,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.documents = documents
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.refresh_margin = refresh_margin
        self._clock = clock
        self._session = requests.Session()

    async def get_valid_token(self, team_id: str) -> str | None:
        """Return a valid access token for *team_id*, or ``None``."""
        try:
            record = await self.documents.read_record(TEAMS, team_id)
        except Exception as exc:
            logger.error("Cannot read team %s for Drive token: %s", team_id, exc)
            return None

        config = (record or {}).get(DRIVE_CONFIG_FIELD) or {}
        refresh_token = config.get("refreshToken")
        if not refresh_token:
            return None

        now_ms = self._clock() * 1000
        access_token = config.get("accessToken")
        expiry = config.get("tokenExpiry") or 0
        if access_token and expiry > now_ms + self.refresh_margin * 1000:
            return access_token

        try:
            access_token, expires_in = await run_sync(
                self._refresh, refresh_token
            )
        except TokenRefreshError as exc:
            logger.error("Drive token refresh for team %s failed: %s", team_id, exc)
            if exc.revoked:
                await self._disconnect(team_id)
            return None
        except requests.RequestException as exc:
            logger.error("Drive token refresh for team %s failed: %s", team_id, exc)
            return None

        updated = {
            **config,
            "accessToken": access_token,
            "tokenExpiry": int(now_ms + expires_in * 1000),
        }
        try:
            await self.documents.write_field(
                TEAMS, team_id, DRIVE_CONFIG_FIELD, updated
            )
        except Exception as exc:
            logger.warning(
                "Could not store refreshed Drive token for team %s: %s",
                team_id,
                exc,
            )
        return access_token

    def _refresh(self, refresh_token: str) -> tuple[str, int]:
        """Exchange *refresh_token* for a new access token.

        Returns:
            ``(access_token, expires_in_seconds)``.

        Raises:
            TokenRefreshError: If the endpoint rejects the request.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret
        response = self._session.post(self.token_url, data=data, timeout=(10, 30))
        if not response.ok:
            body = response.text
            raise TokenRefreshError(
                f"token endpoint returned {response.status_code}: {body}",
                revoked=any(marker in body for marker in _REVOKED_MARKERS),
            )
        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise TokenRefreshError("token endpoint returned no access token")
        return access_token, int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)

    async def _disconnect(self, team_id: str) -> None:
        logger.warning(
            "Drive refresh token for team %s is invalid; disconnecting", team_id
        )
        try:
            await self.documents.write_field(TEAMS, team_id, DRIVE_CONFIG_FIELD, None)
        except Exception as exc:
            logger.error(
                "Could not clear Drive connection for team %s: %s", team_id, exc
            )
