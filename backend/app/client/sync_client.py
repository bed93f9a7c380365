"""
Client HTTP (httpx) de synchronisation : envoie un batch de pointages offline
à POST /api/v1/attendance/sync.
"""

import logging
from typing import List, Optional

import httpx

from app.schemas.sync import OfflineSubmission, SyncRequest, SyncResponse

logger = logging.getLogger(__name__)

SYNC_PATH = "/api/v1/attendance/sync"


class SyncTransportError(Exception):
    """Erreur réseau ou serveur (5xx) : les entrées restent en file et seront renvoyées."""


class SyncRequestRejected(Exception):
    """Batch refusé par le serveur (4xx) : le renvoyer tel quel échouerait encore."""

    def __init__(self, status_code: int, detail):
        super().__init__(f"Batch refusé ({status_code}) : {detail}")
        self.status_code = status_code
        self.detail = detail


class SyncClient:
    def __init__(
        self,
        base_url: str = "",
        *,
        device_id: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.device_id = device_id
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def send(self, submissions: List[OfflineSubmission]) -> SyncResponse:
        payload = SyncRequest(submissions=submissions, device_id=self.device_id).model_dump(mode="json")
        try:
            response = self._client.post(SYNC_PATH, json=payload)
        except httpx.HTTPError as exc:
            raise SyncTransportError(str(exc)) from exc

        if response.status_code >= 500:
            raise SyncTransportError(f"Erreur serveur {response.status_code}")
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            detail = body.get("detail") if isinstance(body, dict) else body
            raise SyncRequestRejected(response.status_code, detail)

        return SyncResponse.model_validate(response.json())

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "SyncClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
