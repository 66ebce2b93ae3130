"""Remote document store client."""

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from ..exceptions import RemoteStoreError, SyncUnavailableError
from ..models import PullResult, PushResult, SyncEnvelope

logger = logging.getLogger(__name__)

# Statuses worth retrying later rather than reporting
RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


class RemoteHandle(Protocol):
    """What the sync engine needs from a remote store.

    Documents are envelopes keyed by record id. Cursors are opaque tokens
    handed out by the store.
    """

    def pull(self, cursor: str | None) -> PullResult:
        """Return envelopes written after `cursor` and the new cursor."""
        ...

    def push(self, envelopes: list[SyncEnvelope]) -> PushResult:
        """Write envelopes and report the store position before and after."""
        ...


class RemoteStoreClient:
    """Client for a document store holding one document per subscription."""

    PAGE_SIZE = 500

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        collection: str = "subscriptions",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the remote store client."""
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.collection = collection
        self.client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """
        Send a request and decode the JSON body.

        Raises:
            SyncUnavailableError: On network failures and retryable statuses
            RemoteStoreError: When the store rejects the request or the body
                              is not a JSON object
        """
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in RETRYABLE_STATUS:
                logger.warning(f"Remote store unavailable ({status}): {path}")
                raise SyncUnavailableError(
                    f"Remote store returned {status} for {path}"
                ) from e
            logger.error(f"Remote store error: {e}")
            logger.error(f"Response body: {e.response.text}")
            raise RemoteStoreError(status, f"Remote store rejected {path}: {status}") from e
        except httpx.TransportError as e:
            logger.warning(f"Remote store unreachable: {e}")
            raise SyncUnavailableError(f"Remote store unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Remote store sent a non-JSON body for {path}")
            logger.error(f"Response body: {response.text[:500]}")
            raise RemoteStoreError(
                response.status_code, f"Remote store sent invalid JSON for {path}"
            ) from e
        if not isinstance(data, dict):
            raise RemoteStoreError(
                response.status_code, f"Remote store sent an unexpected reply for {path}"
            )
        return data

    @staticmethod
    def _parse_document(doc: Any) -> SyncEnvelope:
        """Validate one pulled document as an envelope."""
        try:
            return SyncEnvelope.model_validate(doc)
        except ValidationError as e:
            logger.error(f"Malformed document from remote store: {e}")
            raise RemoteStoreError(
                None, f"Remote store sent a malformed document: {e}"
            ) from e

    @property
    def _documents_path(self) -> str:
        return f"/collections/{self.collection}/documents"

    def pull(self, cursor: str | None) -> PullResult:
        """
        Fetch every envelope written after `cursor`, following pages.

        Args:
            cursor: Last cursor merged by this device, or None for everything

        Returns:
            Pulled envelopes and the cursor to resume from
        """
        envelopes: list[SyncEnvelope] = []
        params: dict[str, str | int] = {"limit": self.PAGE_SIZE}
        if cursor:
            params["since"] = cursor

        new_cursor = cursor
        while True:
            data = self._request("GET", self._documents_path, params=params)
            for doc in data.get("documents") or []:
                envelopes.append(self._parse_document(doc))
            new_cursor = data.get("cursor", new_cursor)

            page_token = data.get("next_page_token")
            if not page_token:
                break
            params["page_token"] = page_token

        logger.debug(f"Pulled {len(envelopes)} envelopes (cursor {new_cursor})")
        try:
            return PullResult(envelopes=envelopes, cursor=new_cursor)
        except ValidationError as e:
            raise RemoteStoreError(None, f"Remote store sent a malformed cursor: {e}") from e

    def push(self, envelopes: list[SyncEnvelope]) -> PushResult:
        """
        Write envelopes in one batch.

        Args:
            envelopes: Envelopes to upsert, keyed by record id

        Returns:
            Store positions before and after the write
        """
        payload = {"documents": [env.model_dump(mode="json") for env in envelopes]}
        logger.debug(f"Pushing {len(envelopes)} envelopes")
        data = self._request(
            "POST", f"{self._documents_path}:batchWrite", json=payload
        )
        try:
            return PushResult(
                cursor_before=data.get("cursor_before"),
                cursor_after=data.get("cursor_after"),
            )
        except ValidationError as e:
            raise RemoteStoreError(None, f"Remote store sent malformed cursors: {e}") from e
