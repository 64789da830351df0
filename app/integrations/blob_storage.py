"""Read access to raw crawled HTML kept in blob storage."""

import logging
from typing import Any

import httpx

from app.config import settings
from app.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class BlobStorageClient:
    """HTTP client for the raw-page bucket."""

    SERVICE_NAME = "blob storage"

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.blob_storage_url).rstrip("/")
        self.token = token if token is not None else settings.blob_storage_token
        self.timeout = timeout or settings.blob_storage_timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "BlobStorageClient":
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=headers,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client must be used as async context manager")
        return self._client

    async def get_text(self, path: str) -> str:
        """Download one object as text."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            logger.warning("Blob download failed", extra={"path": path, "error": str(e)})
            raise ExternalServiceError(self.SERVICE_NAME, str(e)) from e

        if response.status_code != 200:
            raise ExternalServiceError(
                self.SERVICE_NAME,
                f"download of {path} returned {response.status_code}",
            )
        return response.text

    async def ping(self) -> bool:
        """Return True when the storage endpoint answers without a server error."""
        try:
            response = await self.client.head(self.base_url)
        except httpx.HTTPError:
            return False
        return response.status_code < 500
