"""Blob store client: file bytes live in ImageKit, metadata lives in our DB.

``BlobStore`` is the narrow interface FileService depends on; tests swap in
a fake. ``ImageKitBlobStore`` talks to the ImageKit REST API over httpx:

    upload   POST   https://upload.imagekit.io/api/v1/files/upload
    search   GET    https://api.imagekit.io/v1/files?searchQuery=...
    delete   DELETE https://api.imagekit.io/v1/files/{fileId}

All three authenticate with HTTP basic auth (private key as username,
empty password). Every failure surfaces as ``BlobStoreError``.
"""

import hashlib
import hmac
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import httpx
from fastapi import Request

from ..core.config import settings
from ..exceptions import BlobStoreError

logger = logging.getLogger(__name__)

UPLOAD_URL = "https://upload.imagekit.io/api/v1/files/upload"
API_BASE_URL = "https://api.imagekit.io/v1"

# Lifetime of client-side upload credentials, in seconds.
AUTH_PARAMS_TTL = 30 * 60


@dataclass(frozen=True)
class UploadedBlob:
    """What the blob store reports back after storing a payload."""
    file_id: str
    name: str
    url: str
    file_path: str
    size: int
    file_type: str = ""
    thumbnail_url: Optional[str] = None


class BlobStore(Protocol):
    """Operations FileService needs from the blob store."""

    def upload(self, content: bytes, file_name: str, folder: str) -> UploadedBlob: ...

    def find_by_name(self, name: str, limit: int = 1) -> List[Dict[str, Any]]: ...

    def delete(self, file_id: str) -> None: ...

    def authentication_parameters(self) -> Dict[str, Any]: ...


def file_id_of(item: Any) -> Optional[str]:
    """Return the ``fileId`` of a search result if it is a file object.

    Search results may also contain folder objects, which carry no
    ``fileId`` and cannot be deleted through the files endpoint.
    """
    if not isinstance(item, dict):
        return None
    if item.get("type", "file") != "file":
        return None
    file_id = item.get("fileId")
    return file_id if isinstance(file_id, str) and file_id else None


def sign_upload_token(private_key: str, token: str, expire: int) -> str:
    """HMAC-SHA1 signature ImageKit expects for client-side uploads."""
    message = f"{token}{expire}".encode()
    return hmac.new(private_key.encode(), message, hashlib.sha1).hexdigest()


class ImageKitBlobStore:
    """ImageKit implementation of ``BlobStore``.

    Args:
        private_key: ImageKit private API key.
        public_key: ImageKit public key (returned to browsers for direct uploads).
        url_endpoint: ImageKit URL endpoint, informational only.
        timeout: Seconds before any single API call is abandoned.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        private_key: str,
        public_key: str = "",
        url_endpoint: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.public_key = public_key
        self.url_endpoint = url_endpoint
        self._private_key = private_key
        self._client = httpx.Client(
            auth=(private_key, ""),
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # ----- operations ------------------------------------------------------

    def upload(self, content: bytes, file_name: str, folder: str) -> UploadedBlob:
        """Store *content* as ``folder/file_name`` without renaming it."""
        resp = self._request(
            "POST",
            UPLOAD_URL,
            files={"file": (file_name, content)},
            data={
                "fileName": file_name,
                "folder": folder,
                "useUniqueFileName": "false",
            },
        )
        body = self._json(resp)
        try:
            return UploadedBlob(
                file_id=body["fileId"],
                name=body.get("name", file_name),
                url=body["url"],
                file_path=body.get("filePath") or f"{folder.rstrip('/')}/{file_name}",
                size=int(body.get("size") or len(content)),
                file_type=body.get("fileType", ""),
                thumbnail_url=body.get("thumbnailUrl") or None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise BlobStoreError(f"Unexpected upload response: {e}") from e

    def find_by_name(self, name: str, limit: int = 1) -> List[Dict[str, Any]]:
        """Search stored assets whose name equals *name*."""
        escaped = name.replace('"', '\\"')
        resp = self._request(
            "GET",
            f"{API_BASE_URL}/files",
            params={"searchQuery": f'name = "{escaped}"', "limit": limit},
        )
        body = self._json(resp)
        if not isinstance(body, list):
            raise BlobStoreError("Unexpected search response")
        return body

    def delete(self, file_id: str) -> None:
        self._request("DELETE", f"{API_BASE_URL}/files/{file_id}")

    def authentication_parameters(self) -> Dict[str, Any]:
        """Token, expiry and signature for a browser-side upload."""
        if not self._private_key:
            raise BlobStoreError("ImageKit private key is not configured")
        token = str(uuid.uuid4())
        expire = int(time.time()) + AUTH_PARAMS_TTL
        return {
            "token": token,
            "expire": expire,
            "signature": sign_upload_token(self._private_key, token, expire),
        }

    # ----- internals -------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if not self._private_key:
            raise BlobStoreError("ImageKit private key is not configured")
        try:
            resp = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise BlobStoreError(f"{method} {url} failed: {e}") from e

        if resp.status_code >= 400:
            logger.warning(
                "ImageKit returned an error",
                extra={"method": method, "url": url, "status_code": resp.status_code},
            )
            raise BlobStoreError(
                f"{method} {url} returned {resp.status_code}",
                status_code=resp.status_code,
            )
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise BlobStoreError("ImageKit returned a non-JSON body") from e


def build_blob_store() -> ImageKitBlobStore:
    """ImageKit client configured from settings. Created once per app at startup."""
    return ImageKitBlobStore(
        private_key=settings.imagekit_private_key,
        public_key=settings.imagekit_public_key,
        url_endpoint=settings.imagekit_url_endpoint,
        timeout=settings.imagekit_timeout,
    )


def get_blob_store(request: Request) -> BlobStore:
    """FastAPI dependency: the blob store held on the application state."""
    return request.app.state.blob_store
