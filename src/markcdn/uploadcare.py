"""Uploadcare client for the Upload API and the REST API.

Only the two calls the image pipeline needs are implemented:
- ``upload_file``: direct upload followed by a file info lookup
- ``fetch_project_files``: paginated listing of every file in the project

HTTP failures are mapped onto the markcdn error hierarchy so the upload
coordinator can apply its retry policy without knowing about httpx.
"""

from __future__ import annotations

import socket
from typing import Any

import httpx
from loguru import logger

from markcdn import __version__
from markcdn.constants import (
    DEFAULT_HTTP_TIMEOUT,
    REST_API_ACCEPT,
    REST_API_BASE_URL,
    REST_API_PAGE_LIMIT,
    UPLOAD_API_BASE_URL,
)
from markcdn.errors import (
    DnsResolutionError,
    MissingCredentialsError,
    UploadError,
    UploadThrottledError,
)
from markcdn.models import RemoteAsset

_DNS_FAILURE_MESSAGES = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated with hostname",
)

_DEFAULT_RETRY_AFTER = 1.0  # seconds, when a 429 carries no usable header


def is_dns_failure(exc: BaseException) -> bool:
    """Check whether a connection error was caused by name resolution."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return True
        message = str(current).lower()
        if any(m in message for m in _DNS_FAILURE_MESSAGES):
            return True
        current = current.__cause__ or current.__context__
    return False


def parse_retry_after(value: str | None) -> float:
    """Parse a ``retry-after`` header given in seconds."""
    if not value:
        return _DEFAULT_RETRY_AFTER
    try:
        seconds = float(value)
    except ValueError:
        logger.debug(f"Unparseable retry-after header: {value!r}")
        return _DEFAULT_RETRY_AFTER
    return max(seconds, 0.0)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)[:200]
    return str(body)[:200]


class UploadcareClient:
    """Async Uploadcare API client.

    Usage:
        async with UploadcareClient(pubkey) as client:
            asset = await client.upload_file(data, file_name="cat.png")
    """

    def __init__(
        self,
        pubkey: str,
        secret_key: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        upload_base_url: str = UPLOAD_API_BASE_URL,
        rest_base_url: str = REST_API_BASE_URL,
    ) -> None:
        if not pubkey:
            raise MissingCredentialsError("pubkey")
        self._pubkey = pubkey
        self._secret_key = secret_key
        self._upload_base_url = upload_base_url.rstrip("/")
        self._rest_base_url = rest_base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": f"markcdn/{__version__}"},
        )

    async def __aenter__(self) -> UploadcareClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.ConnectError as e:
            if is_dns_failure(e):
                raise DnsResolutionError(f"Cannot resolve host for {url}: {e}") from e
            raise UploadError(f"Connection to {url} failed: {e}") from e
        except httpx.HTTPError as e:
            raise UploadError(f"Request to {url} failed: {e}") from e

        if response.status_code == 429:
            raise UploadThrottledError(
                parse_retry_after(response.headers.get("retry-after"))
            )
        if response.status_code >= 400:
            raise UploadError(
                f"Uploadcare API error ({response.status_code}): "
                f"{_error_detail(response)}",
                status_code=response.status_code,
            )
        return response

    async def upload_file(
        self,
        data: bytes,
        *,
        file_name: str,
        metadata: dict[str, str] | None = None,
    ) -> RemoteAsset:
        """Upload a file and return its normalized description.

        Raises:
            DnsResolutionError: If the upload host cannot be resolved
            UploadThrottledError: If the API answered HTTP 429
            UploadError: On any other failure
        """
        form = {
            "UPLOADCARE_PUB_KEY": self._pubkey,
            "UPLOADCARE_STORE": "auto",
        }
        for key, value in (metadata or {}).items():
            form[f"metadata[{key}]"] = value

        response = await self._request(
            "POST",
            f"{self._upload_base_url}/base/",
            data=form,
            files={"file": (file_name, data)},
        )
        file_id = response.json().get("file")
        if not file_id:
            raise UploadError(f"Upload of {file_name} returned no file id")
        logger.debug(f"Uploaded {file_name} as {file_id}")

        info = await self._request(
            "GET",
            f"{self._upload_base_url}/info/",
            params={"pub_key": self._pubkey, "file_id": file_id},
        )
        record = info.json()
        try:
            return RemoteAsset.from_api(record)
        except (KeyError, ValueError) as e:
            raise UploadError(f"Unexpected file info for {file_name}: {e}") from e

    async def fetch_project_files(self) -> list[dict[str, Any]]:
        """List every file in the project through the REST API.

        Raises:
            MissingCredentialsError: If no secret key is configured
            UploadError: If a page cannot be fetched
        """
        if not self._secret_key:
            raise MissingCredentialsError("secretKey")

        headers = {
            "Accept": REST_API_ACCEPT,
            "Authorization": f"Uploadcare.Simple {self._pubkey}:{self._secret_key}",
        }
        files: list[dict[str, Any]] = []
        url: str | None = f"{self._rest_base_url}/files/?limit={REST_API_PAGE_LIMIT}"
        while url:
            response = await self._request("GET", url, headers=headers)
            body = response.json()
            files.extend(body.get("results") or [])
            url = body.get("next")
        logger.debug(f"Fetched {len(files)} project files from Uploadcare")
        return files
