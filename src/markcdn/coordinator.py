"""Upload deduplication across a build.

One ``UploadCoordinator`` is created per build and shared by every image
task. It maps a file's content fingerprint to its remote asset so that a
file is uploaded at most once, no matter how many documents reference it
or how many tasks ask for it at the same moment.

Lookup order for a fingerprint:
1. Assets persisted by earlier builds (loaded once from the build cache)
2. Uploads of this build: absent -> start one; pending -> await it;
   resolved -> reuse the result
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from dataclasses import replace

from loguru import logger

from markcdn.cache import BuildCache, append_project_file, load_project_files
from markcdn.constants import (
    CACHE_KEY_PROJECT_FILES,
    DEFAULT_DNS_RETRY_DELAY,
    DEFAULT_MAX_THROTTLE_RETRIES,
)
from markcdn.errors import DnsResolutionError, UploadError, UploadThrottledError
from markcdn.models import RemoteAsset, ResolvedLocalFile
from markcdn.uploadcare import UploadcareClient

Sleep = Callable[[float], Awaitable[None]]


class UploadCoordinator:
    """Resolve local files to remote assets, uploading each fingerprint once."""

    def __init__(
        self,
        client: UploadcareClient,
        cache: BuildCache,
        *,
        dns_retry_delay: float = DEFAULT_DNS_RETRY_DELAY,
        max_throttle_retries: int = DEFAULT_MAX_THROTTLE_RETRIES,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._cache = cache
        self._dns_retry_delay = dns_retry_delay
        self._max_throttle_retries = max_throttle_retries
        self._sleep = sleep
        self._persisted: dict[str, RemoteAsset] = {}
        self._uploads: dict[str, asyncio.Future[RemoteAsset | None]] = {}
        self._load_task: asyncio.Task[None] | None = None
        self._persist_lock = asyncio.Lock()

    @property
    def uploads_started(self) -> int:
        """Number of fingerprints this build attempted to upload."""
        return len(self._uploads)

    async def load(self) -> None:
        """Load the assets persisted by earlier builds (once)."""
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load())
        await asyncio.shield(self._load_task)

    async def _load(self) -> None:
        records = await load_project_files(self._cache)
        for record in records:
            try:
                asset = RemoteAsset.from_api(record)
            except (KeyError, ValueError):
                continue
            if asset.fingerprint:
                self._persisted.setdefault(asset.fingerprint, asset)
        logger.debug(f"Loaded {len(self._persisted)} cached remote assets")

    async def resolve(self, local_file: ResolvedLocalFile) -> RemoteAsset | None:
        """Return the remote asset for a local file, uploading if needed.

        Returns:
            The remote asset, or None if the upload failed
        """
        await self.load()

        fingerprint = local_file.fingerprint
        asset = self._persisted.get(fingerprint)
        if asset is not None:
            logger.debug(f"[Cache] Hit for {local_file.file_name}")
            return asset

        pending = self._uploads.get(fingerprint)
        if pending is not None:
            return await asyncio.shield(pending)

        # No await between the lookup above and this insert: exactly one task
        # moves a fingerprint from absent to pending.
        pending = asyncio.get_running_loop().create_future()
        self._uploads[fingerprint] = pending

        result: RemoteAsset | None = None
        try:
            result = await self._upload_with_retry(local_file)
        except (UploadError, OSError) as e:
            logger.warning(f"Skipping image {local_file.file_name}: {e}")
        finally:
            if not pending.done():
                pending.set_result(result)

        if result is not None:
            await self._persist(result)
        return result

    async def _upload_with_retry(self, local_file: ResolvedLocalFile) -> RemoteAsset:
        data = await asyncio.to_thread(local_file.absolute_path.read_bytes)
        dns_retried = False
        throttle_retries = 0

        while True:
            try:
                asset = await self._client.upload_file(
                    data,
                    file_name=local_file.file_name,
                    metadata={"fingerprint": local_file.fingerprint},
                )
            except DnsResolutionError:
                if dns_retried:
                    raise
                dns_retried = True
                logger.warning(
                    f"DNS resolution failed uploading {local_file.file_name}, "
                    f"retrying in {self._dns_retry_delay}s"
                )
                await self._sleep(self._dns_retry_delay)
                continue
            except UploadThrottledError as e:
                if throttle_retries >= self._max_throttle_retries:
                    raise
                throttle_retries += 1
                delay = math.ceil(e.retry_after)
                logger.warning(
                    f"Upload of {local_file.file_name} throttled, "
                    f"retrying in {delay}s"
                )
                await self._sleep(delay)
                continue

            if asset.fingerprint is None:
                asset = replace(asset, fingerprint=local_file.fingerprint)
            logger.info(f"Uploaded {local_file.file_name} ({asset.uuid})")
            return asset

    async def _persist(self, asset: RemoteAsset) -> None:
        # Appends are read-modify-write on one cache key; serialize them.
        try:
            async with self._persist_lock:
                await append_project_file(self._cache, asset.to_record())
        except Exception as e:
            logger.warning(f"[Cache] Failed to persist {asset.uuid}: {e}")


async def prefetch_project_files(client: UploadcareClient, cache: BuildCache) -> int:
    """Seed the build cache with every image already in the project.

    Non-image files are skipped. The persisted list is replaced, not merged.

    Returns:
        Number of image records stored

    Raises:
        MissingCredentialsError: If the client has no secret key
        UploadError: If the project listing fails
    """
    records = []
    for record in await client.fetch_project_files():
        try:
            records.append(RemoteAsset.from_api(record).to_record())
        except (KeyError, ValueError):
            logger.debug(f"Skipping non-image project file {record.get('uuid')}")
    await cache.set(CACHE_KEY_PROJECT_FILES, records)
    logger.info(f"Prefetched {len(records)} project images")
    return len(records)
