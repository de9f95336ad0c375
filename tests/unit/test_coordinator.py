"""Tests for upload deduplication and the retry policy."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from markcdn.cache import MemoryBuildCache, SQLiteBuildCache, load_project_files
from markcdn.constants import CACHE_KEY_PROJECT_FILES
from markcdn.coordinator import UploadCoordinator, prefetch_project_files
from markcdn.errors import (
    DnsResolutionError,
    MissingCredentialsError,
    UploadError,
    UploadThrottledError,
)
from markcdn.models import RemoteAsset


def make_coordinator(client, cache=None, **kwargs) -> tuple[UploadCoordinator, AsyncMock]:
    sleep = AsyncMock()
    coordinator = UploadCoordinator(
        client, cache if cache is not None else MemoryBuildCache(), sleep=sleep, **kwargs
    )
    return coordinator, sleep


class TestDeduplication:
    """Tests for one-upload-per-fingerprint behavior."""

    @pytest.mark.asyncio
    async def test_concurrent_resolves_upload_once(self, mock_client, make_local_file):
        """N concurrent requests for one file start exactly one upload."""
        local = make_local_file("cat.png")
        gate = asyncio.Event()

        async def slow_upload(data, *, file_name, metadata=None):
            await gate.wait()
            return RemoteAsset("uuid-1", file_name, 2000, 1000)

        mock_client.upload_file.side_effect = slow_upload
        coordinator, _ = make_coordinator(mock_client)

        tasks = [asyncio.create_task(coordinator.resolve(local)) for _ in range(10)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks)

        assert mock_client.upload_file.await_count == 1
        assert coordinator.uploads_started == 1
        assert {r.uuid for r in results} == {"uuid-1"}

    @pytest.mark.asyncio
    async def test_sequential_resolves_reuse_result(self, mock_client, make_local_file):
        local = make_local_file("cat.png")
        coordinator, _ = make_coordinator(mock_client)

        first = await coordinator.resolve(local)
        second = await coordinator.resolve(local)

        assert first == second
        assert mock_client.upload_file.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_uploads_all_persisted(
        self, mock_client, make_local_file, tmp_path
    ):
        """Uploads finishing together each land in the SQLite cache."""
        files = [make_local_file(f"img{i}.png", color=(i * 40, 10, 10)) for i in range(5)]
        cache = SQLiteBuildCache(tmp_path / "cache.db")
        coordinator, _ = make_coordinator(mock_client, cache)

        results = await asyncio.gather(*(coordinator.resolve(f) for f in files))

        assert len({r.uuid for r in results}) == 5
        records = await load_project_files(cache)
        assert sorted(r["uuid"] for r in records) == sorted(r.uuid for r in results)

    @pytest.mark.asyncio
    async def test_upload_metadata_and_fingerprint(self, mock_client, make_local_file):
        """Uploads carry the fingerprint, and the asset records it."""
        local = make_local_file("cat.png")
        coordinator, _ = make_coordinator(mock_client)

        asset = await coordinator.resolve(local)

        kwargs = mock_client.upload_file.await_args.kwargs
        assert kwargs["metadata"] == {"fingerprint": local.fingerprint}
        assert kwargs["file_name"] == "cat.png"
        assert asset.fingerprint == local.fingerprint

    @pytest.mark.asyncio
    async def test_persisted_asset_skips_upload(self, mock_client, make_local_file):
        """Assets stored by an earlier build are reused."""
        local = make_local_file("cat.png")
        stored = RemoteAsset("old-uuid", "cat.png", 2000, 1000, fingerprint=local.fingerprint)
        cache = MemoryBuildCache({CACHE_KEY_PROJECT_FILES: [stored.to_record()]})
        coordinator, _ = make_coordinator(mock_client, cache)

        asset = await coordinator.resolve(local)

        assert asset == stored
        mock_client.upload_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_upload_is_persisted(self, mock_client, make_local_file):
        local = make_local_file("cat.png")
        cache = MemoryBuildCache()
        coordinator, _ = make_coordinator(mock_client, cache)

        await coordinator.resolve(local)

        records = await load_project_files(cache)
        assert len(records) == 1
        assert records[0]["metadata"] == {"fingerprint": local.fingerprint}

    @pytest.mark.asyncio
    async def test_invalid_persisted_records_are_ignored(self, mock_client, make_local_file):
        local = make_local_file("cat.png")
        cache = MemoryBuildCache({CACHE_KEY_PROJECT_FILES: [{"uuid": "x"}, {"nope": 1}]})
        coordinator, _ = make_coordinator(mock_client, cache)

        assert await coordinator.resolve(local) is not None
        assert mock_client.upload_file.await_count == 1


class TestRetryPolicy:
    """Tests for DNS and throttling retries."""

    @pytest.mark.asyncio
    async def test_throttle_sleeps_retry_after(self, mock_client, make_local_file):
        """A 429 with retry-after 2 waits at least 2 seconds, then retries."""
        local = make_local_file("cat.png")
        mock_client.upload_file.side_effect = [
            UploadThrottledError(2.0),
            RemoteAsset("uuid-1", "cat.png", 2000, 1000),
        ]
        coordinator, sleep = make_coordinator(mock_client)

        asset = await coordinator.resolve(local)

        assert asset is not None
        sleep.assert_awaited_once_with(2)
        assert mock_client.upload_file.await_count == 2

    @pytest.mark.asyncio
    async def test_throttle_rounds_up(self, mock_client, make_local_file):
        local = make_local_file("cat.png")
        mock_client.upload_file.side_effect = [
            UploadThrottledError(0.2),
            RemoteAsset("uuid-1", "cat.png", 2000, 1000),
        ]
        coordinator, sleep = make_coordinator(mock_client)

        await coordinator.resolve(local)

        sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_throttle_retries_are_bounded(self, mock_client, make_local_file):
        """After three throttled retries the image is skipped."""
        local = make_local_file("cat.png")
        mock_client.upload_file.side_effect = UploadThrottledError(1.0)
        coordinator, sleep = make_coordinator(mock_client, max_throttle_retries=2)

        assert await coordinator.resolve(local) is None
        assert mock_client.upload_file.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_dns_failure_retried_once(self, mock_client, make_local_file):
        local = make_local_file("cat.png")
        mock_client.upload_file.side_effect = [
            DnsResolutionError("no dns"),
            RemoteAsset("uuid-1", "cat.png", 2000, 1000),
        ]
        coordinator, sleep = make_coordinator(mock_client)

        assert await coordinator.resolve(local) is not None
        sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_second_dns_failure_gives_up(self, mock_client, make_local_file):
        local = make_local_file("cat.png")
        mock_client.upload_file.side_effect = DnsResolutionError("no dns")
        coordinator, sleep = make_coordinator(mock_client)

        assert await coordinator.resolve(local) is None
        assert mock_client.upload_file.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_resolves_all_waiters_to_none(self, mock_client, make_local_file):
        """A failed upload is not re-attempted by concurrent or later requests."""
        local = make_local_file("cat.png")
        mock_client.upload_file.side_effect = UploadError("boom", status_code=500)
        coordinator, _ = make_coordinator(mock_client)

        results = await asyncio.gather(*(coordinator.resolve(local) for _ in range(5)))
        later = await coordinator.resolve(local)

        assert results == [None] * 5
        assert later is None
        assert mock_client.upload_file.await_count == 1


class TestPrefetch:
    """Tests for prefetch_project_files."""

    @pytest.mark.asyncio
    async def test_stores_image_records(self, mock_client):
        mock_client.fetch_project_files.return_value = [
            {
                "uuid": "a",
                "original_file_url": "https://ucarecdn.com/a/cat.png",
                "image_info": {"width": 10, "height": 10},
                "metadata": {"fingerprint": "fp-a"},
            },
            {"uuid": "b", "original_file_url": "https://ucarecdn.com/b/doc.pdf"},
        ]
        cache = MemoryBuildCache()

        count = await prefetch_project_files(mock_client, cache)

        assert count == 1
        records = await load_project_files(cache)
        assert RemoteAsset.from_api(records[0]).fingerprint == "fp-a"

    @pytest.mark.asyncio
    async def test_missing_secret(self, mock_client):
        mock_client.fetch_project_files.side_effect = MissingCredentialsError("secretKey")
        with pytest.raises(MissingCredentialsError):
            await prefetch_project_files(mock_client, MemoryBuildCache())
