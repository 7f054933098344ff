"""Tests for the aiohttp transport against a local server."""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from tunecache.core.download_task import DownloadStatus, DownloadTask
from tunecache.core.space_reclaimer import SpaceReclaimer
from tunecache.exceptions import TransportError
from tunecache.media.downloader import HttpDownloader
from tunecache.models.config import CacheConfig
from tunecache.storage.entry_store import EntryStore

from .conftest import make_body

BODY = make_body(5000)


def _make_app(seen_headers: list) -> web.Application:
    async def song(request: web.Request) -> web.Response:
        seen_headers.append(dict(request.headers))
        range_header = request.headers.get("Range")
        if range_header:
            start = int(range_header.removeprefix("bytes=").rstrip("-"))
            return web.Response(
                status=206,
                body=BODY[start:],
                headers={"Content-Range": f"bytes {start}-{len(BODY) - 1}/{len(BODY)}"},
            )
        return web.Response(body=BODY)

    async def missing(request: web.Request) -> web.Response:
        return web.Response(status=404, text="not found")

    app = web.Application()
    app.router.add_get("/song", song)
    app.router.add_get("/missing", missing)
    return app


@pytest.fixture
def seen_headers() -> list:
    return []


@pytest_asyncio.fixture
async def server(seen_headers: list):
    test_server = test_utils.TestServer(_make_app(seen_headers))
    await test_server.start_server()
    yield test_server
    await test_server.close()


class TestHttpDownloader:
    @pytest.mark.asyncio
    async def test_fetch_streams_body(
        self, server: test_utils.TestServer, config: CacheConfig
    ) -> None:
        downloader = HttpDownloader(config)
        try:
            async with downloader.fetch(str(server.make_url("/song"))) as response:
                assert response.status == 200
                assert response.content_length == len(BODY)
                data = b"".join([c async for c in response.iter_chunks(1024)])
            assert data == BODY
        finally:
            await downloader.close()

    @pytest.mark.asyncio
    async def test_sends_token(
        self, server: test_utils.TestServer, seen_headers: list, tmp_path
    ) -> None:
        config = CacheConfig(cache_dir=str(tmp_path), auth_token="abc123")
        downloader = HttpDownloader(config)
        try:
            async with downloader.fetch(str(server.make_url("/song"))):
                pass
        finally:
            await downloader.close()
        assert seen_headers[0]["Authorization"] == "Bearer abc123"
        assert seen_headers[0]["Accept-Encoding"] == "identity"

    @pytest.mark.asyncio
    async def test_error_status_is_returned(
        self, server: test_utils.TestServer, config: CacheConfig
    ) -> None:
        downloader = HttpDownloader(config)
        try:
            async with downloader.fetch(str(server.make_url("/missing"))) as response:
                assert response.status == 404
        finally:
            await downloader.close()

    @pytest.mark.asyncio
    async def test_connection_failure(self, config: CacheConfig) -> None:
        downloader = HttpDownloader(config)
        try:
            with pytest.raises(TransportError):
                async with downloader.fetch("http://127.0.0.1:1/song"):
                    pass
        finally:
            await downloader.close()

    @pytest.mark.asyncio
    async def test_resumed_download_end_to_end(
        self,
        server: test_utils.TestServer,
        seen_headers: list,
        store: EntryStore,
        config: CacheConfig,
    ) -> None:
        entry = store.add(1)
        store.set_total_bytes(1, len(BODY))
        entry.local_path.write_bytes(BODY[:1500])
        downloader = HttpDownloader(config)
        task = DownloadTask(
            entry,
            str(server.make_url("/song")),
            store=store,
            downloader=downloader,
            reclaimer=SpaceReclaimer(
                store, lambda: config.max_cache_bytes, lambda sid: sid == 1
            ),
            config_provider=lambda: config,
            emit=lambda event: None,
        )
        try:
            assert await task.run() is DownloadStatus.SUCCESS
        finally:
            await downloader.close()

        assert seen_headers[0]["Range"] == "bytes=1500-"
        assert entry.local_path.read_bytes() == BODY
