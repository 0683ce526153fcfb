"""Tests for icebreaker.transfer: weight file downloads and API descriptors."""

from __future__ import annotations

import asyncio
import gc
import json
import threading

import httpx
import pytest

from icebreaker import transfer
from icebreaker.errors import RemoteError
from icebreaker.models import (
    APIAccess,
    APIType,
    Cost,
    EndpointId,
    File,
    FileAndAPI,
    Id,
    ModelOnline,
    OpenAIConfig,
    Quantity,
)
from icebreaker.transfer import (
    Download,
    Progress,
    ProgressChannel,
    descriptor_path,
    download,
    download_file,
    install_descriptor,
    temp_path_for,
)

PAYLOAD = b"0123456789"
FILE = File(Id("author1/modelA"), "modelA-Q4_K_M.gguf", len(PAYLOAD))


class FakeHub:
    """Serves ``PAYLOAD`` and records requests, honouring ``Range``."""

    def __init__(self, payload: bytes = PAYLOAD, status: int = 200, truncate: int = 0):
        self.payload = payload
        self.status = status
        self.truncate = truncate
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status)
        body = self.payload[: len(self.payload) - self.truncate]
        range_header = request.headers.get("Range")
        if range_header:
            start = int(range_header.split("=", 1)[1].rstrip("-"))
            if start >= len(self.payload):
                return httpx.Response(416)
            return httpx.Response(
                206,
                content=body[start:],
                headers={"Content-Range": f"bytes {start}-{len(self.payload) - 1}/{len(self.payload)}"},
            )
        return httpx.Response(200, content=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def _online() -> ModelOnline:
    return ModelOnline(
        endpoint_id=EndpointId.remote(APIType.NanoGPT, "openai/gpt-4o-mini"),
        config=APIAccess(APIType.NanoGPT, OpenAIConfig(api_key="sk")),
        cost=Cost(Quantity.usd_per_1m(0.15), Quantity.usd_per_1m(0.6)),
    )


# ---------------------------------------------------------------------------
# download_file
# ---------------------------------------------------------------------------


class TestDownloadFile:
    @pytest.mark.asyncio
    async def test_fresh_download(self, tmp_path):
        hub = FakeHub()
        async with hub.client() as client:
            path = await download_file(FILE, tmp_path, client=client)

        assert path == tmp_path / "author1" / "modelA" / "modelA-Q4_K_M.gguf"
        assert path.read_bytes() == PAYLOAD
        assert not temp_path_for(path).exists()
        assert hub.requests[0].url.path == "/author1/modelA/resolve/main/modelA-Q4_K_M.gguf"
        assert "Range" not in hub.requests[0].headers

    @pytest.mark.asyncio
    async def test_second_download_makes_no_request(self, tmp_path):
        hub = FakeHub()
        async with hub.client() as client:
            first = await download_file(FILE, tmp_path, client=client)
            second = await download_file(FILE, tmp_path, client=client)
        assert first == second
        assert len(hub.requests) == 1

    @pytest.mark.asyncio
    async def test_unknown_size_reuses_existing_file(self, tmp_path):
        target = tmp_path / FILE.relative_path()
        target.parent.mkdir(parents=True)
        target.write_bytes(b"abc")
        hub = FakeHub()
        async with hub.client() as client:
            await download_file(File(FILE.model, FILE.name), tmp_path, client=client)
        assert hub.requests == []

    @pytest.mark.asyncio
    async def test_size_mismatch_is_refetched(self, tmp_path):
        target = tmp_path / FILE.relative_path()
        target.parent.mkdir(parents=True)
        target.write_bytes(b"abc")
        hub = FakeHub()
        async with hub.client() as client:
            await download_file(FILE, tmp_path, client=client)
        assert target.read_bytes() == PAYLOAD
        assert len(hub.requests) == 1

    @pytest.mark.asyncio
    async def test_legacy_file_is_migrated(self, tmp_path):
        legacy = tmp_path / "legacy"
        legacy.mkdir()
        (legacy / FILE.name).write_bytes(PAYLOAD)
        hub = FakeHub()
        async with hub.client() as client:
            path = await download_file(
                FILE, tmp_path / "library", legacy_directory=legacy, client=client
            )
        assert path.read_bytes() == PAYLOAD
        assert not (legacy / FILE.name).exists()
        assert hub.requests == []

    @pytest.mark.asyncio
    async def test_http_error_keeps_partial_file(self, tmp_path):
        temp = temp_path_for(tmp_path / FILE.relative_path())
        temp.parent.mkdir(parents=True)
        temp.write_bytes(b"0123")
        hub = FakeHub(status=500)
        async with hub.client() as client:
            with pytest.raises(RemoteError) as exc_info:
                await download_file(FILE, tmp_path, client=client)
        assert exc_info.value.status_code == 500
        assert temp.read_bytes() == b"0123"

    @pytest.mark.asyncio
    async def test_short_transfer_then_resume(self, tmp_path):
        target = tmp_path / FILE.relative_path()

        short = FakeHub(truncate=6)
        async with short.client() as client:
            with pytest.raises(RemoteError):
                await download_file(FILE, tmp_path, client=client)
        assert not target.exists()
        assert temp_path_for(target).read_bytes() == b"0123"

        full = FakeHub()
        async with full.client() as client:
            path = await download_file(FILE, tmp_path, client=client)
        assert full.requests[0].headers["Range"] == "bytes=4-"
        assert path.read_bytes() == PAYLOAD
        assert not temp_path_for(target).exists()

    @pytest.mark.asyncio
    async def test_complete_partial_file_is_finalised(self, tmp_path):
        target = tmp_path / FILE.relative_path()
        target.parent.mkdir(parents=True)
        temp_path_for(target).write_bytes(PAYLOAD)
        hub = FakeHub()
        async with hub.client() as client:
            path = await download_file(FILE, tmp_path, client=client)
        assert path.read_bytes() == PAYLOAD
        assert hub.requests[0].headers["Range"] == f"bytes={len(PAYLOAD)}-"

    @pytest.mark.asyncio
    async def test_file_writes_run_off_the_event_loop(self, tmp_path, monkeypatch):
        monkeypatch.setattr(transfer, "CHUNK_SIZE", 3)
        loop_thread = threading.get_ident()
        write_threads: list[int] = []

        class RecordingFile:
            def __init__(self, path, mode):
                self._fh = open(path, mode)

            def write(self, data):
                write_threads.append(threading.get_ident())
                return self._fh.write(data)

            def close(self):
                self._fh.close()

        monkeypatch.setattr(transfer, "open", RecordingFile, raising=False)
        async with FakeHub().client() as client:
            path = await download_file(FILE, tmp_path, client=client)

        assert path.read_bytes() == PAYLOAD
        assert write_threads
        assert loop_thread not in write_threads

    @pytest.mark.asyncio
    async def test_progress_is_reported(self, tmp_path, monkeypatch):
        monkeypatch.setattr(transfer, "CHUNK_SIZE", 3)
        events: list[Progress] = []
        async with FakeHub().client() as client:
            await download_file(FILE, tmp_path, on_progress=events.append, client=client)
        assert events[0] == Progress(0, len(PAYLOAD))
        assert events[-1] == Progress(len(PAYLOAD), len(PAYLOAD))
        downloaded = [e.downloaded for e in events]
        assert downloaded == sorted(downloaded)


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


class TestInstallDescriptor:
    @pytest.mark.asyncio
    async def test_writes_descriptor(self, tmp_path):
        path = await install_descriptor(_online(), tmp_path)
        assert path == tmp_path / "openai_gpt-4o-mini.json"
        data = json.loads(path.read_text())
        assert data["endpoint_id"] == {
            "Remote": {"api_type": "NanoGPT", "id": "openai/gpt-4o-mini"}
        }
        assert data["state_check"] == "Unchecked"

    @pytest.mark.asyncio
    async def test_existing_descriptor_is_kept(self, tmp_path):
        path = descriptor_path(_online(), tmp_path)
        path.write_text("{}")
        await install_descriptor(_online(), tmp_path)
        assert path.read_text() == "{}"


# ---------------------------------------------------------------------------
# Progress channel and download handle
# ---------------------------------------------------------------------------


class TestProgressChannel:
    @pytest.mark.asyncio
    async def test_drops_oldest_when_full(self):
        channel = ProgressChannel(maxsize=2)
        for n in range(5):
            channel.send(Progress(n, 5))
        channel.close()
        received = [p.downloaded async for p in channel]
        assert received[-1] == 4
        assert channel.dropped > 0

    @pytest.mark.asyncio
    async def test_send_after_close_is_ignored(self):
        channel = ProgressChannel()
        channel.close()
        channel.send(Progress(1))
        assert [p async for p in channel] == []
        assert channel.closed

    def test_rejects_zero_buffer(self):
        with pytest.raises(ValueError):
            ProgressChannel(maxsize=0)


class TestDownload:
    @pytest.mark.asyncio
    async def test_iterate_then_await(self, tmp_path, monkeypatch):
        monkeypatch.setattr(transfer, "CHUNK_SIZE", 2)
        async with FakeHub().client() as client:
            handle = download(FILE, tmp_path, client=client)
            events = [p async for p in handle]
            path = await handle
        assert path.read_bytes() == PAYLOAD
        assert events[-1].downloaded == len(PAYLOAD)
        assert handle.done()

    @pytest.mark.asyncio
    async def test_await_without_iterating(self, tmp_path):
        async with FakeHub().client() as client:
            path = await download(FileAndAPI(file=FILE), tmp_path, client=client).result()
        assert path.read_bytes() == PAYLOAD

    @pytest.mark.asyncio
    async def test_api_model_installs_descriptor(self, tmp_path):
        handle = download(FileAndAPI(api=_online()), tmp_path)
        assert [p async for p in handle] == []
        assert (await handle) == descriptor_path(_online(), tmp_path)

    def test_empty_choice(self, tmp_path):
        with pytest.raises(ValueError):
            download(FileAndAPI(), tmp_path)

    @pytest.mark.asyncio
    async def test_error_surfaces_on_await(self, tmp_path):
        async with FakeHub(status=404).client() as client:
            handle = download(FILE, tmp_path, client=client)
            assert [p async for p in handle] == []
            with pytest.raises(RemoteError):
                await handle

    @pytest.mark.asyncio
    async def test_cancel_before_start_never_runs_the_job(self):
        ran = []

        async def job(send):
            ran.append(True)
            return None

        handle = Download(job)
        assert handle.cancel() is False
        assert [p async for p in handle] == []
        with pytest.raises(asyncio.CancelledError):
            await handle
        assert ran == []
        assert not handle.done()

    @pytest.mark.asyncio
    async def test_iterating_a_failed_download_reports_nothing_unretrieved(self, tmp_path):
        reported = []
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            async with FakeHub(status=404).client() as client:
                handle = download(FILE, tmp_path, client=client)
                assert [p async for p in handle] == []
                for _ in range(5):
                    await asyncio.sleep(0)
                assert handle.done()
            del handle
            gc.collect()
        finally:
            loop.set_exception_handler(None)
        assert reported == []

    @pytest.mark.asyncio
    async def test_cancel_stops_the_job(self, tmp_path):
        started = asyncio.Event()

        async def job(send):
            started.set()
            await asyncio.sleep(10)

        handle = Download(job)
        task = asyncio.ensure_future(handle.result())
        await started.wait()
        assert handle.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert handle.done()
