import hashlib

import httpx
import pytest

from slides_worker.models import PipelineError
from slides_worker.pipeline import model_store
from slides_worker.pipeline.model_store import download_model, ensure_model, model_is_valid
from slides_worker.progress import Stage, State

PAYLOAD = b"x" * (3 * 1024 * 1024 + 17)
PAYLOAD_HASH = hashlib.sha256(PAYLOAD).hexdigest()


def _client(status=200, content=PAYLOAD, headers=None):
    def handler(request):
        return httpx.Response(status, content=content, headers=headers)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_model_is_valid_checks_hash(tmp_path):
    path = tmp_path / "model.bin"

    assert not model_is_valid(str(path), PAYLOAD_HASH)

    path.write_bytes(b"stale")
    assert not model_is_valid(str(path), PAYLOAD_HASH)

    path.write_bytes(PAYLOAD)
    assert model_is_valid(str(path), PAYLOAD_HASH)


@pytest.mark.asyncio
async def test_download_writes_verified_model(tmp_path, sink):
    path = tmp_path / "model.bin"

    async with _client() as client:
        await download_model("https://models.test/m.bin", str(path), PAYLOAD_HASH, sink, client=client)

    assert path.read_bytes() == PAYLOAD
    assert not (tmp_path / "model.bin.part").exists()

    updates = [p for p in sink.progress() if p.stage == Stage.DOWNLOADING and p.state == State.PROGRESS]
    assert updates
    assert updates[-1].fraction == pytest.approx(1.0)
    assert all(a.fraction <= b.fraction for a, b in zip(updates, updates[1:]))


@pytest.mark.asyncio
async def test_download_hash_mismatch_is_fatal(tmp_path, sink):
    path = tmp_path / "model.bin"

    async with _client() as client:
        with pytest.raises(PipelineError, match="does not match"):
            await download_model("https://models.test/m.bin", str(path), "0" * 64, sink, client=client)

    assert not path.exists()
    assert not (tmp_path / "model.bin.part").exists()


@pytest.mark.asyncio
async def test_download_http_error_is_fatal(tmp_path, sink):
    async with _client(status=404, content=b"missing") as client:
        with pytest.raises(PipelineError, match="downloading"):
            await download_model("https://models.test/m.bin", str(tmp_path / "m.bin"), PAYLOAD_HASH, sink,
                                 client=client)


def test_ensure_model_reuses_valid_file(tmp_path, sink, monkeypatch):
    path = tmp_path / "model.bin"
    path.write_bytes(PAYLOAD)

    async def fail_download(*args, **kwargs):
        raise AssertionError("should not download")

    monkeypatch.setattr(model_store, "download_model", fail_download)

    assert ensure_model(str(path), "https://models.test/m.bin", PAYLOAD_HASH, sink) == str(path)


def test_ensure_model_downloads_when_stale(tmp_path, sink, monkeypatch):
    path = tmp_path / "model.bin"
    path.write_bytes(b"stale")
    calls = []

    async def fake_download(url, model_path, expected, sink_arg):
        calls.append(url)
        with open(model_path, "wb") as f:
            f.write(PAYLOAD)

    monkeypatch.setattr(model_store, "download_model", fake_download)

    ensure_model(str(path), "https://models.test/m.bin", PAYLOAD_HASH, sink)

    assert calls == ["https://models.test/m.bin"]
    states = [p.state for p in sink.progress() if p.stage == Stage.DOWNLOADING]
    assert states == [State.PREPARING, State.DONE]


class DroppedConnectionStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield PAYLOAD[:1024 * 1024]
        raise httpx.ReadError("connection reset by peer")


@pytest.mark.asyncio
async def test_interrupted_download_removes_partial_file(tmp_path, sink):
    path = tmp_path / "model.bin"

    def handler(request):
        return httpx.Response(200, headers={"content-length": str(len(PAYLOAD))},
                              stream=DroppedConnectionStream())

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(PipelineError, match="downloading"):
            await download_model("https://models.test/m.bin", str(path), PAYLOAD_HASH, sink, client=client)

    assert not path.exists()
    assert not (tmp_path / "model.bin.part").exists()
    assert any(p.stage == Stage.DOWNLOADING and p.state == State.PROGRESS for p in sink.progress())
