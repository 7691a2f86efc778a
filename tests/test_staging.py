import asyncio
import io
import threading
from pathlib import Path

import pytest

from upload_relay.config import Settings
from upload_relay.staging import (
    DiskStaging,
    MemoryStaging,
    UploadRequest,
    build_staging,
)


def _upload(content: bytes, filename: str = "cv.PDF") -> UploadRequest:
    return UploadRequest(
        filename=filename,
        content_type="application/pdf",
        size=len(content),
        stream=io.BytesIO(content),
    )


class _BrokenStream(io.BytesIO):
    def read(self, *args, **kwargs) -> bytes:
        if self.tell() > 0:
            raise OSError("client went away")
        return super().read(4)


class _GatedStream(io.BytesIO):
    def __init__(self, content: bytes) -> None:
        super().__init__(content)
        self.started = threading.Event()
        self.gate = threading.Event()
        self.drained = threading.Event()

    def seek(self, *args, **kwargs) -> int:
        self.started.set()
        self.gate.wait(5)
        return super().seek(*args, **kwargs)

    def read(self, *args, **kwargs) -> bytes:
        chunk = super().read(*args, **kwargs)
        if not chunk:
            self.drained.set()
        return chunk


def test_build_staging_follows_settings(tmp_path: Path) -> None:
    assert isinstance(build_staging(Settings(staging_dir=tmp_path)), MemoryStaging)
    disk = build_staging(Settings(upload_storage="disk", staging_dir=tmp_path / "d"))
    assert isinstance(disk, DiskStaging)
    assert disk.directory == tmp_path / "d"


def test_disk_prepare_creates_directory_idempotently(staging_dir: Path) -> None:
    staging = DiskStaging(staging_dir / "nested")
    staging.prepare()
    staging.prepare()
    assert (staging_dir / "nested").is_dir()


@pytest.mark.asyncio
async def test_disk_acquire_writes_unique_file_and_release_deletes_it(staging_dir: Path) -> None:
    staging = DiskStaging(staging_dir)
    staging.prepare()

    first = await staging.acquire(_upload(b"one"))
    second = await staging.acquire(_upload(b"one"))

    assert first.path != second.path
    assert first.path.suffix == ".pdf"
    assert first.path.read_bytes() == b"one"
    assert first.size == 3
    with first.open() as source:
        assert source.read() == b"one"

    await staging.release(first)
    await staging.release(second)
    assert list(staging_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_disk_release_twice_is_a_no_op(staging_dir: Path) -> None:
    staging = DiskStaging(staging_dir)
    staging.prepare()
    staged = await staging.acquire(_upload(b"data"))

    await staging.release(staged)
    await staging.release(staged)

    assert staged.released is True
    assert not staged.path.exists()
    with pytest.raises(RuntimeError):
        staged.open()


@pytest.mark.asyncio
async def test_disk_release_tolerates_file_already_gone(staging_dir: Path) -> None:
    staging = DiskStaging(staging_dir)
    staging.prepare()
    staged = await staging.acquire(_upload(b"data"))
    staged.path.unlink()

    await staging.release(staged)

    assert staged.released is True


@pytest.mark.asyncio
async def test_disk_acquire_removes_partial_file_on_failure(staging_dir: Path) -> None:
    staging = DiskStaging(staging_dir)
    staging.prepare()
    upload = UploadRequest(
        filename="cv.pdf",
        content_type="application/pdf",
        size=64,
        stream=_BrokenStream(b"x" * 64),
    )

    with pytest.raises(OSError):
        await staging.acquire(upload)

    assert list(staging_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_disk_acquire_cancelled_mid_copy_leaves_no_file(staging_dir: Path) -> None:
    staging = DiskStaging(staging_dir)
    staging.prepare()
    stream = _GatedStream(b"x" * 64)
    upload = UploadRequest(filename="cv.pdf", content_type="application/pdf", size=64, stream=stream)

    task = asyncio.create_task(staging.acquire(upload))
    assert await asyncio.to_thread(stream.started.wait, 5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    stream.gate.set()
    assert await asyncio.to_thread(stream.drained.wait, 5)
    for _ in range(100):
        if not list(staging_dir.iterdir()):
            break
        await asyncio.sleep(0.02)

    assert list(staging_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_memory_staging_buffers_and_releases() -> None:
    staging = MemoryStaging()
    staging.prepare()
    upload = _upload(b"payload")
    upload.stream.read()

    staged = await staging.acquire(upload)
    assert staged.size == 7
    with staged.open() as source:
        assert source.read() == b"payload"

    await staging.release(staged)
    await staging.release(staged)
    assert staged.buffer is None
    assert staged.released is True
