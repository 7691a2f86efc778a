import asyncio
import io
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Protocol
from uuid import uuid4

from upload_relay.config import Settings

logger = logging.getLogger("upload_relay.staging")

_COPY_CHUNK_BYTES = 1024 * 1024


@dataclass
class UploadRequest:
    filename: str
    content_type: str
    size: int
    stream: BinaryIO


@dataclass
class StagedUpload:
    filename: str
    content_type: str
    size: int
    buffer: bytes | None = None
    path: Path | None = None
    released: bool = field(default=False)

    def open(self) -> BinaryIO:
        if self.released:
            raise RuntimeError("staged upload already released")
        if self.path is not None:
            return self.path.open("rb")
        return io.BytesIO(self.buffer or b"")


class StagingStrategy(Protocol):
    name: str

    def prepare(self) -> None: ...

    async def acquire(self, upload: UploadRequest) -> StagedUpload: ...

    async def release(self, staged: StagedUpload) -> None: ...


class MemoryStaging:
    name = "memory"

    def prepare(self) -> None:
        return None

    async def acquire(self, upload: UploadRequest) -> StagedUpload:
        upload.stream.seek(0)
        data = await asyncio.to_thread(upload.stream.read)
        return StagedUpload(
            filename=upload.filename,
            content_type=upload.content_type,
            size=len(data),
            buffer=data,
        )

    async def release(self, staged: StagedUpload) -> None:
        if staged.released:
            return
        staged.buffer = None
        staged.released = True


class DiskStaging:
    name = "disk"

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def prepare(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    async def acquire(self, upload: UploadRequest) -> StagedUpload:
        suffix = Path(upload.filename).suffix.lower()
        destination = self.directory / f"{uuid4().hex}{suffix}"
        copy = asyncio.ensure_future(asyncio.to_thread(_copy_to_file, upload.stream, destination))
        try:
            size = await asyncio.shield(copy)
        except BaseException:
            # the worker thread may still be writing; delete once it has stopped
            copy.add_done_callback(lambda done: _discard_when_done(done, destination))
            raise
        logger.debug("staged upload %s at %s", upload.filename, destination)
        return StagedUpload(
            filename=upload.filename,
            content_type=upload.content_type,
            size=size,
            path=destination,
        )

    async def release(self, staged: StagedUpload) -> None:
        if staged.released:
            return
        staged.released = True
        if staged.path is None:
            return
        try:
            staged.path.unlink(missing_ok=True)
        except OSError:
            logger.exception("failed to delete staged upload %s", staged.path)
            return
        logger.debug("deleted staged upload %s", staged.path)


def build_staging(settings: Settings) -> StagingStrategy:
    if settings.upload_storage == "disk":
        return DiskStaging(settings.staging_dir)
    return MemoryStaging()


def _copy_to_file(source: BinaryIO, destination: Path) -> int:
    source.seek(0)
    target = destination.open("xb")
    try:
        with target:
            shutil.copyfileobj(source, target, _COPY_CHUNK_BYTES)
            return target.tell()
    except BaseException:
        _discard(destination)
        raise


def _discard_when_done(copy: asyncio.Future, path: Path) -> None:
    if not copy.cancelled():
        copy.exception()
    _discard(path)


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.exception("failed to delete staged upload %s", path)
