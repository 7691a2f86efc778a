import asyncio
import logging

import httpx

from upload_relay.config import Settings
from upload_relay.errors import (
    MISSING_FILE_MESSAGE,
    RelayErr,
    RelayErrorKind,
    RelayOk,
    RelayResult,
    classify_exception,
)
from upload_relay.http import decode_body, post_multipart
from upload_relay.staging import StagedUpload, StagingStrategy, UploadRequest

UPLOAD_FIELD = "resume"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

logger = logging.getLogger("upload_relay.relay")


class UploadRelay:
    def __init__(
        self,
        settings: Settings,
        staging: StagingStrategy,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._staging = staging
        self._transport = transport

    @property
    def staging(self) -> StagingStrategy:
        return self._staging

    async def relay(self, upload: UploadRequest | None) -> RelayResult:
        """Forward one upload to the webhook. The staged copy is released on every exit path."""
        if upload is None or not upload.filename or upload.size == 0:
            logger.info("upload rejected: no file in request")
            return RelayErr(kind=RelayErrorKind.MISSING_FILE, message=MISSING_FILE_MESSAGE)

        logger.info(
            "file received",
            extra={
                "file_name": upload.filename,
                "size_bytes": upload.size,
                "content_type": upload.content_type,
                "strategy": self._staging.name,
            },
        )

        staged: StagedUpload | None = None
        try:
            staged = await self._staging.acquire(upload)
            logger.debug("upload staged", extra={"file_name": staged.filename, "strategy": self._staging.name})
            return await self._dispatch(staged)
        except Exception as exc:  # noqa: BLE001
            err = classify_exception(exc)
            if err.kind is RelayErrorKind.INTERNAL:
                logger.exception("relay failed", extra={"file_name": upload.filename})
            else:
                logger.warning(
                    "relay failed: %s",
                    err.kind.value,
                    extra={"file_name": upload.filename, "error_kind": err.kind.value},
                )
            return err
        finally:
            if staged is not None:
                await self._staging.release(staged)
                logger.debug("staged upload released", extra={"file_name": upload.filename})

    async def _dispatch(self, staged: StagedUpload) -> RelayResult:
        logger.info(
            "forwarding upload",
            extra={"file_name": staged.filename, "size_bytes": staged.size, "field": UPLOAD_FIELD},
        )
        timeout_s = self._settings.upload_timeout_s
        with staged.open() as source:
            files = {
                UPLOAD_FIELD: (staged.filename, source, staged.content_type or DEFAULT_CONTENT_TYPE),
            }
            response = await asyncio.wait_for(
                post_multipart(
                    self._settings.webhook_url,
                    files,
                    timeout_s=timeout_s,
                    transport=self._transport,
                ),
                timeout=timeout_s,
            )

        body = decode_body(response)
        if response.is_success:
            logger.info(
                "downstream response received",
                extra={"file_name": staged.filename, "downstream_status": response.status_code},
            )
            return RelayOk(
                body=body,
                content=response.content,
                status_code=response.status_code,
                media_type=response.headers.get("content-type"),
            )

        logger.warning(
            "downstream returned error",
            extra={"file_name": staged.filename, "downstream_status": response.status_code},
        )
        return RelayErr(
            kind=RelayErrorKind.DOWNSTREAM_HTTP,
            message=f"Downstream error: {response.status_code}",
            status=response.status_code,
            details=body,
        )
