import asyncio
import logging
import os
from typing import AsyncIterator, BinaryIO

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from upload_relay.config import Settings, load_settings
from upload_relay.cors import setup_cors
from upload_relay.errors import PayloadTooLarge, RelayErr, RelayResult, classify_exception, error_response
from upload_relay.observability import (
    RequestLoggingMiddleware,
    configure_logging,
    exit_on_unhandled_loop_error,
)
from upload_relay.relay import UPLOAD_FIELD, UploadRelay
from upload_relay.salesforce import SalesforceClient
from upload_relay.schemas import (
    AnalysisRecord,
    HealthResponse,
    SalesforceStatusResponse,
    SaveAnalysisResponse,
    ServiceDescriptor,
    utc_now_iso,
)
from upload_relay.staging import UploadRequest, build_staging

logger = logging.getLogger("upload_relay.api")

MULTIPART_ALLOWANCE_BYTES = 64 * 1024

ENDPOINTS = {
    "upload": "POST /api/upload",
    "saveAnalysis": "POST /api/save-analysis",
    "testSalesforce": "GET /api/test-salesforce",
    "health": "GET /health",
}


def create_app(
    settings: Settings | None = None,
    upload_transport: httpx.AsyncBaseTransport | None = None,
    salesforce_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    staging = build_staging(settings)
    staging.prepare()

    app = FastAPI(title="Upload Relay", version="0.1.0")
    app.state.settings = settings
    app.state.relay = UploadRelay(settings, staging, transport=upload_transport)
    app.state.salesforce = SalesforceClient(settings, transport=salesforce_transport)

    setup_cors(app, settings.cors_allowed_origins)
    app.add_middleware(RequestLoggingMiddleware)
    _register_exception_handlers(app)
    _register_routes(app)
    return app


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_relay(request: Request) -> UploadRelay:
    return request.app.state.relay


def get_salesforce(request: Request) -> SalesforceClient:
    return request.app.state.salesforce


async def ingest_upload(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[UploadRequest | None]:
    reject_declared_oversize(request.headers.get("content-length"), settings.max_upload_bytes)
    form = await request.form()
    try:
        resume = form.get(UPLOAD_FIELD)
        if not isinstance(resume, UploadFile):
            yield None
            return
        size = await asyncio.to_thread(_measure, resume.file)
        if size > settings.max_upload_bytes:
            logger.warning(
                "upload rejected: too large",
                extra={"file_name": resume.filename, "size_bytes": size},
            )
            raise PayloadTooLarge(size, settings.max_upload_bytes)
        yield UploadRequest(
            filename=resume.filename or "",
            content_type=resume.content_type or "",
            size=size,
            stream=resume.file,
        )
    finally:
        await form.close()


def reject_declared_oversize(content_length: str | None, limit: int) -> None:
    """Refuse a body whose declared length cannot fit the limit, before any of it is read."""
    if content_length is None or not content_length.strip().isdigit():
        return
    declared = int(content_length)
    if declared > limit + MULTIPART_ALLOWANCE_BYTES:
        logger.warning("upload rejected: declared length too large", extra={"size_bytes": declared})
        raise PayloadTooLarge(declared, limit)


def render_relay_result(result: RelayResult, wrap: bool) -> Response:
    if isinstance(result, RelayErr):
        status_code, body = error_response(result)
        return JSONResponse(status_code=status_code, content=body)
    if wrap:
        data = result.body if result.body is not None else {}
        return JSONResponse(
            content={"success": True, "data": data, "message": "File forwarded successfully"}
        )
    if not result.content:
        return JSONResponse(content="")
    return Response(
        content=result.content,
        status_code=200,
        media_type=result.media_type or "application/json",
    )


def _register_routes(app: FastAPI) -> None:
    @app.post("/api/upload")
    async def upload(
        upload_request: UploadRequest | None = Depends(ingest_upload),
        relay: UploadRelay = Depends(get_relay),
        settings: Settings = Depends(get_settings),
    ) -> Response:
        result = await relay.relay(upload_request)
        return render_relay_result(result, wrap=settings.wrap_upload_response)

    @app.post("/api/save-analysis", response_model=SaveAnalysisResponse)
    async def save_analysis(
        request: Request,
        salesforce: SalesforceClient = Depends(get_salesforce),
    ):
        try:
            record = AnalysisRecord.model_validate(await request.json())
            logger.info(
                "analysis received: analysed=%s edited=%s",
                sorted((record.analysed or {}).keys()),
                sorted((record.edited or {}).keys()),
                extra={"record_id": record.record_id},
            )
            if record.saved_at is None:
                record = record.model_copy(update={"saved_at": utc_now_iso()})
            result = await salesforce.log_analysis(record)
        except Exception as exc:  # noqa: BLE001
            logger.error("salesforce simulation failed: %s", exc)
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": f"Failed to prepare data for Salesforce: {exc}",
                },
            )
        return SaveAnalysisResponse(salesforce_id=result.reference_id, saved_at=utc_now_iso())

    @app.get(
        "/api/test-salesforce",
        response_model=SalesforceStatusResponse,
        response_model_exclude_none=True,
    )
    async def test_salesforce(
        salesforce: SalesforceClient = Depends(get_salesforce),
    ) -> SalesforceStatusResponse:
        try:
            token = await salesforce.fetch_access_token()
        except Exception as exc:  # noqa: BLE001
            logger.error("salesforce connection test failed: %s", exc)
            return SalesforceStatusResponse(
                success=False,
                message=f"Salesforce connection failed: {exc}",
                connected=False,
            )
        return SalesforceStatusResponse(
            success=True,
            message="Salesforce connection successful - ready to log data",
            connected=True,
            instance_url=token.instance_url,
            can_save=False,
            mode="logging",
        )

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="OK", message="Server is running")

    @app.get("/", response_model=ServiceDescriptor)
    def index() -> ServiceDescriptor:
        return ServiceDescriptor(
            message="Upload server is running (Salesforce logging mode)",
            endpoints=ENDPOINTS,
        )


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PayloadTooLarge)
    async def payload_too_large_handler(_: Request, exc: PayloadTooLarge) -> JSONResponse:
        status_code, body = error_response(classify_exception(exc))
        return JSONResponse(status_code=status_code, content=body)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled error on %s: %s", request.url.path, exc, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def _measure(stream: BinaryIO) -> int:
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


async def _serve(server: uvicorn.Server) -> None:
    asyncio.get_running_loop().set_exception_handler(exit_on_unhandled_loop_error)
    await server.serve()


def run() -> None:
    settings = load_settings()
    configure_logging(settings)
    app = create_app(settings)
    logger.info(
        "upload relay listening on http://%s:%s (field=%s, storage=%s)",
        settings.host,
        settings.port,
        UPLOAD_FIELD,
        settings.upload_storage,
    )
    for name, route in ENDPOINTS.items():
        logger.info("endpoint %s: %s", name, route)
    server = uvicorn.Server(
        uvicorn.Config(app, host=settings.host, port=settings.port, log_config=None)
    )
    asyncio.run(_serve(server))


if __name__ == "__main__":
    run()
