import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

MISSING_FILE_MESSAGE = "File missing"
UNREACHABLE_MESSAGE = "Cannot reach downstream service"


class RelayErrorKind(str, Enum):
    MISSING_FILE = "missing_file"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    TIMEOUT = "timeout"
    DOWNSTREAM_HTTP = "downstream_http"
    DOWNSTREAM_UNREACHABLE = "downstream_unreachable"
    INTERNAL = "internal"


@dataclass(frozen=True)
class RelayOk:
    body: Any
    content: bytes = b""
    status_code: int = 200
    media_type: str | None = None


@dataclass(frozen=True)
class RelayErr:
    kind: RelayErrorKind
    message: str = ""
    status: int | None = None
    details: Any = None
    limit: int | None = None


RelayResult = RelayOk | RelayErr


class PayloadTooLarge(Exception):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"upload of {size} bytes exceeds limit of {limit} bytes")
        self.size = size
        self.limit = limit


def classify_exception(exc: BaseException) -> RelayErr:
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return RelayErr(kind=RelayErrorKind.TIMEOUT, message=str(exc) or "timeout")
    if isinstance(exc, (httpx.NetworkError, httpx.RemoteProtocolError, httpx.ProxyError)):
        return RelayErr(kind=RelayErrorKind.DOWNSTREAM_UNREACHABLE, message=str(exc))
    if isinstance(exc, PayloadTooLarge):
        return RelayErr(kind=RelayErrorKind.PAYLOAD_TOO_LARGE, message=str(exc), limit=exc.limit)
    return RelayErr(kind=RelayErrorKind.INTERNAL, message=str(exc) or exc.__class__.__name__)


def error_response(err: RelayErr) -> tuple[int, dict[str, Any]]:
    if err.kind is RelayErrorKind.MISSING_FILE:
        return 400, {"error": MISSING_FILE_MESSAGE}
    if err.kind is RelayErrorKind.PAYLOAD_TOO_LARGE:
        return 413, {"error": "File too large", "limit": err.limit}
    if err.kind is RelayErrorKind.TIMEOUT:
        return 504, {"error": "timeout"}
    if err.kind is RelayErrorKind.DOWNSTREAM_HTTP:
        return 502, {
            "error": f"Downstream error: {err.status}",
            "status": err.status,
            "details": err.details,
        }
    if err.kind is RelayErrorKind.DOWNSTREAM_UNREACHABLE:
        return 503, {"error": UNREACHABLE_MESSAGE}
    return 500, {"error": err.message or "Internal server error"}
