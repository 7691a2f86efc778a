import asyncio
import os
from pathlib import Path
from typing import Any

import httpx
import pytest

from upload_relay.config import Settings

# Keep tests deterministic regardless of the developer's shell or .env.
for _name in (
    "WEBHOOK_URL",
    "UPLOAD_STORAGE",
    "STAGING_DIR",
    "MAX_UPLOAD_BYTES",
    "UPLOAD_TIMEOUT_SECONDS",
    "WRAP_UPLOAD_RESPONSE",
    "SF_LOGIN_URL",
    "SF_CLIENT_ID",
    "SF_CLIENT_SECRET",
    "CORS_ALLOWED_ORIGINS",
):
    os.environ.pop(_name, None)

WEBHOOK_URL = "https://webhook.test/webhook/resume"
LOGIN_URL = "https://login.test/"


class WebhookRecorder:
    def __init__(
        self,
        status_code: int = 200,
        json_body: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        delay_s: float = 0.0,
        error: type[httpx.TransportError] | None = None,
    ) -> None:
        self.status_code = status_code
        self.json_body = json_body
        self.content = content
        self.headers = headers
        self.delay_s = delay_s
        self.error = error
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error("Connection refused", request=request)
        if self.content is not None:
            return httpx.Response(self.status_code, content=self.content, headers=self.headers)
        return httpx.Response(self.status_code, json=self.json_body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def staging_dir(tmp_path: Path) -> Path:
    return tmp_path / "staging"


@pytest.fixture
def memory_settings(staging_dir: Path) -> Settings:
    return Settings(
        webhook_url=WEBHOOK_URL,
        staging_dir=staging_dir,
        sf_login_url=LOGIN_URL,
        sf_client_id="client-id",
        sf_client_secret="client-secret",
    )


@pytest.fixture
def disk_settings(staging_dir: Path) -> Settings:
    return Settings(
        webhook_url=WEBHOOK_URL,
        upload_storage="disk",
        staging_dir=staging_dir,
        upload_timeout_s=30.0,
        wrap_upload_response=True,
    )
