from typing import Any

import httpx


async def post_multipart(
    url: str,
    files: dict[str, Any],
    timeout_s: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.Response:
    async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
        return await client.post(url, files=files)


async def post_form(
    url: str,
    data: dict[str, str],
    timeout_s: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.Response:
    async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
        return await client.post(url, data=data)


def decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
