from __future__ import annotations

import base64
import json
from pathlib import Path

import httpx
import pytest

from literal_worker.app.settings import Settings
from literal_worker.services.exceptions import GenerationFailure
from literal_worker.services.generator import ImageGeneratorClient


def _client(tmp_path: Path, handler) -> ImageGeneratorClient:
    settings = Settings(data_root=tmp_path, image_gen_url="http://generator.test/generate")
    transport = httpx.MockTransport(handler)
    return ImageGeneratorClient(settings, client=httpx.AsyncClient(transport=transport))


@pytest.mark.asyncio
async def test_generate_posts_prompt(tmp_path: Path) -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"images": ["aW1n", "aW1nMg=="]})

    client = _client(tmp_path, handler)
    images = await client.generate("city lights")
    await client.close()

    assert images == ["aW1n", "aW1nMg=="]
    assert seen == [{"prompt": "city lights"}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503),
        httpx.Response(200, json={"images": []}),
        httpx.Response(200, json={"nothing": True}),
        httpx.Response(200, content=b"not json"),
    ],
)
async def test_generate_failures(tmp_path: Path, response: httpx.Response) -> None:
    client = _client(tmp_path, lambda request: response)

    with pytest.raises(GenerationFailure):
        await client.generate("anything")
    await client.close()


@pytest.mark.asyncio
async def test_transport_errors_become_generation_failures(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = _client(tmp_path, handler)
    with pytest.raises(GenerationFailure):
        await client.generate("anything")
    await client.close()


@pytest.mark.asyncio
async def test_generate_normalises_wrapped_base64(tmp_path: Path) -> None:
    raw = bytes(range(256))
    wrapped = base64.encodebytes(raw).decode("ascii")
    client = _client(tmp_path, lambda request: httpx.Response(200, json={"images": [wrapped]}))

    images = await client.generate("long exposure")
    await client.close()

    assert images == [base64.b64encode(raw).decode("ascii")]


@pytest.mark.asyncio
async def test_generate_rejects_invalid_base64(tmp_path: Path) -> None:
    client = _client(
        tmp_path, lambda request: httpx.Response(200, json={"images": ["not*base64!"]})
    )

    with pytest.raises(GenerationFailure, match="invalid base64"):
        await client.generate("anything")
    await client.close()
