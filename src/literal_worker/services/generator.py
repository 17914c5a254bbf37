"""Client for the external text-to-image service."""

from __future__ import annotations

from typing import List, Optional

import httpx
from loguru import logger

from ..app.settings import Settings
from .cache import normalise_image
from .exceptions import GenerationFailure


class ImageGeneratorClient:
    """Posts a prompt and returns the base64 images the service rendered.

    A single ``httpx.AsyncClient`` is kept for the process lifetime; call
    :meth:`close` on shutdown.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = settings.image_gen_url
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.image_gen_timeout_seconds, connect=10.0)
        )

    @property
    def url(self) -> str:
        return self._url

    async def generate(self, prompt: str) -> List[str]:
        try:
            response = await self._client.post(self._url, json={"prompt": prompt})
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise GenerationFailure(
                f"image generator returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise GenerationFailure(f"image generator unreachable: {exc}") from exc
        except ValueError as exc:
            raise GenerationFailure("image generator returned invalid JSON") from exc

        images = payload.get("images") if isinstance(payload, dict) else None
        if not isinstance(images, list) or not images:
            raise GenerationFailure("image generator returned no images")
        if not all(isinstance(image, str) and image for image in images):
            raise GenerationFailure("image generator returned malformed images")
        try:
            images = [normalise_image(image) for image in images]
        except ValueError as exc:
            raise GenerationFailure("image generator returned invalid base64") from exc
        logger.debug("Generator returned {} images for {!r}", len(images), prompt)
        return images

    async def close(self) -> None:
        await self._client.aclose()
