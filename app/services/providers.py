"""Image synthesis providers."""

from abc import ABC, abstractmethod

import httpx

from app.core.config import get_settings


class ProviderError(Exception):
    """Synthesis attempt failed: timeout, rejection or transport error."""


class ImageProvider(ABC):
    @abstractmethod
    async def generate(self, model_id: str, prompt: str, negative_prompt: str | None = None) -> bytes:
        """Return encoded image bytes or raise ProviderError."""
        ...


class HuggingFaceProvider(ImageProvider):
    """Text-to-image through the Hugging Face inference API."""

    def __init__(self, api_key: str, base_url: str, timeout: float) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def generate(self, model_id: str, prompt: str, negative_prompt: str | None = None) -> bytes:
        payload = {
            "inputs": prompt,
            "parameters": {"negative_prompt": negative_prompt or ""},
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Accept": "image/png"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(f"{self.base_url}/{model_id}", json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(f"{model_id}: {e.__class__.__name__}: {e}") from e
        if resp.status_code >= 400:
            raise ProviderError(f"{model_id}: HTTP {resp.status_code}: {_error_detail(resp)}")
        content_type = resp.headers.get("content-type", "")
        if not content_type.startswith("image/"):
            raise ProviderError(f"{model_id}: unexpected content type {content_type or 'none'}")
        return resp.content


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])[:200]
    return str(body)[:200]


def get_provider() -> ImageProvider | None:
    """Configured provider, or None when no API key is set (placeholder mode)."""
    settings = get_settings()
    if not settings.huggingface_api_key:
        return None
    return HuggingFaceProvider(
        settings.huggingface_api_key,
        settings.huggingface_api_url,
        settings.generation_timeout_seconds,
    )
