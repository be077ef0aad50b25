# services/providers.py
"""Image-generation providers reached over HTTP with httpx."""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

import httpx

from illusongs.services.prompts import ContinuityTurn, flatten_continuity
from illusongs.settings.config import settings

logger = logging.getLogger(__name__)

OPENROUTER_PROVIDER = "openrouter"
OPENAI_IMAGES_PROVIDER = "openai_images"
IMAGE_POLL_INTERVAL_SEC = 1.5
IMAGE_POLL_MAX_ATTEMPTS = 10


class ProviderError(RuntimeError):
    pass


@dataclass
class ProviderResult:
    image_bytes: bytes
    summary_text: Optional[str] = None
    response_id: Optional[str] = None


class ImageProvider(Protocol):
    name: str
    model: str
    supports_conversations: bool

    async def generate(
        self,
        prompt: str,
        continuity: Sequence[ContinuityTurn],
        conversation_id: Optional[str] = None,
    ) -> ProviderResult: ...


def decode_base64_image(value: str) -> bytes:
    # tolerate data: URLs
    payload = value[value.rfind(",") + 1:] if "," in value else value
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ProviderError("Image payload is not valid base64.") from e


# ---------------------------------------------
# OpenRouter (Responses API, multi-turn input)
# ---------------------------------------------
def _content(turn: ContinuityTurn) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = [{"type": "input_text", "text": turn.text}]
    if turn.image_url:
        items.append({"type": "input_image", "image_url": turn.image_url, "detail": "low"})
    return items


def _image_call(response: dict) -> Optional[dict]:
    for item in response.get("output") or []:
        if item.get("type") == "image_generation_call":
            return item
    return None


def _output_text(response: dict) -> Optional[str]:
    text = response.get("output_text")
    if not isinstance(text, str):
        parts = []
        for item in response.get("output") or []:
            if item.get("type") != "message":
                continue
            for chunk in item.get("content") or []:
                if chunk.get("type") == "output_text" and chunk.get("text"):
                    parts.append(chunk["text"])
        text = "\n".join(parts)
    text = text.strip()
    return text or None


class OpenRouterImageProvider:
    name = OPENROUTER_PROVIDER
    supports_conversations = True

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        referer: str = "https://illusongs.app",
        app_title: str = "Illusongs Song Generator",
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        poll_interval: float = IMAGE_POLL_INTERVAL_SEC,
        max_polls: int = IMAGE_POLL_MAX_ATTEMPTS,
        timeout: float = 180,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.referer = referer
        self.app_title = app_title
        self.transport = transport
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.timeout = timeout

    def _headers(self, conversation_id: Optional[str]) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": self.referer,
            "X-Title": self.app_title,
        }
        if conversation_id:
            headers["X-Conversation-ID"] = conversation_id
        return headers

    async def generate(
        self,
        prompt: str,
        continuity: Sequence[ContinuityTurn],
        conversation_id: Optional[str] = None,
    ) -> ProviderResult:
        messages = [
            {"type": "message", "role": turn.role, "content": _content(turn)}
            for turn in continuity
        ]
        messages.append(
            {"type": "message", "role": "user", "content": [{"type": "input_text", "text": prompt}]}
        )

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(conversation_id),
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                r = await client.post("/responses", json={"model": self.model, "input": messages})
                r.raise_for_status()
                response = r.json()
                return await self._resolve_image(client, response)
        except httpx.HTTPError as e:
            raise ProviderError(f"OpenRouter request failed: {e}") from e

    async def _resolve_image(self, client: httpx.AsyncClient, response: dict) -> ProviderResult:
        current = response
        for attempt in range(self.max_polls + 1):
            call = _image_call(current)
            response_id = current.get("id")
            if call is None:
                raise ProviderError(f"Image generation response missing image data (responseId={response_id}).")
            if call.get("status") == "completed" and call.get("result"):
                return ProviderResult(
                    image_bytes=decode_base64_image(call["result"]),
                    summary_text=_output_text(current),
                    response_id=response_id,
                )
            if call.get("status") == "failed":
                raise ProviderError(f"Image generation failed for response {response_id}.")
            if attempt == self.max_polls:
                break
            await asyncio.sleep(self.poll_interval)
            r = await client.get(f"/responses/{response_id}")
            r.raise_for_status()
            current = r.json()
        raise ProviderError(
            f"Image generation timed out before completion (responseId={response.get('id')})."
        )


# ---------------------------------------------
# OpenAI Images (single prompt, no conversation)
# ---------------------------------------------
class OpenAIImagesProvider:
    name = OPENAI_IMAGES_PROVIDER
    supports_conversations = False

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        size: str = "1024x1536",
        quality: str = "high",
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 180,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.size = size
        self.quality = quality
        self.transport = transport
        self.timeout = timeout

    async def generate(
        self,
        prompt: str,
        continuity: Sequence[ContinuityTurn],
        conversation_id: Optional[str] = None,
    ) -> ProviderResult:
        payload = {
            "model": self.model,
            "prompt": flatten_continuity(continuity, prompt),
            "n": 1,
            "size": self.size,
            "quality": self.quality,
            "output_format": "png",
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                r = await client.post("/images/generations", json=payload)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"OpenAI image request failed: {e}") from e

        first = ((data or {}).get("data") or [{}])[0]
        b64 = first.get("b64_json")
        if not b64:
            raise ProviderError("Image generation response missing image data.")
        revised = (first.get("revised_prompt") or "").strip()
        return ProviderResult(image_bytes=decode_base64_image(b64), summary_text=revised or prompt)


def build_provider_from_settings() -> ImageProvider:
    if settings.IMAGE_PROVIDER == OPENAI_IMAGES_PROVIDER:
        if not settings.OPENAI_API_KEY:
            raise ProviderError("Config error: Missing environment variable OPENAI_API_KEY")
        return OpenAIImagesProvider(
            api_key=settings.OPENAI_API_KEY,
            model=settings.openai_image_model,
            base_url=settings.OPENAI_BASE_URL,
            size=settings.openai_image_size,
            quality=settings.openai_image_quality,
        )
    if not settings.OPENROUTER_API_KEY:
        raise ProviderError("Config error: Missing environment variable OPENROUTER_API_KEY")
    return OpenRouterImageProvider(
        api_key=settings.OPENROUTER_API_KEY,
        model=settings.openrouter_model,
        base_url=settings.OPENROUTER_BASE_URL,
        referer=settings.OPENROUTER_HTTP_REFERER,
        app_title=settings.OPENROUTER_APP_TITLE,
    )
