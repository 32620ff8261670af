"""
Generation collaborator used by the in-chat assistant.

Only called on an explicit "@ai" trigger. Failures surface as
ExternalServiceError, which the session turns into a chat-visible
system message.
"""
from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from securechat.core.config import Settings
from securechat.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a secure encrypted terminal AI participating in a group chat. Keep responses brief."
)


@dataclass(frozen=True)
class InlineMedia:
    mime_type: str
    data: bytes


class GenerationClient(ABC):
    @abstractmethod
    async def generate(self, prompt: str, media: InlineMedia | None = None) -> str:
        ...


class GeminiClient(GenerationClient):
    """Generative Language REST API (generateContent)."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        chat_model: str,
        vision_model: str,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.chat_model = chat_model
        self.vision_model = vision_model
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> GeminiClient | None:
        if not settings.GENERATION_API_KEY:
            return None
        return cls(
            api_key=settings.GENERATION_API_KEY,
            base_url=settings.generation_base_url,
            chat_model=settings.chat_model,
            vision_model=settings.vision_model,
            timeout=settings.generation_timeout_seconds,
        )

    def _request(self, prompt: str, media: InlineMedia | None) -> tuple[str, dict]:
        if media is not None:
            parts = [
                {"inlineData": {"mimeType": media.mime_type, "data": base64.b64encode(media.data).decode("ascii")}},
                {"text": prompt or "Describe this."},
            ]
            return self.vision_model, {"contents": [{"parts": parts}]}
        return self.chat_model, {
            "contents": [{"parts": [{"text": prompt or "Hello."}]}],
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
        }

    async def generate(self, prompt: str, media: InlineMedia | None = None) -> str:
        model, body = self._request(prompt, media)
        url = f"{self.base_url}/models/{model}:generateContent"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, params={"key": self.api_key}, json=body)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("Generation call failed (%s): HTTP %s", model, exc.response.status_code)
            raise ExternalServiceError(f"Generation failed with HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Generation call failed (%s): %s", model, exc)
            raise ExternalServiceError(f"Generation failed: {exc}") from exc

        text = "".join(
            part.get("text", "")
            for candidate in data.get("candidates", [])[:1]
            for part in candidate.get("content", {}).get("parts", [])
        )
        if text:
            return text
        return "Analyzed image." if media is not None else "Transmission received."
