"""Description translation collaborators."""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

import httpx

from utils.error_handling import ConfigurationError, TranslationError
from utils.logger import get_logger

logger = get_logger(__name__)

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
LABEL_PREFIX = re.compile(r"^(translation|translated text)\s*:\s*", re.IGNORECASE)


class NoopTranslator:
    """Returns the text unchanged."""

    async def translate(self, text: str) -> str:
        return text


class GeminiTranslator:
    """Translates through the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        api_key: str,
        target_language: str = "Persian",
        model: str = "gemini-2.5-flash",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationError("Gemini API key is required for translation")
        self.api_key = api_key
        self.target_language = target_language
        self.model = model.replace("models/", "", 1)
        self.timeout = timeout
        self._transport = transport

    def build_request(self, text: str) -> Dict[str, Any]:
        return {
            "systemInstruction": {
                "parts": [
                    {
                        "text": (
                            f"You are a professional {self.target_language} translator. "
                            "Keep the original meaning and tone. "
                            "Reply with the translated text only."
                        )
                    }
                ]
            },
            "contents": [
                {
                    "parts": [
                        {
                            "text": f"Translate the following text into fluent {self.target_language}:\n\n{text}"
                        }
                    ]
                }
            ],
        }

    @staticmethod
    def _text_from(data: Dict[str, Any]) -> str:
        for candidate in data.get("candidates") or []:
            parts = (candidate.get("content") or {}).get("parts") or []
            text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
            if text.strip():
                return text
        raise TranslationError("Translation response contained no text", {"response": data})

    async def translate(self, text: str) -> str:
        if not text or not text.strip():
            return ""
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout), transport=self._transport
            ) as client:
                response = await client.post(
                    GEMINI_ENDPOINT.format(model=self.model),
                    params={"key": self.api_key},
                    json=self.build_request(text),
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TranslationError(
                f"Failed to translate text: {exc}", {"text": text[:100] + "..."}
            ) from exc

        translation = LABEL_PREFIX.sub("", self._text_from(data).strip()).strip()
        logger.debug(f"Translated {len(text)} chars into {len(translation)} chars")
        return translation
