"""Tests for description translators."""

import json

import httpx
import pytest

from services.translation import GeminiTranslator, NoopTranslator
from utils.error_handling import ConfigurationError, TranslationError


@pytest.mark.asyncio
async def test_gemini_translator_strips_label_prefix():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"candidates": [{"content": {"parts": [{"text": "Translation: سلام"}]}}]}
        )

    translator = GeminiTranslator("key-123", model="models/gemini-2.5-flash", transport=httpx.MockTransport(handler))
    result = await translator.translate("Hello")

    assert result == "سلام"
    assert seen["url"].params["key"] == "key-123"
    assert seen["url"].path.endswith("/models/gemini-2.5-flash:generateContent")
    assert "Persian" in seen["body"]["contents"][0]["parts"][0]["text"]


@pytest.mark.asyncio
async def test_gemini_errors_raise_translation_error():
    translator = GeminiTranslator("key", transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    with pytest.raises(TranslationError):
        await translator.translate("Hello")

    empty = GeminiTranslator("key", transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []})))
    with pytest.raises(TranslationError):
        await empty.translate("Hello")


@pytest.mark.asyncio
async def test_blank_text_and_noop():
    translator = GeminiTranslator("key", transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    assert await translator.translate("   ") == ""
    assert await NoopTranslator().translate("Hola") == "Hola"


def test_api_key_is_required():
    with pytest.raises(ConfigurationError):
        GeminiTranslator("")
