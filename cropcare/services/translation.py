"""Memoized remote translation."""

import asyncio
import logging
import re

from cropcare.api.functions import FunctionsClient
from cropcare.core.constants import SUPPORTED_LANGUAGES, CacheLimits, Functions
from cropcare.exceptions import CropCareError, ValidationError
from cropcare.storage.translations import TranslationStore
from cropcare.sync.network import NetworkMonitor

logger = logging.getLogger(__name__)

DEVANAGARI = re.compile(r"[\u0900-\u097F]")
LATIN = re.compile(r"[A-Za-z]")


def cache_key(text: str, target_language: str, source_language: str | None = None) -> str:
    return f"{source_language or 'auto'}:{target_language}:{text[: CacheLimits.TRANSLATION_KEY_PREFIX_LENGTH]}"


def check_language(field: str, code: str | None) -> None:
    if code is not None and code not in SUPPORTED_LANGUAGES:
        raise ValidationError(field, code, f"Unsupported language: {code}")


def detect_language(text: str) -> str:
    """Rough script-based guess: ``hi``, ``en`` or ``unknown``."""
    if DEVANAGARI.search(text):
        return "hi"
    if LATIN.search(text):
        return "en"
    return "unknown"


class Translator:
    """Translation that never fails loudly.

    Results are memoized by source, target and the first 100 characters of the
    text. Any remote failure returns the original text.
    """

    def __init__(self, functions: FunctionsClient, store: TranslationStore, monitor: NetworkMonitor | None = None) -> None:
        self.functions = functions
        self.store = store
        self.monitor = monitor

    async def translate(self, text: str, target_language: str, source_language: str | None = None) -> str:
        """Translate ``text``, or return it unchanged if that is not possible.

        Raises:
            ValidationError: For an unsupported language code
        """
        check_language("target_language", target_language)
        check_language("source_language", source_language)
        if not text.strip():
            return text

        key = cache_key(text, target_language, source_language)
        cached = self.store.lookup(key)
        if cached is not None:
            return cached
        if self.monitor is not None and not self.monitor.is_online:
            return text

        body = {"text": text, "targetLanguage": target_language}
        if source_language:
            body["sourceLanguage"] = source_language
        try:
            data = await self.functions.invoke_with_retry(Functions.TRANSLATE, body)
        except CropCareError as e:
            logger.error(f"Translation error: {e}")
            return text

        translated = data.get("translatedText")
        if not isinstance(translated, str) or not translated:
            return text
        self.store.put(key, translated)
        return translated

    async def translate_batch(
        self, texts: list[str], target_language: str, source_language: str | None = None
    ) -> list[str]:
        """Translate many texts; only cache misses reach the network, concurrently."""
        check_language("target_language", target_language)
        check_language("source_language", source_language)

        results: list[str | None] = []
        misses: dict[str, str] = {}
        for text in texts:
            cached = self.store.lookup(cache_key(text, target_language, source_language)) if text.strip() else text
            results.append(cached)
            if cached is None:
                misses.setdefault(cache_key(text, target_language, source_language), text)

        if misses:
            translated = await asyncio.gather(
                *(self.translate(text, target_language, source_language) for text in misses.values())
            )
            by_key = dict(zip(misses.keys(), translated))
            results = [
                by_key[cache_key(text, target_language, source_language)] if result is None else result
                for text, result in zip(texts, results)
            ]
        return [result for result in results if result is not None]

    def detect_language(self, text: str) -> str:
        return detect_language(text)

    def clear_cache(self) -> None:
        self.store.clear()
