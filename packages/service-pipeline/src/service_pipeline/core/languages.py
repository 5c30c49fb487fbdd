from __future__ import annotations

from collections.abc import Iterable

LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "ar": "Arabic",
    "uk": "Ukrainian",
    "ru": "Russian",
    "de": "German",
    "zh": "Chinese",
    "fa": "Persian",
    "tr": "Turkish",
    "sw": "Swahili",
    "hi": "Hindi",
    "ur": "Urdu",
    "ps": "Pashto",
    "so": "Somali",
}

_CODES_BY_NAME: dict[str, str] = {name.lower(): code for code, name in LANGUAGE_NAMES.items()}


def normalize_language_code(value: str) -> str:
    lowered = value.strip().lower()
    return _CODES_BY_NAME.get(lowered, lowered)


def normalize_languages(values: Iterable[str | None]) -> tuple[str, ...]:
    normalized: list[str] = []
    for value in values:
        if not value or not value.strip():
            continue
        code = normalize_language_code(value)
        if code not in normalized:
            normalized.append(code)
    return tuple(normalized)
