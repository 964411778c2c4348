"""
Per-locale text bundles for story and chapter fields.

Stored as a JSON object `{locale: text}`. Plain strings coming from older
clients are attached to the primary locale.
"""
from __future__ import annotations

from typing import Any

LocalizedText = dict[str, str]

DEFAULT_FALLBACK: tuple[str, ...] = ("fr", "en", "gasy")


def normalize(value: Any, *, primary: str = DEFAULT_FALLBACK[0], allowed: tuple[str, ...] = DEFAULT_FALLBACK) -> LocalizedText:
    if value is None:
        return {}
    if isinstance(value, str):
        text = value.strip()
        return {primary: text} if text else {}
    if not isinstance(value, dict):
        raise ValueError("Localized text must be a string or an object keyed by locale.")
    out: LocalizedText = {}
    for locale, text in value.items():
        if locale not in allowed:
            raise ValueError(f"Unsupported locale: {locale!r}")
        if text is None:
            continue
        if not isinstance(text, str):
            raise ValueError(f"Text for locale {locale!r} must be a string.")
        text = text.strip()
        if text:
            out[locale] = text
    return out


def resolve(value: LocalizedText | None, locale: str | None = None, *, fallback: tuple[str, ...] = DEFAULT_FALLBACK) -> str:
    if not value:
        return ""
    if locale and value.get(locale):
        return value[locale]
    for loc in fallback:
        if value.get(loc):
            return value[loc]
    # Locale outside the fallback chain: first non-empty entry.
    return next((t for t in value.values() if t), "")


def merge(base: LocalizedText | None, edits: LocalizedText | None) -> LocalizedText:
    """Overlay `edits` onto `base` locale by locale."""
    out = dict(base or {})
    out.update(edits or {})
    return out
