"""Comma-separated tag helpers."""

from __future__ import annotations

from typing import List, Optional


def dedupe_tags(text: Optional[str]) -> Optional[str]:
    """Drop repeated tags case-insensitively, keeping first-seen casing and order."""
    if not text:
        return text
    seen = set()
    kept: List[str] = []
    for tag in text.split(","):
        trimmed = tag.strip()
        if not trimmed:
            continue
        lowered = trimmed.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        kept.append(trimmed)
    return ", ".join(kept)


def join_tags(*parts: Optional[str]) -> str:
    return ", ".join(part.strip() for part in parts if part and part.strip())
