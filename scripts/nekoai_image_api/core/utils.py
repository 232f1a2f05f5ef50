"""Utility helpers for the NovelAI client."""

from __future__ import annotations

import base64
import os
import random
import re
import string
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Tuple

from .contracts import ImageInput

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
_DATA_URL_RE = re.compile(r"^data:[^;,]+;base64,", re.IGNORECASE)
_CORRELATION_ALPHABET = string.ascii_letters + string.digits


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def file_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


def iso_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def ensure_out_dir(out_dir: Optional[Path]) -> Path:
    if out_dir is None:
        root = Path(os.getenv("NEKOAI_OUTPUTS", "outputs"))
        out_dir = root / "nekoai" / utc_timestamp()
    out_dir = Path(out_dir).expanduser().resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir


def is_url(value: str) -> bool:
    return bool(_URL_RE.match(value or ""))


def read_input_bytes(value: ImageInput) -> Tuple[bytes, Optional[str]]:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value), None
    if isinstance(value, Path):
        return value.read_bytes(), str(value)
    if isinstance(value, str):
        if is_url(value):
            raise ValueError("URL inputs must be downloaded before they are sent.")
        if _DATA_URL_RE.match(value):
            return base64.b64decode(_DATA_URL_RE.sub("", value)), None
        path = Path(value).expanduser().resolve()
        return path.read_bytes(), str(path)
    raise TypeError(f"Unsupported input type: {type(value)}")


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def sniff_extension(data: bytes) -> str:
    if data[:2] == b"\xff\xd8":
        return "jpg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return "png"


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"


def correlation_id(length: int = 6) -> str:
    return "".join(random.choice(_CORRELATION_ALPHABET) for _ in range(length))


def prep_headers(base: Dict[str, str], token: str, accept: str) -> Dict[str, str]:
    headers = dict(base)
    headers["Authorization"] = f"Bearer {token}"
    headers["Accept"] = accept
    headers["x-correlation-id"] = correlation_id()
    headers["x-initiated-at"] = iso_timestamp()
    return headers
