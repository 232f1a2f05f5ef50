"""JSON receipts written next to saved images."""

from __future__ import annotations

import json
from dataclasses import fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Sequence

from .contracts import UNSET, GenerationRequest, ResultImage


_REDACTED_KEYS = {
    "image",
    "mask",
    "reference_image_multiple",
    "director_reference_images",
    "controlnet_condition",
}


def _serialize(value: Any) -> Any:
    if value is UNSET:
        return UNSET
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}>"
    if is_dataclass(value) and not isinstance(value, type):
        out: Dict[str, Any] = {}
        for f in fields(value):
            item = _serialize(getattr(value, f.name))
            if item is not UNSET:
                out[f.name] = item
        return out
    if isinstance(value, Mapping):
        return {str(k): _serialize(v) for k, v in value.items() if v is not UNSET}
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value if item is not UNSET]
    return str(value)


def sanitize_payload(payload: Any) -> Any:
    """Replace image payloads with a size marker so logs and receipts stay small."""
    if payload is None or isinstance(payload, (int, float, bool)):
        return payload
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        return f"<bytes:{len(payload)}>"
    if isinstance(payload, Mapping):
        sanitized: MutableMapping[str, Any] = {}
        for key, value in payload.items():
            if str(key).lower() in _REDACTED_KEYS and value:
                sanitized[str(key)] = _omitted(value)
                continue
            sanitized[str(key)] = sanitize_payload(value)
        return sanitized
    if isinstance(payload, (list, tuple)):
        return [sanitize_payload(item) for item in payload]
    return str(payload)


def _omitted(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_omitted(item) for item in value]
    return f"<omitted:{len(value)}>" if isinstance(value, (str, bytes, bytearray)) else "<omitted>"


def build_receipt(
    *,
    request: GenerationRequest,
    normalized: GenerationRequest,
    payload: Mapping[str, Any],
    images: Sequence[ResultImage],
    cost: Optional[int] = None,
    host: Optional[str] = None,
) -> Dict[str, Any]:
    artifacts: List[Dict[str, Any]] = [
        {"filename": image.filename, "path": str(image.path) if image.path else None, "bytes": len(image.data)}
        for image in images
    ]
    return {
        "request": sanitize_payload(_serialize(request)),
        "normalized": sanitize_payload(_serialize(normalized)),
        "payload": sanitize_payload(payload),
        "warnings": list(normalized.warnings),
        "estimated_cost": cost,
        "host": host,
        "artifacts": artifacts,
    }


def write_receipt(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
        handle.write("\n")
