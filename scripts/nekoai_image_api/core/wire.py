"""Convert normalized requests into the payload shape the service expects."""

from __future__ import annotations

import base64
from dataclasses import fields, is_dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Type

from .contracts import UNSET, GenerationRequest, Model, NormalizedRequest


TOP_LEVEL_FIELDS: FrozenSet[str] = frozenset({"prompt", "model", "action"})


def wire_name(field_obj) -> Optional[str]:
    return field_obj.metadata.get("wire", field_obj.name)


def wire_table(cls: Type[Any]) -> Dict[str, Optional[str]]:
    """Map each dataclass field to its wire key (``None`` = never sent)."""
    return {f.name: wire_name(f) for f in fields(cls)}


def _convert(value: Any) -> Any:
    if value is UNSET:
        return UNSET
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if is_dataclass(value) and not isinstance(value, type):
        return _convert_dataclass(value)
    if isinstance(value, Mapping):
        converted = {}
        for key, item in value.items():
            item_value = _convert(item)
            if item_value is not UNSET:
                converted[str(key)] = item_value
        return converted
    if isinstance(value, (list, tuple)):
        return [item for item in (_convert(entry) for entry in value) if item is not UNSET]
    return value


def _convert_dataclass(value: Any, skip: FrozenSet[str] = frozenset()) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for f in fields(value):
        if f.name in skip:
            continue
        key = wire_name(f)
        if key is None:
            continue
        converted = _convert(getattr(value, f.name))
        if converted is UNSET:
            continue
        payload[key] = converted
    return payload


def to_wire_parameters(request: NormalizedRequest) -> Dict[str, Any]:
    return _convert_dataclass(request, skip=TOP_LEVEL_FIELDS)


def to_wire_payload(request: NormalizedRequest) -> Dict[str, Any]:
    """Build ``{"input", "model", "action", "parameters"}`` for the generate endpoint.

    ``UNSET`` fields are dropped; ``None`` is kept and sent as null.
    """
    model = request.model.value if isinstance(request.model, Model) else request.model
    action = request.action.value if isinstance(request.action, Enum) else request.action
    return {
        "input": request.prompt,
        "model": model,
        "action": action,
        "parameters": to_wire_parameters(request),
    }


def to_wire_object(value: Any) -> Any:
    """Convert any request-side dataclass (director requests, captions) to plain data."""
    converted = _convert(value)
    return None if converted is UNSET else converted


def parameter_keys(request_cls: Type[GenerationRequest] = GenerationRequest) -> Tuple[str, ...]:
    table = wire_table(request_cls)
    return tuple(key for name, key in table.items() if key is not None and name not in TOP_LEVEL_FIELDS)
