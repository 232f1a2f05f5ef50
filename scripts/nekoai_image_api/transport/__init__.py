"""Transport registry."""

from __future__ import annotations

from typing import Dict

from .base import Transport, TransportResponse


_TRANSPORTS: Dict[str, Transport] = {}


def _build_transport(name: str) -> Transport:
    key = name.strip().lower()
    if key in ("requests", "http"):
        from .http import RequestsTransport
        return RequestsTransport()
    raise ValueError(f"No transport registered for '{name}'.")


def get_transport(name: str = "requests") -> Transport:
    key = name.strip().lower()
    transport = _TRANSPORTS.get(key)
    if transport is not None:
        return transport
    transport = _build_transport(key)
    _TRANSPORTS[key] = transport
    return transport


__all__ = ["get_transport", "Transport", "TransportResponse"]
