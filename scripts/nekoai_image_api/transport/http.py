"""requests-backed transport."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

import requests

from ..core.errors import TransportError
from .base import TransportResponse


logger = logging.getLogger(__name__)

CHUNK_SIZE = 16 * 1024
MAX_ERROR_DETAIL = 500


def summarize_error(body: bytes, content_type: str = "") -> str:
    text = body.decode("utf-8", errors="replace") if body else ""
    detail = text
    if "json" in content_type.lower() or text.lstrip().startswith("{"):
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            detail = str(parsed.get("message") or parsed.get("error") or json.dumps(parsed, ensure_ascii=True))
    detail = detail.strip().replace("\n", " ")
    if len(detail) > MAX_ERROR_DETAIL:
        detail = detail[:MAX_ERROR_DETAIL].rstrip() + "..."
    return detail


def raise_for_status(status: int, reason: Optional[str], body: bytes, content_type: str, url: str) -> None:
    if status < 400:
        return
    detail = summarize_error(body, content_type)
    parts = [f"NovelAI request failed ({status} {reason or ''}".rstrip() + ")"]
    if url:
        parts.append(f"url={url}")
    if detail:
        parts.append(detail)
    raise TransportError(": ".join(parts), status=status, status_text=reason)


class RequestsTransport:
    name = "requests"

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self.session = session or requests.Session()

    def post(
        self,
        url: str,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        *,
        timeout: float,
        stream: bool = False,
    ) -> TransportResponse:
        try:
            response = self.session.post(url, json=payload, headers=dict(headers), timeout=timeout, stream=stream)
        except requests.Timeout as exc:
            raise TransportError(
                f"Request to {url} timed out after {timeout:.1f}s. Consider a higher timeout.", timeout=True
            ) from exc
        except requests.ConnectionError as exc:
            raise TransportError(f"Network error contacting {url}: {exc}", network=True) from exc

        content_type = response.headers.get("content-type", "")
        if response.status_code >= 400:
            try:
                body = response.content
            finally:
                response.close()
            raise_for_status(response.status_code, response.reason, body, content_type, url)

        logger.debug("POST %s -> %s (%s)", url, response.status_code, content_type or "no content-type")
        if not stream:
            return TransportResponse(
                status_code=response.status_code,
                headers=dict(response.headers),
                body=response.content,
            )
        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            chunks=_iter_content(response, url),
            on_close=response.close,
        )


def _iter_content(response, url: str):
    try:
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            yield chunk
    except requests.Timeout as exc:
        raise TransportError(f"Stream from {url} timed out.", timeout=True) from exc
    except (requests.ConnectionError, requests.exceptions.ChunkedEncodingError) as exc:
        raise TransportError(f"Stream from {url} was interrupted: {exc}", network=True) from exc
    finally:
        response.close()
