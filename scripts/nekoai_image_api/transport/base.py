"""Transport interfaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Protocol


@dataclass
class TransportResponse:
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    chunks: Optional[Iterable[bytes]] = None
    on_close: Optional[Callable[[], None]] = None

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return str(value)
        return ""

    def iter_chunks(self) -> Iterator[bytes]:
        if self.chunks is not None:
            for chunk in self.chunks:
                if chunk:
                    yield bytes(chunk)
        elif self.body:
            yield self.body

    def read_all(self) -> bytes:
        if self.body is None:
            self.body = b"".join(self.iter_chunks())
            self.chunks = None
        return self.body

    def close(self) -> None:
        if self.on_close is not None:
            self.on_close()
            self.on_close = None


class Transport(Protocol):
    name: str

    def post(
        self,
        url: str,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        *,
        timeout: float,
        stream: bool = False,
    ) -> TransportResponse:
        ...
