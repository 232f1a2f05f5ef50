"""Incremental parsers for streamed generation progress.

Two framings are understood:

* length-prefixed binary records: ``[u32 big-endian length][msgpack body]``
  repeated;
* text event streams: ``field: value`` lines, records separated by a blank
  line, ``data`` values concatenated within a record.

Both parsers are fed chunks as they arrive and yield every event that is
complete in the buffered data. A record that cannot be decoded is logged and
skipped; the parsers never raise on malformed input.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import struct
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

import msgpack

from .contracts import EventType, ResultImage, StreamEvent
from .errors import ParserResyncWarning
from .utils import file_timestamp, sniff_extension


logger = logging.getLogger(__name__)

LENGTH_PREFIX = 4
MAX_RECORD_LENGTH = 64 * 1024 * 1024
SSE_MARKERS = ("event:", "data:")


def _warn_skip(reason: str, data: bytes = b"") -> None:
    preview = " ".join(f"0x{byte:02x}" for byte in data[:32])
    logger.warning(
        "%s: %s (length=%d, head=%s)", ParserResyncWarning.__name__, reason, len(data), preview or "-"
    )


def normalize_image_payload(value: Any) -> bytes:
    """Collapse raw bytes, base64 text or an integer array to ``bytes``."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=False)
        except (binascii.Error, ValueError):
            _warn_skip("image field is not valid base64", value[:32].encode("utf-8", "replace"))
            return b""
    if isinstance(value, (list, tuple)):
        try:
            return bytes(value)
        except (TypeError, ValueError):
            _warn_skip("image field is not a byte array")
            return b""
    _warn_skip(f"unknown image payload type {type(value).__name__}")
    return b""


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _float(value: Any) -> float:
    try:
        return float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0


def build_event(record: Mapping[str, Any], timestamp: Optional[str] = None) -> StreamEvent:
    image_bytes = normalize_image_payload(record.get("image"))
    extension = sniff_extension(image_bytes)
    stamp = timestamp or file_timestamp()
    is_final = record.get("event_type") == "final"
    step_ix = _int(record.get("step_ix"))
    if is_final:
        filename = f"{stamp}_final.{extension}"
    else:
        filename = f"{stamp}_step_{step_ix:02d}.{extension}"
    return StreamEvent(
        event_type=EventType.FINAL if is_final else EventType.INTERMEDIATE,
        samp_ix=_int(record.get("samp_ix")),
        step_ix=step_ix,
        gen_id=str(record.get("gen_id") or ""),
        sigma=_float(record.get("sigma")),
        image=ResultImage(filename=filename, data=image_bytes),
    )


def _as_record(obj: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(obj, Mapping) and "event_type" in obj:
        return obj
    return None


_UNDECODABLE = object()


def _load_body(data: bytes) -> Any:
    """Unpack a record body as msgpack, then as UTF-8 JSON; ``_UNDECODABLE`` if neither."""
    try:
        return msgpack.unpackb(data, raw=False)
    except (ValueError, msgpack.UnpackException) as exc:
        logger.debug("msgpack decode failed (%s); trying JSON", exc)
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return _UNDECODABLE


def _event_from(obj: Any, data: bytes) -> Optional[StreamEvent]:
    record = _as_record(obj)
    if record is None:
        _warn_skip("record has no event_type", data)
        return None
    return build_event(record)


def decode_record(data: bytes) -> Optional[StreamEvent]:
    """Decode one binary record body, falling back to UTF-8 JSON."""
    obj = _load_body(data)
    if obj is _UNDECODABLE:
        _warn_skip("record is neither msgpack nor JSON", data)
        return None
    return _event_from(obj, data)


def _opens_record(byte: int) -> bool:
    # msgpack fixmap, map16, map32, or the JSON object fallback
    return 0x80 <= byte <= 0x8F or byte in (0xDE, 0xDF, 0x7B)


class BinaryStreamParser:
    """State machine over ``[length][body]`` records.

    ``feed`` is a generator: it yields each record completed by the chunk
    and returns once the buffered bytes are exhausted. Partial records stay
    buffered for the next call.

    A length prefix is only trusted when it is non-zero, within
    ``max_record_length`` and followed by a byte that can open a record.
    Otherwise, or when the finished body does not decode, the parser drops
    one byte and scans again from there.
    """

    def __init__(self, max_record_length: int = MAX_RECORD_LENGTH) -> None:
        self._buffer = bytearray()
        self._expected: Optional[int] = None
        self._resyncing = False
        self.max_record_length = max_record_length

    @property
    def awaiting_body(self) -> bool:
        return self._expected is not None

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def _skip_byte(self, reason: str) -> None:
        if not self._resyncing:
            _warn_skip(reason, bytes(self._buffer[: LENGTH_PREFIX + 1]))
            self._resyncing = True
        del self._buffer[:1]
        self._expected = None

    def feed(self, chunk: bytes) -> Iterator[StreamEvent]:
        self._buffer.extend(chunk)
        while True:
            if self._expected is None:
                if len(self._buffer) < LENGTH_PREFIX:
                    return
                (length,) = struct.unpack(">I", bytes(self._buffer[:LENGTH_PREFIX]))
                if length == 0 or length > self.max_record_length:
                    self._skip_byte(f"declared length {length} is out of range")
                    continue
                if len(self._buffer) == LENGTH_PREFIX:
                    return
                if not _opens_record(self._buffer[LENGTH_PREFIX]):
                    self._skip_byte(f"byte 0x{self._buffer[LENGTH_PREFIX]:02x} cannot open a record")
                    continue
                self._expected = length
            end = LENGTH_PREFIX + self._expected
            if len(self._buffer) < end:
                return
            body = bytes(self._buffer[LENGTH_PREFIX:end])
            obj = _load_body(body)
            if obj is _UNDECODABLE:
                self._skip_byte(f"record of length {self._expected} did not decode")
                continue
            del self._buffer[:end]
            self._expected = None
            self._resyncing = False
            event = _event_from(obj, body)
            if event is not None:
                yield event

    def close(self) -> None:
        """Discard any partial record left at end of stream."""
        if self._buffer or self._expected is not None:
            _warn_skip("stream ended inside a record", bytes(self._buffer))
        self._buffer.clear()
        self._expected = None
        self._resyncing = False


class EventStreamParser:
    """Line-oriented parser for ``text/event-stream`` framing."""

    def __init__(self) -> None:
        self._pending = b""
        self._data: List[str] = []
        self._fields: dict = {}

    def _flush_record(self) -> Optional[StreamEvent]:
        if not self._data:
            self._fields = {}
            return None
        payload = "".join(self._data)
        self._data = []
        self._fields = {}
        try:
            record = _as_record(json.loads(payload))
        except ValueError:
            _warn_skip("event data is not JSON", payload.encode("utf-8", "replace"))
            return None
        if record is None:
            logger.debug("event without event_type skipped")
            return None
        return build_event(record)

    def _handle_line(self, raw: bytes) -> Optional[StreamEvent]:
        line = raw.decode("utf-8", "replace").strip()
        if line == "":
            return self._flush_record()
        if line.startswith(":") or ":" not in line:
            return None
        name, value = line.split(":", 1)
        name = name.strip()
        value = value.strip()
        if name == "data":
            self._data.append(value)
        else:
            self._fields[name] = value
        return None

    def feed(self, chunk: bytes) -> Iterator[StreamEvent]:
        self._pending += chunk
        while True:
            index = self._pending.find(b"\n")
            if index < 0:
                return
            line = self._pending[:index]
            self._pending = self._pending[index + 1 :]
            event = self._handle_line(line)
            if event is not None:
                yield event

    def close(self) -> List[StreamEvent]:
        """Flush a trailing record that had no terminating blank line."""
        events: List[StreamEvent] = []
        if self._pending:
            event = self._handle_line(self._pending)
            self._pending = b""
            if event is not None:
                events.append(event)
        event = self._flush_record()
        if event is not None:
            events.append(event)
        return events


StreamParser = Union[BinaryStreamParser, EventStreamParser]


def looks_like_event_stream(head: bytes) -> bool:
    text = head[:100].decode("utf-8", "replace")
    return any(marker in text for marker in SSE_MARKERS)


def parser_for(head: bytes, content_type: Optional[str] = None) -> StreamParser:
    if content_type and "text/event-stream" in content_type.lower():
        return EventStreamParser()
    if looks_like_event_stream(head):
        return EventStreamParser()
    return BinaryStreamParser()


def parse_chunk(parser: StreamParser, data: bytes) -> Tuple[StreamParser, List[StreamEvent]]:
    """Functional form of ``feed``: returns the parser and the completed events."""
    return parser, list(parser.feed(data))


def iter_stream_events(chunks: Iterable[bytes], content_type: Optional[str] = None) -> Iterator[StreamEvent]:
    """Parse an iterable of raw chunks, choosing the framing from the first bytes."""
    parser: Optional[StreamParser] = None
    for chunk in chunks:
        if not chunk:
            continue
        if parser is None:
            parser = parser_for(chunk, content_type)
        yield from parser.feed(chunk)
    if isinstance(parser, EventStreamParser):
        yield from parser.close()
    elif parser is not None:
        parser.close()


def parse_stream_events(data: bytes, content_type: Optional[str] = None) -> List[StreamEvent]:
    """Parse a fully buffered stream response."""
    return list(iter_stream_events([data], content_type))
