import base64
import json
import pathlib
import struct
import sys
import unittest

import msgpack

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "scripts"))

from nekoai_image_api.core.contracts import EventType
from nekoai_image_api.core.streaming import (
    BinaryStreamParser,
    EventStreamParser,
    build_event,
    decode_record,
    iter_stream_events,
    normalize_image_payload,
    parse_chunk,
    parse_stream_events,
    parser_for,
)


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
JPG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 24


def _record(event_type: str = "intermediate", step_ix: int = 0, samp_ix: int = 0, image: bytes = JPG_BYTES) -> dict:
    return {
        "event_type": event_type,
        "samp_ix": samp_ix,
        "step_ix": step_ix,
        "gen_id": "gen-1",
        "sigma": 1.5,
        "image": image,
    }


def _frame(record: dict) -> bytes:
    body = msgpack.packb(record, use_bin_type=True)
    return struct.pack(">I", len(body)) + body


def _sse(record: dict) -> bytes:
    payload = dict(record)
    payload["image"] = base64.b64encode(payload["image"]).decode("ascii")
    return b"event: newImage\nid: 1\ndata: " + json.dumps(payload).encode("utf-8") + b"\n\n"


class TestBinaryStreamParser(unittest.TestCase):
    def test_two_records_split_at_every_offset(self) -> None:
        data = _frame(_record(step_ix=3)) + _frame(_record("final", step_ix=27, image=PNG_BYTES))
        for offset in range(len(data) + 1):
            parser = BinaryStreamParser()
            events = list(parser.feed(data[:offset])) + list(parser.feed(data[offset:]))
            self.assertEqual([event.step_ix for event in events], [3, 27], offset)
            self.assertEqual(events[0].event_type, EventType.INTERMEDIATE)
            self.assertTrue(events[1].is_final)
            self.assertEqual(parser.buffered, 0)
            self.assertFalse(parser.awaiting_body)

    def test_byte_at_a_time(self) -> None:
        data = _frame(_record(step_ix=1)) + _frame(_record(step_ix=2))
        parser = BinaryStreamParser()
        events = []
        for index in range(len(data)):
            events.extend(parser.feed(data[index : index + 1]))
        self.assertEqual([event.step_ix for event in events], [1, 2])

    def test_partial_record_waits(self) -> None:
        data = _frame(_record())
        parser = BinaryStreamParser()
        self.assertEqual(list(parser.feed(data[:-1])), [])
        self.assertTrue(parser.awaiting_body)
        self.assertEqual(len(list(parser.feed(data[-1:]))), 1)

    def test_resync_after_oversized_length(self) -> None:
        data = b"\xff\xff\xff\xff" + _frame(_record(step_ix=5))
        parser = BinaryStreamParser()
        with self.assertLogs("nekoai_image_api.core.streaming", level="WARNING") as logs:
            events = list(parser.feed(data))
        self.assertEqual([event.step_ix for event in events], [5])
        self.assertTrue(any("ParserResyncWarning" in line for line in logs.output))

    def test_json_fallback(self) -> None:
        payload = dict(_record("final", image=PNG_BYTES))
        payload["image"] = base64.b64encode(PNG_BYTES).decode("ascii")
        body = json.dumps(payload).encode("utf-8")
        events = list(BinaryStreamParser().feed(struct.pack(">I", len(body)) + body))
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].image.data, PNG_BYTES)

    def test_garbage_record_skipped(self) -> None:
        body = b"hello"
        data = struct.pack(">I", len(body)) + body + _frame(_record(step_ix=9))
        parser = BinaryStreamParser()
        with self.assertLogs("nekoai_image_api.core.streaming", level="WARNING"):
            events = list(parser.feed(data))
        self.assertEqual([event.step_ix for event in events], [9])

    def test_stray_bytes_between_records(self) -> None:
        data = (
            _frame(_record(step_ix=1))
            + b"\x00\x00"
            + _frame(_record(step_ix=2))
            + _frame(_record("final", step_ix=3, image=PNG_BYTES))
        )
        with self.assertLogs("nekoai_image_api.core.streaming", level="WARNING"):
            events = parse_stream_events(data)
        self.assertEqual([event.step_ix for event in events], [1, 2, 3])
        self.assertTrue(events[-1].is_final)

    def test_leading_garbage_fed_incrementally(self) -> None:
        records = [_record(step_ix=step) for step in range(1, 7)] + [_record("final", step_ix=7, image=PNG_BYTES)]
        data = _frame(records[0]) + b"\x01\x02\x03" + b"".join(_frame(record) for record in records[1:])
        parser = BinaryStreamParser()
        events = []
        with self.assertLogs("nekoai_image_api.core.streaming", level="WARNING"):
            for index in range(0, len(data), 17):
                events.extend(parser.feed(data[index : index + 17]))
        self.assertEqual([event.step_ix for event in events], [1, 2, 3, 4, 5, 6, 7])
        self.assertTrue(events[-1].is_final)
        self.assertEqual(parser.buffered, 0)
        self.assertFalse(parser.awaiting_body)

    def test_undecodable_body_rescanned_from_next_byte(self) -> None:
        inner = _frame(_record(step_ix=4))
        # outer frame wrapping the real record behind one extra byte
        body = b"\x81" + inner
        data = struct.pack(">I", len(body)) + body
        with self.assertLogs("nekoai_image_api.core.streaming", level="WARNING"):
            events = parse_stream_events(data)
        self.assertEqual([event.step_ix for event in events], [4])

    def test_close_discards_partial(self) -> None:
        parser = BinaryStreamParser()
        list(parser.feed(_frame(_record())[:7]))
        with self.assertLogs("nekoai_image_api.core.streaming", level="WARNING"):
            parser.close()
        self.assertEqual(parser.buffered, 0)
        self.assertFalse(parser.awaiting_body)

    def test_parse_chunk_returns_parser(self) -> None:
        parser = BinaryStreamParser()
        same, events = parse_chunk(parser, _frame(_record()))
        self.assertIs(same, parser)
        self.assertEqual(len(events), 1)


class TestEventStreamParser(unittest.TestCase):
    def test_records(self) -> None:
        data = _sse(_record(step_ix=1)) + _sse(_record("final", step_ix=27, image=PNG_BYTES))
        events = parse_stream_events(data, "text/event-stream")
        self.assertEqual([event.step_ix for event in events], [1, 27])
        self.assertEqual(events[1].image.data, PNG_BYTES)

    def test_multiline_data_concatenated(self) -> None:
        payload = json.dumps({"event_type": "final", "step_ix": 4, "image": base64.b64encode(PNG_BYTES).decode()})
        half = len(payload) // 2
        data = f"data: {payload[:half]}\ndata: {payload[half:]}\n\n".encode("utf-8")
        events = list(EventStreamParser().feed(data))
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].step_ix, 4)

    def test_trailing_record_flushed_on_close(self) -> None:
        data = _sse(_record(step_ix=2)).rstrip(b"\n")
        parser = EventStreamParser()
        self.assertEqual(list(parser.feed(data)), [])
        events = parser.close()
        self.assertEqual([event.step_ix for event in events], [2])

    def test_comments_and_crlf(self) -> None:
        data = _sse(_record(step_ix=6)).replace(b"\n", b"\r\n")
        events = parse_stream_events(b": keepalive\r\n\r\n" + data)
        self.assertEqual([event.step_ix for event in events], [6])

    def test_invalid_json_skipped(self) -> None:
        data = b"data: {not json\n\n" + _sse(_record(step_ix=8))
        with self.assertLogs("nekoai_image_api.core.streaming", level="WARNING"):
            events = parse_stream_events(data)
        self.assertEqual([event.step_ix for event in events], [8])


class TestFraming(unittest.TestCase):
    def test_parser_selection(self) -> None:
        self.assertIsInstance(parser_for(b"event: x\n"), EventStreamParser)
        self.assertIsInstance(parser_for(b"\x00\x00\x01\x00"), BinaryStreamParser)
        self.assertIsInstance(parser_for(b"\x00\x00", "text/event-stream; charset=utf-8"), EventStreamParser)

    def test_iter_stream_events_over_chunks(self) -> None:
        data = _frame(_record(step_ix=1)) + _frame(_record("final", step_ix=2))
        chunks = [data[:5], b"", data[5:11], data[11:]]
        events = list(iter_stream_events(chunks))
        self.assertEqual([event.step_ix for event in events], [1, 2])


class TestBuildEvent(unittest.TestCase):
    def test_final_filename(self) -> None:
        event = build_event(_record("final", step_ix=27, image=PNG_BYTES), timestamp="20250101_120000")
        self.assertTrue(event.is_final)
        self.assertEqual(event.image.filename, "20250101_120000_final.png")
        self.assertEqual(event.extension, "png")

    def test_single_final_record_with_short_png_magic(self) -> None:
        events = list(BinaryStreamParser().feed(_frame(_record("final", step_ix=27, image=b"\x89P"))))
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].event_type, EventType.FINAL)
        self.assertTrue(events[0].image.filename.endswith("_final.png"))

    def test_intermediate_filename_sniffs_jpeg(self) -> None:
        event = build_event(_record(step_ix=3), timestamp="20250101_120000")
        self.assertEqual(event.image.filename, "20250101_120000_step_03.jpg")
        self.assertEqual(event.sigma, 1.5)
        self.assertEqual(event.gen_id, "gen-1")

    def test_image_payload_forms(self) -> None:
        self.assertEqual(normalize_image_payload(b"ab"), b"ab")
        self.assertEqual(normalize_image_payload("YWI="), b"ab")
        self.assertEqual(normalize_image_payload([97, 98]), b"ab")

    def test_decode_record_without_event_type(self) -> None:
        with self.assertLogs("nekoai_image_api.core.streaming", level="WARNING"):
            self.assertIsNone(decode_record(msgpack.packb({"step_ix": 1})))


if __name__ == "__main__":
    unittest.main()
