import base64
import os
import pathlib
import sys
import tempfile
import unittest

import requests

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "scripts"))

from nekoai_image_api.core.contracts import HostInstance, ResultImage
from nekoai_image_api.core.errors import ConfigurationError, TransportError
from nekoai_image_api.core.imaging import MemoryFileStore
from nekoai_image_api.core.receipts import sanitize_payload
from nekoai_image_api.core.router import HOSTS, resolve_host
from nekoai_image_api.core.utils import (
    ensure_out_dir,
    format_file_size,
    prep_headers,
    read_input_bytes,
    sniff_extension,
)
from nekoai_image_api.transport import get_transport
from nekoai_image_api.transport.http import RequestsTransport, summarize_error


class _FakeResponse:
    def __init__(self, status_code=200, content=b"", headers=None, reason="OK", chunks=None, error=None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.reason = reason
        self.closed = False
        self._chunks = chunks or []
        self._error = error

    def iter_content(self, chunk_size=None):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error

    def close(self):
        self.closed = True


class _FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


class TestUtils(unittest.TestCase):
    def test_format_file_size(self) -> None:
        self.assertEqual(format_file_size(512), "512 B")
        self.assertEqual(format_file_size(1536), "1.5 KB")
        self.assertEqual(format_file_size(2 * 1024 * 1024), "2.0 MB")
        self.assertEqual(format_file_size(1024 ** 3), "1.0 GB")

    def test_sniff_extension(self) -> None:
        self.assertEqual(sniff_extension(b"\xff\xd8\xff"), "jpg")
        self.assertEqual(sniff_extension(b"RIFF\x00\x00\x00\x00WEBPVP8 "), "webp")
        self.assertEqual(sniff_extension(b"\x89PNG"), "png")
        self.assertEqual(sniff_extension(b""), "png")

    def test_read_input_bytes(self) -> None:
        self.assertEqual(read_input_bytes(b"abc"), (b"abc", None))
        data_url = "data:image/png;base64," + base64.b64encode(b"xyz").decode("ascii")
        self.assertEqual(read_input_bytes(data_url), (b"xyz", None))
        with tempfile.TemporaryDirectory() as tmpdir:
            path = pathlib.Path(tmpdir) / "in.bin"
            path.write_bytes(b"file")
            self.assertEqual(read_input_bytes(path)[0], b"file")
            self.assertEqual(read_input_bytes(str(path))[0], b"file")
        with self.assertRaises(ValueError):
            read_input_bytes("https://example.com/a.png")
        with self.assertRaises(TypeError):
            read_input_bytes(42)

    def test_prep_headers(self) -> None:
        headers = prep_headers({"Content-Type": "application/json"}, "tok", "binary/octet-stream")
        self.assertEqual(headers["Authorization"], "Bearer tok")
        self.assertEqual(headers["Accept"], "binary/octet-stream")
        self.assertEqual(headers["Content-Type"], "application/json")
        self.assertRegex(headers["x-correlation-id"], r"^[A-Za-z0-9]{6}$")
        self.assertRegex(headers["x-initiated-at"], r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")

    def test_ensure_out_dir_env_root(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            previous = os.environ.get("NEKOAI_OUTPUTS")
            os.environ["NEKOAI_OUTPUTS"] = tmpdir
            try:
                out_dir = ensure_out_dir(None)
            finally:
                if previous is None:
                    os.environ.pop("NEKOAI_OUTPUTS", None)
                else:
                    os.environ["NEKOAI_OUTPUTS"] = previous
            self.assertTrue(out_dir.is_dir())
            self.assertEqual(out_dir.parent.name, "nekoai")

    def test_result_image_save_to_file_path(self) -> None:
        store = MemoryFileStore()
        image = ResultImage(filename="a_final.png", data=b"png")
        path = image.save(pathlib.Path("out") / "custom.png", store=store)
        self.assertEqual(path, pathlib.Path("out") / "custom.png")
        self.assertEqual(store.read(path), b"png")
        self.assertEqual(image.extension, "png")

    def test_sanitize_payload(self) -> None:
        payload = {"input": "x", "parameters": {"image": "a" * 10, "reference_image_multiple": ["bb", "ccc"], "n": 1}}
        self.assertEqual(
            sanitize_payload(payload),
            {
                "input": "x",
                "parameters": {"image": "<omitted:10>", "reference_image_multiple": ["<omitted:2>", "<omitted:3>"], "n": 1},
            },
        )


class TestHosts(unittest.TestCase):
    def test_aliases_and_custom(self) -> None:
        self.assertIs(resolve_host("api"), HOSTS["api"])
        self.assertIs(resolve_host(" WEB "), HOSTS["web"])
        custom = resolve_host("https://proxy.example.com/")
        self.assertEqual(custom, HostInstance(url="https://proxy.example.com", accept="binary/octet-stream", name="custom"))
        with self.assertRaises(ConfigurationError):
            resolve_host("ftp")


class TestRequestsTransport(unittest.TestCase):
    def test_registry_caches(self) -> None:
        self.assertIs(get_transport("requests"), get_transport(" Requests "))
        self.assertIsInstance(get_transport("http"), RequestsTransport)
        with self.assertRaises(ValueError):
            get_transport("carrier-pigeon")

    def test_success_body(self) -> None:
        session = _FakeSession(_FakeResponse(content=b"zip", headers={"content-type": "application/x-zip-compressed"}))
        response = RequestsTransport(session).post("https://h/ai", {"a": 1}, {"Accept": "x"}, timeout=5.0)
        self.assertEqual(response.read_all(), b"zip")
        self.assertEqual(response.content_type, "application/x-zip-compressed")
        url, kwargs = session.calls[0]
        self.assertEqual(kwargs["json"], {"a": 1})
        self.assertEqual(kwargs["timeout"], 5.0)
        self.assertFalse(kwargs["stream"])

    def test_error_status(self) -> None:
        fake = _FakeResponse(
            status_code=429,
            content=b'{"message": "Too many requests"}',
            headers={"content-type": "application/json"},
            reason="Too Many Requests",
        )
        with self.assertRaises(TransportError) as ctx:
            RequestsTransport(_FakeSession(fake)).post("https://h/ai", {}, {}, timeout=1.0)
        self.assertEqual(ctx.exception.status, 429)
        self.assertTrue(ctx.exception.retryable)
        self.assertIn("Too many requests", str(ctx.exception))
        self.assertTrue(fake.closed)

    def test_timeout_and_network(self) -> None:
        with self.assertRaises(TransportError) as ctx:
            RequestsTransport(_FakeSession(error=requests.Timeout())).post("https://h", {}, {}, timeout=2.0)
        self.assertTrue(ctx.exception.timeout)
        self.assertIn("timeout", str(ctx.exception))
        with self.assertRaises(TransportError) as ctx:
            RequestsTransport(_FakeSession(error=requests.ConnectionError("refused"))).post(
                "https://h", {}, {}, timeout=2.0
            )
        self.assertTrue(ctx.exception.network)

    def test_streamed_chunks(self) -> None:
        fake = _FakeResponse(chunks=[b"ab", b"", b"cd"], headers={"content-type": "application/msgpack"})
        response = RequestsTransport(_FakeSession(fake)).post("https://h", {}, {}, timeout=1.0, stream=True)
        self.assertEqual(list(response.iter_chunks()), [b"ab", b"cd"])
        self.assertTrue(fake.closed)

    def test_stream_interrupted(self) -> None:
        fake = _FakeResponse(chunks=[b"ab"], error=requests.exceptions.ChunkedEncodingError("cut"))
        response = RequestsTransport(_FakeSession(fake)).post("https://h", {}, {}, timeout=1.0, stream=True)
        with self.assertRaises(TransportError) as ctx:
            list(response.iter_chunks())
        self.assertTrue(ctx.exception.network)
        self.assertTrue(fake.closed)

    def test_summarize_error(self) -> None:
        self.assertEqual(summarize_error(b'{"error": "bad token"}', "application/json"), "bad token")
        self.assertEqual(summarize_error(b"plain\ntext"), "plain text")
        self.assertTrue(summarize_error(b"x" * 600).endswith("..."))


if __name__ == "__main__":
    unittest.main()
