"""Image decoding and result storage backends."""

from __future__ import annotations

import base64
import io
import threading
from pathlib import Path
from typing import Dict, Protocol, Union

from PIL import Image

from .contracts import ImageInput, ParsedImage
from .errors import DecodeError
from .utils import read_input_bytes


class ImageCodec(Protocol):
    def load(self, value: ImageInput) -> bytes:
        ...

    def open(self, value: ImageInput) -> Image.Image:
        ...

    def describe(self, value: ImageInput) -> ParsedImage:
        ...


class FileStore(Protocol):
    def write(self, path: Union[str, Path], data: bytes) -> Path:
        ...


class PillowImageCodec:
    """Reads paths, bytes or ``PIL.Image.Image`` objects."""

    def load(self, value: ImageInput) -> bytes:
        if isinstance(value, Image.Image):
            buffer = io.BytesIO()
            value.save(buffer, format="PNG")
            return buffer.getvalue()
        data, _ = read_input_bytes(value)
        return data

    def open(self, value: ImageInput) -> Image.Image:
        if isinstance(value, Image.Image):
            return value
        try:
            image = Image.open(io.BytesIO(self.load(value)))
            image.load()
        except (OSError, SyntaxError) as exc:
            raise DecodeError(f"Unable to decode image: {exc}") from exc
        return image

    def describe(self, value: ImageInput) -> ParsedImage:
        """Return dimensions and a base64 PNG of the input."""
        image = self.open(value)
        width, height = image.size
        if image.format == "PNG" and not isinstance(value, Image.Image):
            png_bytes = self.load(value)
        else:
            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
            png_bytes = buffer.getvalue()
        return ParsedImage(width=width, height=height, base64=base64.b64encode(png_bytes).decode("ascii"))


class LocalFileStore:
    def write(self, path: Union[str, Path], data: bytes) -> Path:
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target.resolve()


class MemoryFileStore:
    """Keeps written files in a dict keyed by path."""

    def __init__(self) -> None:
        self.files: Dict[Path, bytes] = {}
        self._lock = threading.Lock()

    def write(self, path: Union[str, Path], data: bytes) -> Path:
        target = Path(path)
        with self._lock:
            self.files[target] = bytes(data)
        return target

    def read(self, path: Union[str, Path]) -> bytes:
        with self._lock:
            return self.files[Path(path)]
