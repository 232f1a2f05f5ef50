"""Turn complete response buffers into result images."""

from __future__ import annotations

import io
import logging
import zipfile
import zlib
from typing import List, Optional, Tuple, Union

from .contracts import DirectorTool, GenerationRequest, ResultImage
from .errors import DecodeError, NotAnArchiveError
from .streaming import parse_stream_events
from .utils import file_timestamp


logger = logging.getLogger(__name__)

ZIP_MAGIC = b"PK\x03\x04"
EMPTY_ZIP_MAGIC = b"PK\x05\x06"


def is_archive(data: bytes) -> bool:
    return data[:4] in (ZIP_MAGIC, EMPTY_ZIP_MAGIC)


def decompress(data: bytes) -> List[Tuple[str, bytes]]:
    """Return ``(name, bytes)`` for every file entry, in archive order."""
    buffer = io.BytesIO(data)
    if not zipfile.is_zipfile(buffer):
        raise NotAnArchiveError("Response is not a ZIP archive.")
    entries: List[Tuple[str, bytes]] = []
    try:
        with zipfile.ZipFile(buffer) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                entries.append((info.filename, archive.read(info)))
    except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
        raise DecodeError(f"Corrupt ZIP archive: {exc}") from exc
    return entries


def assemble_archive(
    data: bytes,
    host_name: str = "web",
    request: Optional[GenerationRequest] = None,
) -> List[ResultImage]:
    stamp = file_timestamp()
    images = [
        ResultImage(filename=f"{stamp}_{host_name}_p{index}.png", data=content, request=request)
        for index, (_, content) in enumerate(decompress(data))
    ]
    logger.debug("Archive held %d image(s)", len(images))
    return images


def assemble_stream(data: bytes, request: Optional[GenerationRequest] = None) -> List[ResultImage]:
    """Keep only final images from a one-shot stream body, ordered by sample."""
    finals = [event for event in parse_stream_events(data) if event.is_final]
    finals.sort(key=lambda event: event.samp_ix)
    images = []
    for event in finals:
        event.image.request = request
        images.append(event.image)
    return images


def assemble_response(
    data: bytes,
    host_name: str = "web",
    request: Optional[GenerationRequest] = None,
) -> List[ResultImage]:
    if is_archive(data):
        return assemble_archive(data, host_name, request)
    return assemble_stream(data, request)


def assemble_director(data: bytes, req_type: Union[DirectorTool, str]) -> ResultImage:
    """Director responses may be zipped or a bare image; both are accepted."""
    name = req_type.value if isinstance(req_type, DirectorTool) else str(req_type)
    filename = f"{name}_{file_timestamp()}.png"
    try:
        entries = decompress(data)
    except NotAnArchiveError:
        logger.debug("Director response is a bare image (%d bytes)", len(data))
        return ResultImage(filename=filename, data=bytes(data))
    if not entries:
        raise DecodeError("Director archive contained no images.")
    return ResultImage(filename=filename, data=entries[0][1])
