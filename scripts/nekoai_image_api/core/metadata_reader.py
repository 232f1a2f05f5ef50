"""Read generation metadata embedded in images.

Three sources are tried: PNG text chunks, the EXIF ``UserComment`` tag and
NovelAI's "stealth" payload hidden in the alpha channel's least significant
bits.
"""

from __future__ import annotations

import gzip
import json
import logging
import struct
import zlib
from enum import Enum
from typing import Any, Dict, List, Optional

from PIL import Image

from .contracts import ImageInput, ImageMetadata, ImageSummary, MetadataEntry
from .errors import DecodeError
from .imaging import ImageCodec, PillowImageCodec


logger = logging.getLogger(__name__)

STEALTH_MAGIC = b"stealth_pngcomp"
EXIF_IFD = 0x8769
USER_COMMENT = 0x9286
EXIF_FORMATS = {"JPEG", "WEBP", "MPO", "AVIF", "TIFF"}


class MetadataType(str, Enum):
    STABLE_DIFFUSION_WEBUI = "SD-WEBUI"
    NOVELAI = "NOVELAI"
    UNKNOWN = "UNKNOWN"
    NONE = "NONE"


def _png_entries(image: Image.Image) -> List[MetadataEntry]:
    text = getattr(image, "text", None) or {}
    return [MetadataEntry(keyword=str(key), text=str(value)) for key, value in text.items()]


def _decode_user_comment(raw: Any) -> str:
    if isinstance(raw, str):
        return raw.replace("\x00", "").strip()
    data = bytes(raw)
    header, body = data[:8], data[8:]
    if header.startswith(b"UNICODE"):
        # writers disagree on byte order; a leading NUL means big-endian
        encoding = "utf-16-be" if body[:1] == b"\x00" else "utf-16-le"
        text = body.decode(encoding, errors="replace")
    elif header.startswith(b"ASCII") or header == b"\x00" * 8:
        text = body.decode("utf-8", errors="replace")
    else:
        text = data.decode("utf-8", errors="replace")
    return text.replace("\x00", "").strip()


def _exif_entries(image: Image.Image) -> List[MetadataEntry]:
    exif = image.getexif()
    comment = exif.get_ifd(EXIF_IFD).get(USER_COMMENT) if exif else None
    if not comment:
        return []
    text = _decode_user_comment(comment)
    return [MetadataEntry(keyword="parameters", text=text)] if text else []


def _alpha_bits(alpha: Image.Image, count: int) -> bytes:
    """The first ``count`` alpha LSBs, walking x outer and y inner."""
    width, height = alpha.size
    if not width or not height:
        return b""
    columns = min(width, -(-count // height))
    region = alpha.crop((0, 0, columns, height)).point(lambda value: value & 1)
    return region.transpose(Image.Transpose.TRANSPOSE).tobytes()[:count]


def _pack_bits(bits: bytes) -> bytes:
    out = bytearray()
    for offset in range(0, len(bits) - len(bits) % 8, 8):
        byte = 0
        for bit in bits[offset : offset + 8]:
            byte = (byte << 1) | bit
        out.append(byte)
    return bytes(out)


def read_stealth_payload(image: Image.Image) -> Optional[Dict[str, Any]]:
    """Return the JSON object hidden in the alpha LSBs, or ``None``."""
    if "A" not in image.getbands():
        return None
    alpha = image.getchannel("A")
    magic_bits = len(STEALTH_MAGIC) * 8
    header_bits = magic_bits + 32
    bits = _alpha_bits(alpha, header_bits)
    if _pack_bits(bits[:magic_bits]) != STEALTH_MAGIC or len(bits) < header_bits:
        return None
    (bit_length,) = struct.unpack(">i", _pack_bits(bits[magic_bits:]))
    bits = _alpha_bits(alpha, header_bits + max(bit_length, 0))
    payload = _pack_bits(bits[header_bits:])
    try:
        decoded = json.loads(gzip.decompress(payload).decode("utf-8"))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, ValueError) as exc:
        logger.warning("Stealth metadata present but unreadable: %s", exc)
        return None
    return decoded if isinstance(decoded, dict) else None


def _stealth_entries(payload: Dict[str, Any]) -> List[MetadataEntry]:
    return [
        MetadataEntry(keyword=str(key), text=json.dumps(value) if isinstance(value, (dict, list)) else str(value))
        for key, value in payload.items()
    ]


def parse_webui_parameters(entry: MetadataEntry) -> List[MetadataEntry]:
    prompts, _, rest = entry.text.partition("Steps: ")
    positive, sep, negative = prompts.partition("Negative prompt:")
    return [
        MetadataEntry(keyword="Positive prompt", text=positive.strip()),
        MetadataEntry(keyword="Negative prompt", text=negative.strip() if sep else "None"),
        MetadataEntry(keyword="Generation parameters", text=f"Steps: {rest}".strip() if rest else ""),
    ]


def extract_image_metadata(value: ImageInput, codec: Optional[ImageCodec] = None) -> ImageMetadata:
    codec = codec or PillowImageCodec()
    try:
        image = codec.open(value)
    except (DecodeError, OSError, TypeError, ValueError) as exc:
        logger.warning("Failed to read image for metadata: %s", exc)
        return ImageMetadata(type=MetadataType.NONE.value, entries=[], raw=exc)

    entries: List[MetadataEntry] = []
    if image.format == "PNG":
        entries = _png_entries(image)
    elif image.format in EXIF_FORMATS:
        entries = _exif_entries(image)

    if not entries:
        payload = read_stealth_payload(image)
        if payload is None:
            return ImageMetadata(type=MetadataType.NONE.value, entries=[])
        return ImageMetadata(type=MetadataType.NOVELAI.value, entries=_stealth_entries(payload), raw=payload)
    if len(entries) == 1 and entries[0].keyword == "parameters":
        return ImageMetadata(
            type=MetadataType.STABLE_DIFFUSION_WEBUI.value,
            entries=parse_webui_parameters(entries[0]),
            raw=entries[0].text,
        )
    return ImageMetadata(type=MetadataType.NOVELAI.value, entries=entries)


def extract_raw_metadata(value: ImageInput, codec: Optional[ImageCodec] = None) -> List[MetadataEntry]:
    return list(extract_image_metadata(value, codec).entries)


def _find(entries, keyword: str) -> Optional[MetadataEntry]:
    return next((entry for entry in entries if entry.keyword == keyword), None)


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def _webui_summary(summary: ImageSummary, metadata: ImageMetadata) -> None:
    summary.generation_tool = "Stable Diffusion WebUI"
    positive = _find(metadata.entries, "Positive prompt")
    negative = _find(metadata.entries, "Negative prompt")
    params = _find(metadata.entries, "Generation parameters")
    summary.positive_prompt = positive.text if positive else None
    summary.negative_prompt = negative.text if negative else None
    parsed: Dict[str, Any] = {}
    if params:
        for part in params.text.split(","):
            key, sep, val = part.partition(":")
            if sep and key.strip():
                parsed[key.strip()] = val.strip()
    summary.parameters = parsed


def _novelai_summary(summary: ImageSummary, metadata: ImageMetadata) -> None:
    summary.generation_tool = "NovelAI"
    parameters: Dict[str, Any] = {}
    for entry in metadata.entries:
        if entry.keyword not in ("prompt", "uc"):
            parameters[entry.keyword] = _parse_json(entry.text)
    comment = parameters.get("Comment")
    comment = comment if isinstance(comment, dict) else {}
    prompt = _find(metadata.entries, "prompt")
    uc = _find(metadata.entries, "uc")
    description = _find(metadata.entries, "Description")
    summary.positive_prompt = (
        prompt.text if prompt else comment.get("prompt") or (description.text if description else None)
    )
    summary.negative_prompt = uc.text if uc else comment.get("uc")
    summary.parameters = parameters


def get_image_summary(value: ImageInput, codec: Optional[ImageCodec] = None) -> ImageSummary:
    """Dimensions plus the prompts and parameters found in the image, if any."""
    codec = codec or PillowImageCodec()
    try:
        parsed = codec.describe(value)
    except (DecodeError, OSError, TypeError, ValueError) as exc:
        logger.warning("Failed to summarize image: %s", exc)
        return ImageSummary(width=0, height=0, has_metadata=False, metadata_type=MetadataType.NONE.value)
    metadata = extract_image_metadata(value, codec)
    summary = ImageSummary(
        width=parsed.width,
        height=parsed.height,
        has_metadata=bool(metadata.entries),
        metadata_type=metadata.type,
        raw_entries=list(metadata.entries),
    )
    if metadata.type == MetadataType.STABLE_DIFFUSION_WEBUI.value:
        _webui_summary(summary, metadata)
    elif metadata.type == MetadataType.NOVELAI.value:
        _novelai_summary(summary, metadata)
    return summary
