"""Resolve resolution presets and explicit dimensions."""

from __future__ import annotations

import math
import re
from typing import Dict, List, Optional, Tuple, Union

from .contracts import Resolution
from .errors import ValidationError


_DIM_RE = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*$")

GRANULARITY = 64
MIN_PIXELS = 64 * 64
MAX_PIXELS = 3047424
DEFAULT_DIMENSIONS = (832, 1216)

RESOLUTION_DIMENSIONS: Dict[str, Tuple[int, int]] = {
    Resolution.SMALL_PORTRAIT.value: (512, 768),
    Resolution.SMALL_LANDSCAPE.value: (768, 512),
    Resolution.SMALL_SQUARE.value: (640, 640),
    Resolution.NORMAL_PORTRAIT.value: (832, 1216),
    Resolution.NORMAL_LANDSCAPE.value: (1216, 832),
    Resolution.NORMAL_SQUARE.value: (1024, 1024),
    Resolution.LARGE_PORTRAIT.value: (1024, 1536),
    Resolution.LARGE_LANDSCAPE.value: (1536, 1024),
    Resolution.LARGE_SQUARE.value: (1472, 1472),
    Resolution.WALLPAPER_PORTRAIT.value: (1088, 1920),
    Resolution.WALLPAPER_LANDSCAPE.value: (1920, 1088),
}


def parse_dims(value: Optional[str]) -> Optional[Tuple[int, int]]:
    if not value:
        return None
    match = _DIM_RE.match(value)
    if not match:
        return None
    w = int(match.group(1))
    h = int(match.group(2))
    if w <= 0 or h <= 0:
        return None
    return w, h


def _preset_key(preset: Union[Resolution, str, None]) -> Optional[str]:
    if preset is None:
        return None
    if isinstance(preset, Resolution):
        return preset.value
    return str(preset).strip().lower()


def snap(value: int) -> int:
    return int(math.ceil(value / GRANULARITY)) * GRANULARITY


def resolve_resolution(
    preset: Union[Resolution, str, None] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    warnings: Optional[List[str]] = None,
) -> Tuple[int, int]:
    """Return ``(width, height)`` for a preset or explicit dimensions.

    Explicit dimensions win over the preset and are rounded up to multiples
    of 64; a lone width or height is completed from the preset. The total
    pixel count must fall within ``[4096, 3047424]``.
    """
    if width is None and height is None:
        key = _preset_key(preset)
        w, h = RESOLUTION_DIMENSIONS.get(key or "", DEFAULT_DIMENSIONS)
        if key and key not in RESOLUTION_DIMENSIONS and warnings is not None:
            warnings.append(f"Unknown resolution preset '{preset}', using {w}x{h}.")
        requested = w * h
    else:
        base_w, base_h = RESOLUTION_DIMENSIONS.get(_preset_key(preset) or "", DEFAULT_DIMENSIONS)
        raw_w = int(width) if width is not None else base_w
        raw_h = int(height) if height is not None else base_h
        if raw_w <= 0 or raw_h <= 0:
            raise ValidationError(f"Width and height must be positive, got {raw_w}x{raw_h}.")
        w, h = snap(raw_w), snap(raw_h)
        if (w, h) != (raw_w, raw_h) and warnings is not None:
            warnings.append(f"Resolution rounded to {w}x{h} (multiples of {GRANULARITY}).")
        requested = raw_w * raw_h

    # the lower bound applies to what was asked for, the upper bound to what is sent
    total = w * h
    if requested < MIN_PIXELS or total > MAX_PIXELS:
        raise ValidationError(
            f"Total resolution must be between {MIN_PIXELS} and {MAX_PIXELS} px, "
            f"got {w}x{h}={total} (requested {requested})."
        )
    return w, h
