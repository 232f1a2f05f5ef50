"""Model-family capability registry.

Each model belongs to exactly one family; every family-dependent decision in
the normalizer, cost estimator and wire converter reads this table instead of
comparing model names inline. The uc-preset and quality-tag strings are
product copy and are kept here as data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Union

from .contracts import Model


class ModelFamily(str, Enum):
    V3 = "v3"
    FURRY = "furry"
    V4 = "v4"
    V4_CURATED = "v4-curated"
    V4_5_CURATED = "v4.5-curated"
    V4_5 = "v4.5"


@dataclass(frozen=True)
class FamilyProfile:
    family: ModelFamily
    models: FrozenSet[Model]
    quality_tags: str
    uc_presets: Mapping[int, str] = field(default_factory=dict)
    structured_prompts: bool = False
    uses_auto_smea: bool = False
    params_version: int = 1
    supports_img2img_object: bool = False
    supports_vibe_encoding: bool = False


_V4_5_UC = {
    0: (
        "nsfw, lowres, artistic error, film grain, scan artifacts, worst quality, bad quality, "
        "jpeg artifacts, very displeasing, chromatic aberration, dithering, halftone, screentone, "
        "multiple views, logo, too many watermarks, negative space, blank page"
    ),
    1: (
        "nsfw, lowres, artistic error, scan artifacts, worst quality, bad quality, jpeg artifacts, "
        "multiple views, very displeasing, too many watermarks, negative space, blank page"
    ),
    2: (
        "nsfw, {worst quality}, distracting watermark, unfinished, bad quality, {widescreen}, upscale, "
        "{sequence}, {{grandfathered content}}, blurred foreground, chromatic aberration, sketch, "
        "everyone, [sketch background], simple, [flat colors], ych (character), outline, "
        "multiple scenes, [[horror (theme)]], comic"
    ),
    3: (
        "nsfw, lowres, artistic error, film grain, scan artifacts, worst quality, bad quality, "
        "jpeg artifacts, very displeasing, chromatic aberration, dithering, halftone, screentone, "
        "multiple views, logo, too many watermarks, negative space, blank page, @_@, "
        "mismatched pupils, glowing eyes, bad anatomy"
    ),
}

_V4_5_CURATED_UC = {
    0: (
        "blurry, lowres, upscaled, artistic error, film grain, scan artifacts, worst quality, "
        "bad quality, jpeg artifacts, very displeasing, chromatic aberration, halftone, "
        "multiple views, logo, too many watermarks, negative space, blank page"
    ),
    1: (
        "blurry, lowres, upscaled, artistic error, scan artifacts, jpeg artifacts, logo, "
        "too many watermarks, negative space, blank page"
    ),
    2: (
        "blurry, lowres, upscaled, artistic error, film grain, scan artifacts, bad anatomy, bad hands, "
        "worst quality, bad quality, jpeg artifacts, very displeasing, chromatic aberration, halftone, "
        "multiple views, logo, too many watermarks, @_@, mismatched pupils, glowing eyes, "
        "negative space, blank page"
    ),
}

_V4_UC = {
    0: (
        "blurry, lowres, error, film grain, scan artifacts, worst quality, bad quality, jpeg artifacts, "
        "very displeasing, chromatic aberration, multiple views, logo, too many watermarks"
    ),
    1: "blurry, lowres, error, worst quality, bad quality, jpeg artifacts, very displeasing",
}

_V4_CURATED_UC = {
    0: (
        "blurry, lowres, error, film grain, scan artifacts, worst quality, bad quality, jpeg artifacts, "
        "very displeasing, chromatic aberration, logo, dated, signature, multiple views, "
        "gigantic breasts"
    ),
    1: (
        "blurry, lowres, error, worst quality, bad quality, jpeg artifacts, very displeasing, logo, "
        "dated, signature"
    ),
}

_V3_UC = {
    0: (
        "lowres, {bad}, error, fewer, extra, missing, worst quality, jpeg artifacts, bad quality, "
        "watermark, unfinished, displeasing, chromatic aberration, signature, extra digits, "
        "artistic error, username, scan, [abstract]"
    ),
    1: "lowres, jpeg artifacts, worst quality, watermark, blurry, very displeasing",
    2: (
        "lowres, {bad}, error, fewer, extra, missing, worst quality, jpeg artifacts, bad quality, "
        "watermark, unfinished, displeasing, chromatic aberration, signature, extra digits, "
        "artistic error, username, scan, [abstract], bad anatomy, bad hands, @_@, mismatched pupils, "
        "heart-shaped pupils, glowing eyes"
    ),
}

_FURRY_UC = {
    0: (
        "{{worst quality}}, [displeasing], {unusual pupils}, guide lines, {{unfinished}}, {bad}, url, "
        "artist name, {{tall image}}, mosaic, {sketch page}, comic panel, impact (font), [dated], "
        "{logo}, ych, {what}, {where is your god now}, {distorted text}, repeated text, "
        "{floating head}, {1994}, {widescreen}, absolutely everyone, sequence, "
        "{compression artifacts}, hard translated, {cropped}, {commissioner name}, unknown text, "
        "high contrast"
    ),
    1: (
        "{worst quality}, guide lines, unfinished, bad, url, tall image, widescreen, "
        "compression artifacts, unknown text"
    ),
}


_PROFILES: Dict[ModelFamily, FamilyProfile] = {
    ModelFamily.V3: FamilyProfile(
        family=ModelFamily.V3,
        models=frozenset({Model.V3, Model.V3_INP}),
        quality_tags="best quality, amazing quality, very aesthetic, absurdres",
        uc_presets=_V3_UC,
        params_version=1,
    ),
    ModelFamily.FURRY: FamilyProfile(
        family=ModelFamily.FURRY,
        models=frozenset({Model.FURRY, Model.FURRY_INP}),
        quality_tags="{best quality}, {amazing quality}",
        uc_presets=_FURRY_UC,
        params_version=1,
    ),
    ModelFamily.V4: FamilyProfile(
        family=ModelFamily.V4,
        models=frozenset({Model.V4, Model.V4_INP}),
        quality_tags="no text, best quality, very aesthetic, absurdres",
        uc_presets=_V4_UC,
        structured_prompts=True,
        uses_auto_smea=True,
        params_version=3,
        supports_vibe_encoding=True,
    ),
    ModelFamily.V4_CURATED: FamilyProfile(
        family=ModelFamily.V4_CURATED,
        models=frozenset({Model.V4_CUR, Model.V4_CUR_INP}),
        quality_tags="rating:general, amazing quality, very aesthetic, absurdres",
        uc_presets=_V4_CURATED_UC,
        structured_prompts=True,
        uses_auto_smea=True,
        params_version=3,
        supports_vibe_encoding=True,
    ),
    ModelFamily.V4_5_CURATED: FamilyProfile(
        family=ModelFamily.V4_5_CURATED,
        models=frozenset({Model.V4_5_CUR, Model.V4_5_CUR_INP}),
        quality_tags="location, masterpiece, no text, -0.8::feet::, rating:general",
        uc_presets=_V4_5_CURATED_UC,
        structured_prompts=True,
        uses_auto_smea=True,
        params_version=3,
        supports_vibe_encoding=True,
    ),
    ModelFamily.V4_5: FamilyProfile(
        family=ModelFamily.V4_5,
        models=frozenset({Model.V4_5, Model.V4_5_INP}),
        quality_tags="very aesthetic, masterpiece, no text",
        uc_presets=_V4_5_UC,
        structured_prompts=True,
        uses_auto_smea=True,
        params_version=3,
        supports_img2img_object=True,
        supports_vibe_encoding=True,
    ),
}

_BY_MODEL: Dict[Model, FamilyProfile] = {
    model: profile for profile in _PROFILES.values() for model in profile.models
}


def get_profile(model: Union[Model, str]) -> FamilyProfile:
    key = Model(model)
    if key not in _BY_MODEL:
        raise ValueError(f"No family registered for model '{model}'")
    return _BY_MODEL[key]


def get_family_profile(family: ModelFamily) -> FamilyProfile:
    return _PROFILES[family]


def family_of(model: Union[Model, str]) -> ModelFamily:
    return get_profile(model).family
