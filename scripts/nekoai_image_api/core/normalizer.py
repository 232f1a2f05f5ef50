"""Normalize a loosely specified generation request into a complete one.

The steps run in a fixed order because later steps read values defaulted by
earlier ones. Only the resolution check rejects a request; every other field
is defaulted. Normalizing an already normalized request returns an equal
request: boilerplate and quality tags are folded back in by the tag
deduplication pass, and structures that are already present are kept.
"""

from __future__ import annotations

import copy
import logging
import random
from typing import Any, List, Mapping, Optional

from .capabilities import FamilyProfile, get_profile
from .contracts import (
    UNSET,
    Action,
    Center,
    CharacterCaption,
    CharacterPrompt,
    GenerationRequest,
    Img2ImgSettings,
    Noise,
    NormalizedRequest,
    Resolution,
    Sampler,
    V4Caption,
    V4NegativePrompt,
    V4Prompt,
    is_set,
)
from .router import normalize_action, normalize_model
from .solver import parse_dims, resolve_resolution
from .tags import dedupe_tags, join_tags


logger = logging.getLogger(__name__)

SEED_CEILING = 4294967288
DEFAULT_PROMPT = "1girl, cute"
DEFAULT_CHARACTER_PROMPT = "1girl, cute"
DEFAULT_CHARACTER_UC = "lowres, aliasing,"
DEFAULT_ACTION_STRENGTH = 0.3
DEFAULT_REFERENCE_CAPTION = "character"

_DEFAULTS: Mapping[str, Any] = {
    "res_preset": Resolution.NORMAL_PORTRAIT,
    "uc_preset": 0,
    "quality_toggle": True,
    "n_samples": 1,
    "steps": 28,
    "scale": 6.0,
    "dynamic_thresholding": False,
    "sampler": Sampler.EULER_ANC,
    "cfg_rescale": 0,
    "noise_schedule": Noise.KARRAS,
    "controlnet_strength": 1,
    "add_original_image": True,
    "auto_smea": False,
    "negative_prompt": "",
    "skip_cfg_above_sigma": None,
    "legacy": False,
    "legacy_v3_extend": False,
    "legacy_uc": False,
    "normalize_reference_strength_multiple": True,
}


def random_seed() -> int:
    return random.randint(0, SEED_CEILING - 1)


def _apply_defaults(request: GenerationRequest, profile: FamilyProfile) -> None:
    for name, value in _DEFAULTS.items():
        if getattr(request, name) is UNSET:
            setattr(request, name, value)
    if not is_set(request.seed) or request.seed is None:
        request.seed = random_seed()
    if not is_set(request.params_version):
        request.params_version = profile.params_version
    if not request.prompt:
        request.prompt = DEFAULT_PROMPT
    if request.negative_prompt is None:
        request.negative_prompt = ""
    if not is_set(request.character_prompts) or request.character_prompts is None:
        request.character_prompts = []


def _apply_resolution(request: GenerationRequest) -> None:
    width = request.width if is_set(request.width) else None
    height = request.height if is_set(request.height) else None
    if width is None and height is None and is_set(request.size):
        dims = parse_dims(request.size)
        if dims is None:
            request.warnings.append(f"Ignoring unparseable size '{request.size}'.")
        else:
            width, height = dims
    request.width, request.height = resolve_resolution(
        request.res_preset, width, height, warnings=request.warnings
    )


def _apply_uc_preset(request: GenerationRequest, profile: FamilyProfile) -> None:
    if request.uc_preset is None:
        request.uc_preset = 0
    block = profile.uc_presets.get(int(request.uc_preset))
    if block is None:
        request.warnings.append(
            f"ucPreset {request.uc_preset} has no boilerplate for the {profile.family.value} family."
        )
        return
    request.negative_prompt = join_tags(block, request.negative_prompt)


def _apply_quality_tags(request: GenerationRequest, profile: FamilyProfile) -> None:
    if request.quality_toggle:
        request.prompt = join_tags(request.prompt, profile.quality_tags)


def _apply_action(request: GenerationRequest) -> None:
    if request.action not in (Action.INPAINT, Action.IMG2IMG):
        return
    request.sm = False
    request.sm_dyn = False
    if not is_set(request.strength) or request.strength is None:
        request.strength = DEFAULT_ACTION_STRENGTH
    if not is_set(request.noise) or request.noise is None:
        request.noise = 0
    if not is_set(request.extra_noise_seed) or request.extra_noise_seed is None:
        request.extra_noise_seed = random_seed()
    if not is_set(request.image):
        request.warnings.append(f"Action '{request.action.value}' without a source image.")
    if request.action == Action.INPAINT and not is_set(request.mask):
        request.warnings.append("Inpaint request without a mask.")


def _coerce_center(value: Any) -> Center:
    if isinstance(value, Center):
        return Center(x=0.5 if value.x is None else value.x, y=0.5 if value.y is None else value.y)
    if isinstance(value, Mapping):
        x = value.get("x")
        y = value.get("y")
        return Center(x=0.5 if x is None else float(x), y=0.5 if y is None else float(y))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return Center(x=float(value[0]), y=float(value[1]))
    return Center()


def _coerce_character(value: Any) -> CharacterPrompt:
    if isinstance(value, CharacterPrompt):
        return value
    if isinstance(value, Mapping):
        return CharacterPrompt(
            prompt=value.get("prompt") or "",
            uc=value.get("uc") or "",
            center=value.get("center", UNSET),
            enabled=value.get("enabled", UNSET),
        )
    raise TypeError(f"Unsupported character prompt: {type(value)}")


def _center_of(character: CharacterPrompt) -> Center:
    if not is_set(character.center) or character.center is None:
        return Center()
    return _coerce_center(character.center)


def _is_enabled(character: CharacterPrompt) -> bool:
    return True if not is_set(character.enabled) or character.enabled is None else bool(character.enabled)


def _apply_use_coords(request: GenerationRequest) -> None:
    request.character_prompts = [_coerce_character(item) for item in request.character_prompts]
    request.use_coords = any(
        (center.x, center.y) != (0.5, 0.5)
        for center in (_center_of(cp) for cp in request.character_prompts if _is_enabled(cp))
    )


def _apply_character_prompts(request: GenerationRequest) -> None:
    for character in request.character_prompts:
        character.enabled = _is_enabled(character)
        character.prompt = dedupe_tags(character.prompt or DEFAULT_CHARACTER_PROMPT)
        character.uc = dedupe_tags(character.uc or DEFAULT_CHARACTER_UC)
        character.center = _center_of(character)


def _apply_stream(request: GenerationRequest, profile: FamilyProfile) -> None:
    if profile.structured_prompts and request.action == Action.GENERATE:
        request.stream = "msgpack"
    else:
        request.stream = UNSET


def _apply_v4_structures(request: GenerationRequest, profile: FamilyProfile) -> None:
    if not profile.structured_prompts:
        return
    enabled = [cp for cp in request.character_prompts if cp.enabled]
    if not is_set(request.v4_prompt) or request.v4_prompt is None:
        request.v4_prompt = V4Prompt(
            caption=V4Caption(
                base_caption=request.prompt or "",
                char_captions=[
                    CharacterCaption(char_caption=cp.prompt, centers=[copy.copy(cp.center)]) for cp in enabled
                ],
            ),
            use_coords=bool(request.use_coords),
            use_order=True,
        )
    if not is_set(request.v4_negative_prompt) or request.v4_negative_prompt is None:
        request.v4_negative_prompt = V4NegativePrompt(
            caption=V4Caption(
                base_caption=request.negative_prompt or "",
                char_captions=[
                    CharacterCaption(char_caption=cp.uc, centers=[copy.copy(cp.center)]) for cp in enabled if cp.uc
                ],
            ),
            legacy_uc=bool(request.legacy_uc),
        )


def _apply_family_cleanup(request: GenerationRequest, profile: FamilyProfile) -> None:
    if profile.structured_prompts:
        request.sm = UNSET
        request.sm_dyn = UNSET
        request.params_version = 3
        return
    request.auto_smea = UNSET
    request.v4_prompt = UNSET
    request.v4_negative_prompt = UNSET
    if request.action == Action.GENERATE:
        if not is_set(request.sm):
            request.sm = False
        if not is_set(request.sm_dyn):
            request.sm_dyn = False


def _apply_sampler(request: GenerationRequest) -> None:
    if request.sampler == Sampler.EULER_ANC:
        request.deliberate_euler_ancestral_bug = False
        request.prefer_brownian = True


def _apply_img2img_strength(request: GenerationRequest, profile: FamilyProfile) -> None:
    if not profile.supports_img2img_object:
        request.img2img = UNSET
        return
    if not is_set(request.inpaint_img2img_strength) or request.inpaint_img2img_strength is None:
        fallback = request.strength if is_set(request.strength) and request.strength is not None else 1
        request.inpaint_img2img_strength = fallback
    if request.inpaint_img2img_strength < 1:
        request.img2img = Img2ImgSettings(strength=request.inpaint_img2img_strength, color_correct=True)
    else:
        request.img2img = UNSET


def _default_reference_description() -> V4NegativePrompt:
    return V4NegativePrompt(caption=V4Caption(base_caption=DEFAULT_REFERENCE_CAPTION, char_captions=[]), legacy_uc=False)


def _fit(values: Optional[List[Any]], count: int, factory) -> List[Any]:
    fitted = list(values) if is_set(values) and values is not None else []
    while len(fitted) < count:
        fitted.append(factory())
    return fitted[:count]


def _apply_vibe_references(request: GenerationRequest) -> None:
    images = request.reference_image_multiple
    if not is_set(images) or not images:
        request.reference_image_multiple = UNSET
        request.reference_strength_multiple = UNSET
        request.reference_information_extracted_multiple = UNSET
        return
    count = len(images)
    request.reference_strength_multiple = _fit(request.reference_strength_multiple, count, lambda: 1.0)
    request.reference_information_extracted_multiple = _fit(
        request.reference_information_extracted_multiple, count, lambda: 1.0
    )


def _apply_director_references(request: GenerationRequest) -> None:
    images = request.director_reference_images
    if not is_set(images) or not images:
        request.director_reference_images = UNSET
        request.director_reference_descriptions = UNSET
        request.director_reference_information_extracted = UNSET
        request.director_reference_strength_values = UNSET
        return
    count = len(images)
    request.director_reference_descriptions = _fit(
        request.director_reference_descriptions, count, _default_reference_description
    )
    request.director_reference_information_extracted = _fit(
        request.director_reference_information_extracted, count, lambda: 1
    )
    request.director_reference_strength_values = _fit(request.director_reference_strength_values, count, lambda: 1)


def normalize_request(request: GenerationRequest) -> NormalizedRequest:
    """Return a fully populated copy of ``request``; the input is not modified."""
    result = copy.deepcopy(request)
    result.warnings = []
    result.model = normalize_model(result.model if is_set(result.model) else None)
    result.action = normalize_action(result.action if is_set(result.action) else None)
    profile = get_profile(result.model)

    _apply_defaults(result, profile)
    _apply_resolution(result)
    _apply_uc_preset(result, profile)
    _apply_quality_tags(result, profile)

    result.prompt = dedupe_tags(result.prompt) or ""
    result.negative_prompt = dedupe_tags(result.negative_prompt) or ""

    _apply_action(result)
    _apply_use_coords(result)
    _apply_character_prompts(result)
    _apply_stream(result, profile)
    _apply_v4_structures(result, profile)
    _apply_family_cleanup(result, profile)
    _apply_sampler(result)
    _apply_img2img_strength(result, profile)
    _apply_vibe_references(result)
    _apply_director_references(result)

    for warning in result.warnings:
        logger.debug("normalize: %s", warning)
    return result
