"""Model, action and host alias normalization."""

from __future__ import annotations

import os
import re
from typing import Dict, Optional, Union

from .contracts import Action, HostInstance, Model
from .errors import ConfigurationError


MODEL_ALIASES: Dict[str, Model] = {
    "v3": Model.V3,
    "legacy-v3": Model.V3,
    "anime-v3": Model.V3,
    "v3-inpainting": Model.V3_INP,
    "furry": Model.FURRY,
    "furry-v3": Model.FURRY,
    "furry-inpainting": Model.FURRY_INP,
    "v4": Model.V4,
    "v4-full": Model.V4,
    "v4-inpainting": Model.V4_INP,
    "v4-curated": Model.V4_CUR,
    "v4-cur": Model.V4_CUR,
    "v4-curated-inpainting": Model.V4_CUR_INP,
    "v4-5-curated": Model.V4_5_CUR,
    "v4-5-cur": Model.V4_5_CUR,
    "v4-5-curated-inpainting": Model.V4_5_CUR_INP,
    "v4-5": Model.V4_5,
    "v4-5-full": Model.V4_5,
    "v4-5-inpainting": Model.V4_5_INP,
}

ACTION_ALIASES: Dict[str, Action] = {
    "generate": Action.GENERATE,
    "txt2img": Action.GENERATE,
    "inpaint": Action.INPAINT,
    "infill": Action.INPAINT,
    "img2img": Action.IMG2IMG,
    "image-to-image": Action.IMG2IMG,
}

DEFAULT_MODEL = Model.V4_5

HEADERS: Dict[str, str] = {
    "Content-Type": "application/json",
    "Origin": "https://novelai.net",
    "Referer": "https://novelai.net",
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:138.0) Gecko/20100101 Firefox/138.0",
}

HOSTS: Dict[str, HostInstance] = {
    "api": HostInstance(url="https://api.novelai.net", accept="application/x-zip-compressed", name="api"),
    "web": HostInstance(url="https://image.novelai.net", accept="binary/octet-stream", name="web"),
}

ENDPOINT_IMAGE = "/ai/generate-image"
ENDPOINT_IMAGE_STREAM = "/ai/generate-image-stream"
ENDPOINT_DIRECTOR = "/ai/augment-image"
ENDPOINT_ENCODE_VIBE = "/ai/encode-vibe"


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")


def normalize_model(model: Union[Model, str, None]) -> Model:
    if model is None or model == "":
        return DEFAULT_MODEL
    if isinstance(model, Model):
        return model
    try:
        return Model(model.strip())
    except ValueError:
        pass
    slug = _slug(model)
    if slug in MODEL_ALIASES:
        return MODEL_ALIASES[slug]
    if slug.startswith("nai-diffusion-"):
        try:
            return Model(slug)
        except ValueError:
            pass
    raise ConfigurationError(f"Unknown model '{model}'")


def normalize_action(action: Union[Action, str, None]) -> Action:
    if action is None or action == "":
        return Action.GENERATE
    if isinstance(action, Action):
        return action
    slug = _slug(action)
    if slug in ACTION_ALIASES:
        return ACTION_ALIASES[slug]
    raise ConfigurationError(f"Unknown action '{action}'")


def create_custom_host(url: str, accept: str = "binary/octet-stream", name: str = "custom") -> HostInstance:
    return HostInstance(url=url.rstrip("/"), accept=accept, name=name)


def resolve_host(host: Union[HostInstance, str, None]) -> HostInstance:
    if isinstance(host, HostInstance):
        return host
    choice: Optional[str] = host or os.getenv("NEKOAI_HOST") or "web"
    key = choice.strip().lower()
    if key in HOSTS:
        return HOSTS[key]
    if key.startswith("http://") or key.startswith("https://"):
        return create_custom_host(choice.strip())
    raise ConfigurationError(f"Unknown host '{host}'")
