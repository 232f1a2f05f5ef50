"""Anlas cost estimation."""

from __future__ import annotations

import math

from .capabilities import get_profile
from .contracts import Action, GenerationRequest, is_set
from .router import normalize_model


PORTRAIT_PIXELS = 832 * 1216
SQUARE_PIXELS = 1024 * 1024
MIN_BILLED_PIXELS = 65536
FREE_STEPS = 28


def _value(value, default):
    return value if is_set(value) and value is not None else default


def smea_factor(request: GenerationRequest) -> float:
    profile = get_profile(normalize_model(_value(request.model, None)))
    if profile.uses_auto_smea:
        return 1.2 if _value(request.auto_smea, False) else 1.0
    if _value(request.sm_dyn, False):
        return 1.4
    if _value(request.sm, False):
        return 1.2
    return 1.0


def estimate_cost(request: GenerationRequest, has_discount_tier: bool = False) -> int:
    """Estimate the Anlas cost of a normalized request.

    With the discount tier, one sample is free when the request stays within
    28 steps and the (square-adjusted) billing resolution of 1024x1024.
    """
    steps = _value(request.steps, 28)
    n_samples = _value(request.n_samples, 1)
    width = _value(request.width, 1024)
    height = _value(request.height, 1024)
    strength = 1.0
    if _value(request.action, Action.GENERATE) == Action.IMG2IMG and _value(request.strength, None):
        strength = request.strength

    resolution = max(width * height, MIN_BILLED_PIXELS)
    # square normal resolutions are billed like portrait/landscape
    if PORTRAIT_PIXELS < resolution <= SQUARE_PIXELS:
        resolution = PORTRAIT_PIXELS

    per_sample = math.ceil(
        2951823174884865e-21 * resolution + 5.753298233447344e-7 * resolution * steps
    ) * smea_factor(request)
    per_sample = max(math.ceil(per_sample * strength), 2)

    discounted = has_discount_tier and steps <= FREE_STEPS and resolution <= SQUARE_PIXELS
    return per_sample * (n_samples - (1 if discounted else 0))
