"""
Resolution Resolver

Pure functions computing the target (final) and base (pre-upscale)
dimensions of a video pass from the resolution policy, the model's
preferred dimensions and the refine scale factor.
"""

import math
from enum import Enum
from typing import Tuple

from .mcp_utils import get_logger
from .model_registry import get_family

logger = get_logger("resolution")

MIN_DIMENSION = 16

# Exact legacy match kept as-is rather than re-derived
_LEGACY_HINT = (1024, 576)
_LEGACY_INPUT = (1344, 768)


class ResolutionPolicy(Enum):
    """Value of the video_resolution parameter."""

    MODEL_PREFERRED = "Model Preferred"
    IMAGE_ASPECT_MODEL_RES = "Image Aspect, Model Res"
    IMAGE = "Image"

    @classmethod
    def parse(cls, value: str) -> "ResolutionPolicy":
        for policy in cls:
            if policy.value.lower() == str(value).strip().lower():
                return policy
        logger.warning("resolution: unknown policy '%s', using Model Preferred", value)
        return cls.MODEL_PREFERRED


def precision_for(compat_class: str) -> int:
    """Rounding multiple for fitted resolutions."""
    return get_family(compat_class).res_precision


def res_to_model_fit(width: int, height: int, pixel_budget: int, precision: int = 64) -> Tuple[int, int]:
    """
    Fit the width:height aspect ratio into pixel_budget total pixels.

    Each dimension is rounded down to a multiple of precision, and never
    below one precision step.
    """
    scale = math.sqrt(pixel_budget / float(width * height))
    fit_w = int(width * scale) // precision * precision
    fit_h = int(height * scale) // precision * precision
    return max(precision, fit_w), max(precision, fit_h)


def resolve(
    policy: ResolutionPolicy,
    hint_w: int,
    hint_h: int,
    input_w: int,
    input_h: int,
    scale_factor: float = 1.0,
    precision: int = 64,
    apply_scale: bool = False,
) -> Tuple[int, int]:
    """
    Dimensions for a video pass.

    Args:
        policy: Resolution policy
        hint_w, hint_h: Model preferred dimensions (<= 0 means 1024x576)
        input_w, input_h: Input image dimensions
        scale_factor: Refine upscale factor
        precision: Rounding multiple for ImageAspectModelRes
        apply_scale: Multiply Image-policy dimensions by scale_factor (only
            the base pipeline does this, and only when no latent upscaler
            will handle the scaling later)
    """
    width = hint_w if hint_w > 0 else _LEGACY_HINT[0]
    height = hint_h if hint_h > 0 else _LEGACY_HINT[1]

    if policy == ResolutionPolicy.IMAGE_ASPECT_MODEL_RES:
        if (width, height) == _LEGACY_HINT and (input_w, input_h) == _LEGACY_INPUT:
            return width, height
        return res_to_model_fit(input_w, input_h, width * height, precision)

    if policy == ResolutionPolicy.IMAGE:
        width, height = input_w, input_h
        if apply_scale and scale_factor:
            width = int(round(width * scale_factor))
            height = int(round(height * scale_factor))
        return width, height

    return width, height


def split_base_target(target: Tuple[int, int], scale_factor: float) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """
    Base (pre-upscale) and target dimensions for the two-stage path.

    base = round(target / scale) component-wise. Degenerate results never
    fail the request: a base <= 0 falls back to the target (at least 16),
    a base below 16 is clamped to 16. Both fall-backs log a warning.
    """
    target_w = max(MIN_DIMENSION, int(target[0]))
    target_h = max(MIN_DIMENSION, int(target[1]))
    if not scale_factor or scale_factor <= 0:
        logger.warning("resolution: invalid scale factor %s, base = target", scale_factor)
        return (target_w, target_h), (target_w, target_h)

    base_w = int(round(target_w / scale_factor))
    base_h = int(round(target_h / scale_factor))
    if base_w <= 0 or base_h <= 0:
        logger.warning(
            "resolution: invalid base resolution computed (%dx%d), falling back to target resolution",
            base_w,
            base_h,
        )
        return (max(MIN_DIMENSION, target_w), max(MIN_DIMENSION, target_h)), (target_w, target_h)
    if base_w < MIN_DIMENSION or base_h < MIN_DIMENSION:
        logger.warning("resolution: base resolution %dx%d below %d, clamping", base_w, base_h, MIN_DIMENSION)
        base_w = max(MIN_DIMENSION, base_w)
        base_h = max(MIN_DIMENSION, base_h)
    return (base_w, base_h), (target_w, target_h)


def video_target(params, video_model, apply_scale: bool = False) -> Tuple[int, int]:
    """Target dimensions of a video pass from the request parameters and the video model."""
    has_scale, scale = params.try_get("refiner_upscale")
    hint_w, hint_h = video_model.hint_dimensions()
    return resolve(
        ResolutionPolicy.parse(params.get("video_resolution")),
        hint_w,
        hint_h,
        params.image_width,
        params.image_height,
        scale_factor=float(scale) if has_scale else 1.0,
        precision=precision_for(video_model.compat_class),
        apply_scale=apply_scale and has_scale,
    )
