"""
LTXV2 Latent Upscale

Two-stage image-to-video for the joint audio/video LTXV2 family: sample at
a reduced base resolution, upscale the video latent with a latent upscale
model, re-inject the full-resolution source image and refine.

    base sample -> LTXVSeparateAVLatent -> LTXVCropGuides
        -> LTXVLatentUpsampler -> LTXVImgToVideoInplace
        -> LTXVConcatAVLatent -> refine sample -> decode

The audio latent split off before upscaling is reattached unchanged.

LatentUpscaleExtension patches the default pipeline (image-to-video,
extend and refiner stages) so these paths are taken when the request asks
for a "latentmodel-" refine upscale on an LTXV2 video model.
"""

import threading
from dataclasses import dataclass
from typing import Optional

from .context import GenerationContext
from .default_stages import PRE_VIDEO_SAVE_ID, PRIORITY_EXTEND, PRIORITY_IMAGE_TO_VIDEO, PRIORITY_REFINER
from .graph import node_path
from .media import MediaKind
from .mcp_utils import get_logger, log_structured
from .model_registry import COMPAT_LTXV2, ModelInfo, ModelRegistry
from .params import ParameterSet, SECTION_REFINER
from .postprocess import apply_trim, default_segment_generator, finish_video, run_extend
from .prompt_regions import has_extend
from .refiner import apply_hypertile, refine_start_step, strip_prefix
from .resolution import split_base_target, video_target
from .stages import StageRegistry, WrappingStage
from .video import (
    END_STEP_ALL,
    VIDEO_SIGMA_MAX,
    VIDEO_SIGMA_MIN,
    VideoGenDescriptor,
    prepare_image_to_video,
    sample_video,
    video_descriptor,
    video_sampler,
)

logger = get_logger("latent_upscale")

LATENT_MODEL_PREFIX = "latentmodel-"


@dataclass(frozen=True)
class LatentUpscaleSettings:
    """Request values that route a build onto the two-stage path."""

    video_model: ModelInfo
    scale: float
    upscale_method: str
    refiner_control: float

    @property
    def model_name(self) -> str:
        return strip_prefix(self.upscale_method, LATENT_MODEL_PREFIX)


def latent_upscale_settings(params: ParameterSet, models: ModelRegistry) -> Optional[LatentUpscaleSettings]:
    """
    Settings of the two-stage path, or None when the request does not qualify.

    Every condition must hold: an LTXV2 video model, an init image (or a
    video-to-video request), a refine scale other than 1, a "latentmodel-"
    upscale method and a refiner control above 0.
    """
    video_model = models.get(params.get_nullable("video_model"))
    if video_model is None or video_model.compat_class != COMPAT_LTXV2:
        return None
    if not (params.has("init_image") or params.has("video2video_creativity")):
        return None
    has_scale, scale = params.try_get("refiner_upscale")
    if not has_scale or float(scale) == 1:
        return None
    method = str(params.get("refiner_upscale_method"))
    if not method.startswith(LATENT_MODEL_PREFIX):
        return None
    has_control, control = params.try_get("refiner_control")
    if not has_control or float(control) <= 0:
        return None
    return LatentUpscaleSettings(video_model, float(scale), method, float(control))


def wants_latent_upscale(params: ParameterSet, models: ModelRegistry) -> bool:
    return latent_upscale_settings(params, models) is not None


# =============================================================================
# Two-stage sampling
# =============================================================================


def upscale_and_refine(
    ctx: GenerationContext,
    desc: VideoGenDescriptor,
    settings: LatentUpscaleSettings,
    guide_image,
    sampler: Optional[str] = None,
    scheduler: Optional[str] = None,
) -> str:
    """
    Sample a prepared descriptor at base resolution, upscale and refine it.

    guide_image is the full-resolution image re-injected into the upscaled
    latent. Leaves the cursor on the decoded frames; returns the refine
    sampler id.
    """
    params = ctx.params
    previews = params.get("video_preview_type")
    base_sampler = sample_video(ctx, desc, sampler, scheduler, previews)
    ctx.advance_media(node_path(base_sampler, 0), MediaKind.LATENT_AUDIO_VIDEO, fps=desc.fps)

    video_latent = ctx.ensure_kind(MediaKind.LATENT)
    crop = ctx.create_node(
        "LTXVCropGuides",
        {"positive": desc.positive, "negative": desc.negative, "latent": video_latent.ref},
    )
    loader = ctx.create_node("LatentUpscaleModelLoader", {"model_name": settings.model_name})
    upsampled = ctx.create_node(
        "LTXVLatentUpsampler",
        {"vae": desc.vae, "samples": node_path(crop, 2), "upscale_model": node_path(loader, 0)},
    )
    preprocessed = ctx.create_node("LTXVPreprocess", {"image": guide_image, "img_compression": 32})
    inplace = ctx.create_node(
        "LTXVImgToVideoInplace",
        {
            "vae": desc.vae,
            "image": node_path(preprocessed, 0),
            "latent": node_path(upsampled, 0),
            "strength": 1.0,
            "bypass": False,
        },
    )
    ctx.update_media_ref(node_path(inplace, 0))
    recombined = ctx.ensure_kind(MediaKind.LATENT_AUDIO_VIDEO)

    steps = int(params.get("refiner_steps", desc.steps, section=SECTION_REFINER))
    cfg = params.get("refiner_cfg_scale", desc.cfg, section=SECTION_REFINER)
    start_step = refine_start_step(steps, settings.refiner_control)
    refine_sampler, refine_scheduler = ctx.explicit_sampler(SECTION_REFINER)
    refined = ctx.create_ksampler(
        apply_hypertile(ctx, desc.model), node_path(crop, 0), node_path(crop, 1), recombined.ref, cfg, steps,
        start_step, END_STEP_ALL, desc.seed + 1, False, params.get("refiner_method") != "StepSwapNoisy",
        sampler=refine_sampler, scheduler=refine_scheduler, tiled=bool(params.get("refiner_do_tiling")),
        previews=previews, sigma_min=VIDEO_SIGMA_MIN, sigma_max=VIDEO_SIGMA_MAX,
    )
    log_structured(
        "info",
        "latent_upscale: refine pass",
        upscale_model=settings.model_name,
        scale=settings.scale,
        steps=steps,
        start_step=start_step,
        seed=desc.seed + 1,
    )
    ctx.advance_media(node_path(refined, 0), MediaKind.LATENT_AUDIO_VIDEO, fps=desc.fps)
    ctx.ensure_kind(MediaKind.RAW_IMAGE)
    return refined


def remove_pre_video_save(ctx: GenerationContext) -> bool:
    """Drop the base pass's animation save so only one video output is written."""
    node = ctx.graph.get(PRE_VIDEO_SAVE_ID)
    if node is None or node["class_type"] != "SwarmSaveAnimationWS":
        return False
    ctx.remove_node(PRE_VIDEO_SAVE_ID)
    logger.info("latent_upscale: removed pre-video save node %s", PRE_VIDEO_SAVE_ID)
    return True


def run_two_stage_image_to_video(ctx: GenerationContext, settings: LatentUpscaleSettings) -> None:
    """Image-to-video through the two-stage path, from trims to the final save."""
    params = ctx.params
    # Snapshot before anything re-encodes the cursor
    original_image = ctx.ensure_kind(MediaKind.RAW_IMAGE).ref

    target = video_target(params, settings.video_model, apply_scale=True)
    (base_w, base_h), (target_w, target_h) = split_base_target(target, settings.scale)
    logger.info(
        "latent_upscale: %s scale=%s control=%s, base %dx%d -> target %dx%d",
        settings.upscale_method,
        settings.scale,
        settings.refiner_control,
        base_w,
        base_h,
        target_w,
        target_h,
    )

    ctx.is_image_to_video = True
    scaled = ctx.create_node(
        "ImageScale",
        {
            "image": original_image,
            "width": target_w,
            "height": target_h,
            "upscale_method": "lanczos",
            "crop": "disabled",
        },
    )
    ctx.advance_media(node_path(scaled, 0), MediaKind.RAW_IMAGE)

    desc = video_descriptor(ctx, settings.video_model, base_w, base_h)
    desc.scale_source_frames = True
    sampler, scheduler = video_sampler(ctx, desc)
    prepare_image_to_video(ctx, desc)
    upscale_and_refine(ctx, desc, settings, node_path(scaled, 0), sampler, scheduler)

    apply_trim(ctx)
    finish_video(ctx, str(params.get("video_format")))
    remove_pre_video_save(ctx)
    ctx.is_image_to_video = False


def two_stage_segment(settings: LatentUpscaleSettings):
    """
    Extend-segment generator running LTXV2 segments through the two-stage path.

    Segments on any other extend model take the single-pass chain.
    """

    def generate(ctx: GenerationContext, desc: VideoGenDescriptor, sampler, scheduler) -> None:
        if desc.video_model.compat_class != COMPAT_LTXV2:
            logger.info("latent_upscale: extend model %s is not LTXV2, single-pass segment", desc.video_model.name)
            default_segment_generator(ctx, desc, sampler, scheduler)
            return
        # The overlap window is at full resolution: it guides the refine pass
        # and, scaled down, conditions the base pass
        window = ctx.ensure_kind(MediaKind.RAW_IMAGE).ref
        shrunk = ctx.create_node(
            "ImageScaleBy",
            {"image": window, "upscale_method": "lanczos", "scale_by": 1.0 / settings.scale},
        )
        desc.width = node_path(ctx.create_node("SwarmImageWidth", {"image": node_path(shrunk, 0)}), 0)
        desc.height = node_path(ctx.create_node("SwarmImageHeight", {"image": node_path(shrunk, 0)}), 0)
        ctx.advance_media(node_path(shrunk, 0), MediaKind.RAW_IMAGE, fps=desc.fps)
        prepare_image_to_video(ctx, desc)
        upscale_and_refine(ctx, desc, settings, window, sampler, scheduler)

    return generate


# =============================================================================
# Pipeline patches
# =============================================================================


class LatentUpscaleImageToVideoStage(WrappingStage):
    """Image-to-video stage taking the two-stage path when the request qualifies."""

    def applies(self, ctx: GenerationContext) -> bool:
        return wants_latent_upscale(ctx.params, ctx.models)

    def run_special(self, ctx: GenerationContext) -> None:
        run_two_stage_image_to_video(ctx, latent_upscale_settings(ctx.params, ctx.models))


class LatentUpscaleExtendStage(WrappingStage):
    """Extend stage running LTXV2 segments through the two-stage path."""

    def applies(self, ctx: GenerationContext) -> bool:
        return has_extend(ctx.params.get("prompt")) and wants_latent_upscale(ctx.params, ctx.models)

    def run_special(self, ctx: GenerationContext) -> None:
        run_extend(ctx, two_stage_segment(latent_upscale_settings(ctx.params, ctx.models)))


class SkipRefinerStage(WrappingStage):
    """Refiner stage that steps aside when the video pass does the upscale."""

    def applies(self, ctx: GenerationContext) -> bool:
        return wants_latent_upscale(ctx.params, ctx.models)

    def run_special(self, ctx: GenerationContext) -> None:
        logger.info("latent_upscale: skipping refiner, the upscale runs in the video pass")


class LatentUpscaleExtension:
    """
    Activation handle for the latent upscale patches.

    Owned by the composition root; activate() patches a registry on the
    first call only.
    """

    name = "ltxv2-latent-upscale"

    def __init__(self):
        self._lock = threading.Lock()
        self.activated = False

    def activate(self, registry: StageRegistry) -> bool:
        """Patch the image-to-video, extend and refiner stages. False if already active."""
        with self._lock:
            if self.activated:
                logger.info("latent_upscale: extension already active")
                return False
            self.activated = True
            registry.replace(PRIORITY_IMAGE_TO_VIDEO, LatentUpscaleImageToVideoStage)
            registry.replace(PRIORITY_EXTEND, LatentUpscaleExtendStage)
            registry.replace(PRIORITY_REFINER, SkipRefinerStage, from_end=True)
            logger.info("latent_upscale: extension activated")
            return True
