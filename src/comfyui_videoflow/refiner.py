"""
Refiner Stage

Second sampling pass over the base image latent, with the optional upscale
step in front of it:

    decode -> pixel upscale (resize, or upscale model + resize) -> re-encode
    latent-*       LatentUpscaleBy on the latent
    latentmodel-*  per-family latent upscale model chain
    -> partial-denoise sample

Latent-model upscaling is only possible for families registered in
LATENT_UPSCALE_CHAINS; any other family is a configuration error.
"""

from typing import Callable, Dict, Optional, Tuple

from .context import GenerationContext
from .errors import unsupported_latent_upscale
from .graph import node_path
from .media import MediaKind
from .mcp_utils import get_logger
from .model_registry import COMPAT_SDXL, COMPAT_SDXL_REFINER
from .params import SECTION_REFINER
from .prompt_regions import base_prompt
from .schemas import NodeRef

logger = get_logger("refiner")

END_STEP_ALL = 10000

# Stable ids of the refiner chain
REFINER_LOADER_ID = "20"
REFINER_SAMPLER_ID = "23"
REFINER_DECODE_ID = "24"
REFINER_ENCODE_ID = "25"
REFINER_UPSCALE_ID = "26"
UPSCALE_MODEL_LOADER_ID = "27"
UPSCALE_MODEL_APPLY_ID = "28"
REFINER_SAVE_ID = "29"

UpscaleChain = Callable[[GenerationContext, NodeRef, NodeRef, NodeRef, int, int], Tuple[NodeRef, NodeRef]]


def strip_prefix(method: str, prefix: str) -> str:
    return method[len(prefix):] if method.startswith(prefix) else method


def refine_start_step(steps: int, control: float) -> int:
    """First denoising step of a refine pass: round(steps * (1 - control)) within [0, steps]."""
    start = int(round(steps * (1 - control)))
    return min(max(start, 0), steps)


def apply_hypertile(ctx: GenerationContext, model: NodeRef) -> NodeRef:
    """Wrap the model reference in HyperTile when refiner_hypertile is set."""
    has_tile, tile_size = ctx.params.try_get("refiner_hypertile")
    if not has_tile:
        return model
    hypertile = ctx.create_node(
        "HyperTile",
        {"model": model, "tile_size": tile_size, "swap_size": 2, "max_depth": 0, "scale_depth": False},
    )
    return node_path(hypertile, 0)


# =============================================================================
# Latent-model upscale chains
# =============================================================================


def _hunyuan15_upscale(ctx, upscale_model, positive, negative, width, height):
    cursor = ctx.ensure_kind(MediaKind.LATENT)
    ctx.create_node(
        "HunyuanVideo15LatentUpscaleWithModel",
        {
            "model": upscale_model,
            "samples": cursor.ref,
            "upscale_method": "bilinear",
            "width": width,
            "height": height,
            "crop": "disabled",
        },
        REFINER_UPSCALE_ID,
    )
    ctx.update_media_ref(node_path(REFINER_UPSCALE_ID, 0))
    return positive, negative


def _ltxv2_upscale(ctx, upscale_model, positive, negative, width, height):
    # Separation keeps the audio latent on the cursor for the recombine below
    cursor = ctx.ensure_kind(MediaKind.LATENT)
    crop = ctx.create_node("LTXVCropGuides", {"positive": positive, "negative": negative, "latent": cursor.ref})
    ctx.create_node(
        "LTXVLatentUpsampler",
        {"vae": ctx.current_vae, "samples": node_path(crop, 2), "upscale_model": upscale_model},
        REFINER_UPSCALE_ID,
    )
    conditioned = ctx.create_node(
        "LTXVConditioning",
        {
            "positive": node_path(crop, 0),
            "negative": node_path(crop, 1),
            "frame_rate": ctx.params.get("video_fps", 24),
        },
    )
    ctx.update_media_ref(node_path(REFINER_UPSCALE_ID, 0))
    ctx.ensure_kind(MediaKind.LATENT_AUDIO_VIDEO)
    return node_path(conditioned, 0), node_path(conditioned, 1)


# Keyed by FamilySpec.latent_upscaler
LATENT_UPSCALE_CHAINS: Dict[str, UpscaleChain] = {
    "hunyuan15": _hunyuan15_upscale,
    "ltxv2": _ltxv2_upscale,
}


def latent_upscale_chain(ctx: GenerationContext) -> Optional[UpscaleChain]:
    return LATENT_UPSCALE_CHAINS.get(ctx.current_family().latent_upscaler or "")


# =============================================================================
# Refiner
# =============================================================================


def _needs_reencode(base, refine) -> bool:
    if refine.compat_class == base.compat_class:
        return False
    if refine.compat_class == COMPAT_SDXL_REFINER and base.compat_class == COMPAT_SDXL:
        return False
    return True


def run_refiner(ctx: GenerationContext) -> None:
    """Refiner stage. Runs only when refiner_method and refiner_control are both given."""
    params = ctx.params
    has_method, method = params.try_get("refiner_method")
    has_control, control = params.try_get("refiner_control")
    if not (has_method and has_control):
        return
    if ctx.media is None:
        logger.warning("refiner: no media to refine, skipping")
        return

    ctx.is_refiner_stage = True
    try:
        _refine(ctx, method, float(control))
    finally:
        ctx.is_refiner_stage = False


def _refine(ctx: GenerationContext, method: str, control: float) -> None:
    params = ctx.params
    if ctx.media.kind == MediaKind.RAW_IMAGE:
        ctx.ensure_kind(MediaKind.LATENT)

    base_model = ctx.loaded_model
    orig_vae = ctx.current_vae
    refine_model = ctx.resolve_model("refiner_model")
    must_reencode = False
    loader_id = None
    if refine_model is not None:
        must_reencode = base_model is None or _needs_reencode(base_model, refine_model)
        loader_id = REFINER_LOADER_ID
    else:
        refine_model = base_model

    model, clip, vae, _ = ctx.create_model_loader(refine_model, loader_id)
    has_vae, vae_name = params.try_get("refiner_vae")
    if has_vae:
        must_reencode = True
        vae = node_path(ctx.create_node("VAELoader", {"vae_name": vae_name}), 0)
    ctx.loaded_model = refine_model
    ctx.final_model, ctx.final_clip, ctx.final_vae = model, clip, vae

    prompt = base_prompt(params.get("prompt"))
    positive = ctx.create_conditioning(prompt, clip)
    negative = ctx.create_conditioning(params.get("negative_prompt"), clip)

    has_scale, scale = params.try_get("refiner_upscale")
    scale = float(scale) if has_scale else 1.0
    do_upscale = has_scale and scale != 1
    upscale_method = str(params.get("refiner_upscale_method"))
    do_pixel_upscale = do_upscale and upscale_method.startswith(("pixel-", "model-"))
    do_save = params.get("output_intermediate_images")
    width = int(round(params.image_width * scale)) // 16 * 16
    height = int(round(params.image_height * scale)) // 16 * 16

    if do_upscale and upscale_method.startswith("latentmodel-") and latent_upscale_chain(ctx) is None:
        raise unsupported_latent_upscale(ctx.current_compat(), upscale_method)

    if must_reencode or do_pixel_upscale or do_save:
        cursor = ctx.ensure_kind(MediaKind.LATENT)
        ctx.create_vae_decode(orig_vae, cursor.ref, REFINER_DECODE_ID)
        pixels = node_path(REFINER_DECODE_ID, 0)
        if do_save:
            ctx.create_image_save(pixels, REFINER_SAVE_ID)
        if do_pixel_upscale:
            if upscale_method.startswith("pixel-"):
                ctx.create_node(
                    "ImageScale",
                    {
                        "image": pixels,
                        "width": width,
                        "height": height,
                        "upscale_method": strip_prefix(upscale_method, "pixel-"),
                        "crop": "disabled",
                    },
                    REFINER_UPSCALE_ID,
                )
            else:
                ctx.create_node(
                    "UpscaleModelLoader",
                    {"model_name": strip_prefix(upscale_method, "model-")},
                    UPSCALE_MODEL_LOADER_ID,
                )
                ctx.create_node(
                    "ImageUpscaleWithModel",
                    {"upscale_model": node_path(UPSCALE_MODEL_LOADER_ID, 0), "image": pixels},
                    UPSCALE_MODEL_APPLY_ID,
                )
                ctx.create_node(
                    "ImageScale",
                    {
                        "image": node_path(UPSCALE_MODEL_APPLY_ID, 0),
                        "width": width,
                        "height": height,
                        "upscale_method": "lanczos",
                        "crop": "disabled",
                    },
                    REFINER_UPSCALE_ID,
                )
            pixels = node_path(REFINER_UPSCALE_ID, 0)
            if control <= 0:
                # Upscale only: the resized pixels are the refiner output
                logger.info("refiner: refiner control is 0, upscaling without a refine pass")
                ctx.advance_media(pixels, MediaKind.RAW_IMAGE, fps=cursor.fps)
                return
        if must_reencode or do_pixel_upscale:
            ctx.create_vae_encode(vae, pixels, REFINER_ENCODE_ID)
            ctx.advance_media(node_path(REFINER_ENCODE_ID, 0), MediaKind.LATENT, fps=cursor.fps)

    if do_upscale and upscale_method.startswith("latent-"):
        ctx.create_node(
            "LatentUpscaleBy",
            {
                "samples": ctx.media.ref,
                "upscale_method": strip_prefix(upscale_method, "latent-"),
                "scale_by": scale,
            },
            REFINER_UPSCALE_ID,
        )
        ctx.update_media_ref(node_path(REFINER_UPSCALE_ID, 0))
    elif do_upscale and upscale_method.startswith("latentmodel-"):
        ctx.create_node(
            "LatentUpscaleModelLoader",
            {"model_name": strip_prefix(upscale_method, "latentmodel-")},
            UPSCALE_MODEL_LOADER_ID,
        )
        chain = latent_upscale_chain(ctx)
        positive, negative = chain(ctx, node_path(UPSCALE_MODEL_LOADER_ID, 0), positive, negative, width, height)

    model = apply_hypertile(ctx, model)
    steps = int(params.get("refiner_steps", params.get("steps", section=SECTION_REFINER), section=SECTION_REFINER))
    cfg = params.get("refiner_cfg_scale", params.get("cfg_scale", section=SECTION_REFINER), section=SECTION_REFINER)
    sampler, scheduler = ctx.explicit_sampler(SECTION_REFINER)
    ctx.create_ksampler(
        model, positive, negative, ctx.media.ref, cfg, steps, refine_start_step(steps, control), END_STEP_ALL,
        int(params.get("seed")) + 1, False, method != "StepSwapNoisy", sampler=sampler, scheduler=scheduler,
        tiled=bool(params.get("refiner_do_tiling")), node_id=REFINER_SAMPLER_ID,
    )
    ctx.positive, ctx.negative = positive, negative
    ctx.update_media_ref(node_path(REFINER_SAMPLER_ID, 0))
    logger.info("refiner: refine pass with %d steps from step %d", steps, refine_start_step(steps, control))
