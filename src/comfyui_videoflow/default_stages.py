"""
Default Pipeline

The stage list a plain request runs through: load the base model, encode
the prompt, build the initial latent, sample, refine, decode, save, then
turn the image into a video and chain any extend segments. Extensions
patch stages of this list by priority.

Priorities:
    -10 model loader      -9 conditioning      -8 initial latent
     -5 base sample       -4 refiner            0 decode
     10 image save        11 image-to-video    12 extend
"""

import math

from .context import GenerationContext
from .errors import missing_model
from .graph import node_path
from .media import MediaKind
from .mcp_utils import get_logger
from .model_registry import COMPAT_LTXV2
from .postprocess import apply_trim, finish_video, run_extend
from .prompt_regions import base_prompt
from .refiner import END_STEP_ALL, run_refiner
from .resolution import video_target
from .stages import FunctionStage, StageRegistry
from .video import create_image_to_video, video_descriptor, video_sampler

logger = get_logger("default_stages")

PRIORITY_LOAD_MODEL = -10
PRIORITY_CONDITIONING = -9
PRIORITY_INIT_LATENT = -8
PRIORITY_BASE_SAMPLE = -5
PRIORITY_REFINER = -4
PRIORITY_DECODE = 0
PRIORITY_SAVE_IMAGE = 10
PRIORITY_IMAGE_TO_VIDEO = 11
PRIORITY_EXTEND = 12

# Stable ids of the base chain
MODEL_LOADER_ID = "4"
EMPTY_LATENT_ID = "5"
POSITIVE_ID = "6"
NEGATIVE_ID = "7"
DECODE_ID = "8"
IMAGE_SAVE_ID = "9"
BASE_SAMPLER_ID = "10"
INIT_IMAGE_ID = "15"
PRE_VIDEO_SAVE_ID = "30"


def load_model(ctx: GenerationContext) -> None:
    info = ctx.resolve_model("model") or ctx.resolve_model("video_model")
    if info is None:
        raise missing_model()
    model, clip, vae, audio_vae = ctx.create_model_loader(info, MODEL_LOADER_ID)
    ctx.loaded_model = info
    ctx.final_model, ctx.final_clip, ctx.final_vae = model, clip, vae
    ctx.current_audio_vae = audio_vae


def encode_prompts(ctx: GenerationContext) -> None:
    params = ctx.params
    ctx.positive = ctx.create_conditioning(base_prompt(params.get("prompt")), ctx.final_clip, POSITIVE_ID)
    ctx.negative = ctx.create_conditioning(params.get("negative_prompt"), ctx.final_clip, NEGATIVE_ID)


def init_latent(ctx: GenerationContext) -> None:
    """Initial image (encoded when it will be re-sampled) or an empty latent."""
    params = ctx.params
    has_image, image = params.try_get("init_image")
    if has_image:
        ctx.create_node("LoadImage", {"image": image}, INIT_IMAGE_ID)
        ctx.advance_media(node_path(INIT_IMAGE_ID, 0), MediaKind.RAW_IMAGE)
        if float(params.get("init_image_creativity")) > 0:
            ctx.ensure_kind(MediaKind.LATENT)
        return

    family = ctx.current_family()
    size = {"width": params.image_width, "height": params.image_height, "batch_size": 1}
    if not family.is_video:
        ctx.create_node("EmptyLatentImage", size, EMPTY_LATENT_ID)
        ctx.advance_media(node_path(EMPTY_LATENT_ID, 0), MediaKind.LATENT)
        return

    size["length"] = params.get("video_frames", family.default_frames)
    node_type = "EmptyLTXVLatentVideo" if family.joint_av_latent else "EmptyHunyuanLatentVideo"
    ctx.create_node(node_type, size, EMPTY_LATENT_ID)
    fps = params.get("video_fps", family.default_fps)
    ctx.advance_media(node_path(EMPTY_LATENT_ID, 0), MediaKind.LATENT, fps=fps)
    if family.joint_av_latent:
        ctx.ensure_kind(MediaKind.LATENT_AUDIO_VIDEO)


def base_sample(ctx: GenerationContext) -> None:
    """Sample the initial latent. An init image with zero creativity passes through unsampled."""
    params = ctx.params
    if ctx.media.kind == MediaKind.RAW_IMAGE:
        logger.debug("default_stages: init image used as-is, no base sampling")
        return
    steps = int(params.get("steps"))
    start_step = 0
    if params.has("init_image"):
        start_step = int(math.floor(steps * (1 - float(params.get("init_image_creativity")))))
    ctx.create_ksampler(
        ctx.final_model, ctx.positive, ctx.negative, ctx.media.ref, params.get("cfg_scale"), steps, start_step,
        END_STEP_ALL, int(params.get("seed")), False, True,
        sampler=params.get_nullable("sampler"), scheduler=params.get_nullable("scheduler"),
        node_id=BASE_SAMPLER_ID,
    )
    ctx.update_media_ref(node_path(BASE_SAMPLER_ID, 0))


def decode(ctx: GenerationContext) -> None:
    cursor = ctx.media
    if cursor.kind == MediaKind.LATENT:
        ctx.create_vae_decode(ctx.current_vae, cursor.ref, DECODE_ID)
        ctx.advance_media(node_path(DECODE_ID, 0), MediaKind.RAW_IMAGE, fps=cursor.fps, audio=cursor.audio)
    else:
        ctx.ensure_kind(MediaKind.RAW_IMAGE)


def save_image(ctx: GenerationContext) -> None:
    """
    Save the base output.

    Without a video model this is the final output. With one, the still is
    only saved (at the pre-video slot) when intermediate outputs are asked
    for, or when the base output is already animated.
    """
    params = ctx.params
    cursor = ctx.ensure_kind(MediaKind.RAW_IMAGE)
    if not params.has("video_model"):
        ctx.create_image_save(cursor.ref, IMAGE_SAVE_ID)
        return
    if cursor.fps:
        ctx.create_animation_save(
            cursor.ref, cursor.fps, str(params.get("video_format")), PRE_VIDEO_SAVE_ID, audio=cursor.audio
        )
    elif params.get("output_intermediate_images"):
        ctx.create_image_save(cursor.ref, PRE_VIDEO_SAVE_ID)


def image_to_video(ctx: GenerationContext) -> None:
    """Single-pass image-to-video from the current image."""
    params = ctx.params
    video_model = ctx.resolve_model("video_model")
    if video_model is None:
        return
    method = str(params.get("refiner_upscale_method"))
    # The LTXV2 latent upscaler handles the refine scale in the video pass
    apply_scale = video_model.compat_class != COMPAT_LTXV2 or not method.startswith("latentmodel-")
    width, height = video_target(params, video_model, apply_scale=apply_scale)

    ctx.is_image_to_video = True
    desc = video_descriptor(ctx, video_model, width, height)
    sampler, scheduler = video_sampler(ctx, desc)
    logger.info("default_stages: image-to-video with %s at %dx%d", video_model.name, width, height)
    create_image_to_video(ctx, desc, sampler, scheduler)
    apply_trim(ctx)
    finish_video(ctx, str(params.get("video_format")))
    ctx.is_image_to_video = False


def extend_video(ctx: GenerationContext) -> None:
    run_extend(ctx)


def build_default_registry() -> StageRegistry:
    """Fresh registry holding the default pipeline."""
    registry = StageRegistry()
    registry.register(PRIORITY_LOAD_MODEL, FunctionStage(load_model))
    registry.register(PRIORITY_CONDITIONING, FunctionStage(encode_prompts))
    registry.register(PRIORITY_INIT_LATENT, FunctionStage(init_latent))
    registry.register(PRIORITY_BASE_SAMPLE, FunctionStage(base_sample))
    registry.register(PRIORITY_REFINER, FunctionStage(run_refiner, "refiner"))
    registry.register(PRIORITY_DECODE, FunctionStage(decode))
    registry.register(PRIORITY_SAVE_IMAGE, FunctionStage(save_image))
    registry.register(PRIORITY_IMAGE_TO_VIDEO, FunctionStage(image_to_video))
    registry.register(PRIORITY_EXTEND, FunctionStage(extend_video))
    return registry
