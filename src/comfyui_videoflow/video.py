"""
Video Generation

Per-pass generation descriptor and the single-pass image-to-video chain:
load video model, encode prompts, build the conditioned latent from the
current image, sample (optionally swapping models part-way) and decode.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .context import GenerationContext
from .graph import node_path
from .media import MediaKind
from .mcp_utils import get_logger
from .model_registry import FamilySpec, ModelInfo, get_family
from .params import SECTION_VIDEO, SECTION_VIDEO_SWAP
from .prompt_regions import base_prompt
from .schemas import NodeRef

logger = get_logger("video")

Dimension = Union[int, NodeRef]

VIDEO_SIGMA_MIN = 0.002
VIDEO_SIGMA_MAX = 1000
END_STEP_ALL = 10000


@dataclass
class VideoGenDescriptor:
    """Parameters of one video sampling pass, frozen when the pass runs."""

    video_model: ModelInfo
    width: Dimension
    height: Dimension
    prompt: str
    negative_prompt: str
    steps: int
    seed: int
    section: str
    frames: Optional[int] = None
    fps: Optional[int] = None
    cfg: Optional[float] = None
    start_step: int = 0
    swap_model: Optional[ModelInfo] = None
    swap_percent: float = 0.5
    video2video_creativity: Optional[float] = None
    # Resize video-to-video source frames to width x height before encoding
    scale_source_frames: bool = False

    # Filled by prepare_image_to_video
    model: Optional[NodeRef] = None
    vae: Optional[NodeRef] = None
    audio_vae: Optional[NodeRef] = None
    positive: Optional[NodeRef] = None
    negative: Optional[NodeRef] = None
    latent: Optional[NodeRef] = None
    latent_kind: MediaKind = MediaKind.LATENT

    @property
    def family(self) -> FamilySpec:
        return get_family(self.video_model.compat_class)

    def apply_family_defaults(self) -> None:
        family = self.family
        if self.frames is None:
            self.frames = family.default_frames
        if self.fps is None:
            self.fps = family.default_fps
        if self.cfg is None:
            self.cfg = family.default_cfg


def prepare_image_to_video(ctx: GenerationContext, desc: VideoGenDescriptor) -> VideoGenDescriptor:
    """
    Build model, conditioning and the starting latent for a video pass.

    Reads the current media as the conditioning image. Leaves the cursor on
    the starting latent (combined audio/video for joint-latent families).
    """
    desc.apply_family_defaults()
    family = desc.family
    image = ctx.ensure_kind(MediaKind.RAW_IMAGE).ref
    source_frames = image

    model, clip, vae, audio_vae = ctx.create_model_loader(desc.video_model)
    ctx.loaded_model = desc.video_model
    ctx.final_model, ctx.final_clip, ctx.final_vae = model, clip, vae
    ctx.current_audio_vae = audio_vae
    desc.model, desc.vae, desc.audio_vae = model, vae, audio_vae

    positive = ctx.create_conditioning(desc.prompt, clip)
    negative = ctx.create_conditioning(desc.negative_prompt, clip)
    if family.joint_av_latent:
        conditioned = ctx.create_node(
            "LTXVConditioning",
            {"positive": positive, "negative": negative, "frame_rate": desc.fps},
        )
        positive, negative = node_path(conditioned, 0), node_path(conditioned, 1)

    if family.image_to_video_node:
        if family.image_preprocess_node:
            preprocessed = ctx.create_node(family.image_preprocess_node, {"image": image, "img_compression": 32})
            image = node_path(preprocessed, 0)
        inputs = {
            "positive": positive,
            "vae": vae,
            family.image_input: image,
            "width": desc.width,
            "height": desc.height,
            "length": desc.frames,
            "batch_size": 1,
        }
        if family.i2v_negative_output is not None:
            inputs["negative"] = negative
        if family.joint_av_latent:
            inputs["strength"] = 1.0
        i2v = ctx.create_node(family.image_to_video_node, inputs)
        positive = node_path(i2v, 0)
        if family.i2v_negative_output is not None:
            negative = node_path(i2v, family.i2v_negative_output)
        latent = node_path(i2v, family.i2v_latent_output)
    else:
        logger.info("video: no image-to-video node for %s, encoding the image directly", desc.video_model.compat_class)
        scaled = ctx.create_node(
            "ImageScale",
            {"image": image, "width": desc.width, "height": desc.height, "upscale_method": "lanczos", "crop": "disabled"},
        )
        latent = node_path(ctx.create_vae_encode(vae, node_path(scaled, 0)), 0)

    if desc.video2video_creativity is not None:
        from_batch = ctx.create_node("ImageFromBatch", {"image": source_frames, "batch_index": 0, "length": desc.frames})
        frames = node_path(from_batch, 0)
        if desc.scale_source_frames:
            resized = ctx.create_node(
                "ImageScale",
                {"image": frames, "width": desc.width, "height": desc.height, "upscale_method": "lanczos", "crop": "disabled"},
            )
            frames = node_path(resized, 0)
        desc.start_step = int(math.floor(desc.steps * (1 - desc.video2video_creativity)))
        latent = node_path(ctx.create_vae_encode(vae, frames), 0)

    desc.positive, desc.negative = positive, negative
    ctx.positive, ctx.negative = positive, negative
    if family.joint_av_latent:
        audio_latent = ctx.create_empty_audio_latent(desc.frames, desc.fps)
        ctx.advance_media(latent, MediaKind.LATENT, fps=desc.fps, audio_latent=audio_latent)
        ctx.ensure_kind(MediaKind.LATENT_AUDIO_VIDEO)
    else:
        ctx.advance_media(latent, MediaKind.LATENT, fps=desc.fps)
    desc.latent = ctx.media.ref
    desc.latent_kind = ctx.media.kind
    return desc


def sample_video(
    ctx: GenerationContext,
    desc: VideoGenDescriptor,
    sampler: Optional[str] = None,
    scheduler: Optional[str] = None,
    previews: str = "animate",
) -> str:
    """
    Sample the prepared latent; returns the final sampler node id.

    With a swap model, the first model denoises up to swap_percent of the
    steps and hands its noisy latent to the swap model for the rest.
    """
    if desc.swap_model is None:
        return ctx.create_ksampler(
            desc.model, desc.positive, desc.negative, desc.latent, desc.cfg, desc.steps, desc.start_step,
            END_STEP_ALL, desc.seed, False, True, sampler=sampler, scheduler=scheduler, previews=previews,
            sigma_min=VIDEO_SIGMA_MIN, sigma_max=VIDEO_SIGMA_MAX,
        )

    swap_step = max(desc.start_step, int(round(desc.steps * desc.swap_percent)))
    first = ctx.create_ksampler(
        desc.model, desc.positive, desc.negative, desc.latent, desc.cfg, desc.steps, desc.start_step,
        swap_step, desc.seed, True, True, sampler=sampler, scheduler=scheduler, previews=previews,
        sigma_min=VIDEO_SIGMA_MIN, sigma_max=VIDEO_SIGMA_MAX,
    )
    swap_model, _, _, _ = ctx.create_model_loader(desc.swap_model)
    return ctx.create_ksampler(
        swap_model, desc.positive, desc.negative, node_path(first, 0), desc.cfg, desc.steps, swap_step,
        END_STEP_ALL, desc.seed, False, False, sampler=sampler, scheduler=scheduler, previews=previews,
        sigma_min=VIDEO_SIGMA_MIN, sigma_max=VIDEO_SIGMA_MAX,
    )


def create_image_to_video(
    ctx: GenerationContext,
    desc: VideoGenDescriptor,
    sampler: Optional[str] = None,
    scheduler: Optional[str] = None,
) -> VideoGenDescriptor:
    """Single-pass image-to-video; leaves the cursor on the decoded frames."""
    prepare_image_to_video(ctx, desc)
    previews = ctx.params.get("video_preview_type")
    sampled = sample_video(ctx, desc, sampler, scheduler, previews)
    ctx.advance_media(node_path(sampled, 0), desc.latent_kind, fps=desc.fps)
    ctx.ensure_kind(MediaKind.RAW_IMAGE)
    return desc


# Video seeds sit above the image seed
VIDEO_SEED_OFFSET = 42


def video_descriptor(ctx: GenerationContext, video_model: ModelInfo, width: Dimension, height: Dimension) -> VideoGenDescriptor:
    """Descriptor of the main image-to-video pass from the request parameters."""
    params = ctx.params
    cfg = params.get_nullable("cfg_scale", SECTION_VIDEO, include_base=False)
    if cfg is None:
        cfg = params.get_nullable("video_cfg", SECTION_VIDEO)
    steps = params.get_nullable("steps", SECTION_VIDEO, include_base=False)
    if steps is None:
        steps = params.get("video_steps", section=SECTION_VIDEO)
    return VideoGenDescriptor(
        video_model=video_model,
        width=width,
        height=height,
        prompt=base_prompt(params.get("prompt")),
        negative_prompt=params.get("negative_prompt"),
        steps=int(steps),
        seed=int(params.get("seed")) + VIDEO_SEED_OFFSET,
        section=SECTION_VIDEO,
        frames=params.get_nullable("video_frames"),
        fps=params.get_nullable("video_fps"),
        cfg=cfg,
        swap_model=ctx.resolve_model("video_swap_model"),
        swap_percent=params.get("video_swap_percent"),
        video2video_creativity=params.get_nullable("video2video_creativity"),
    )


def video_sampler(ctx: GenerationContext, desc: VideoGenDescriptor) -> Tuple[Optional[str], Optional[str]]:
    """Explicit sampler/scheduler for a pass; the swap section wins when a swap model is set."""
    sampler, scheduler = ctx.explicit_sampler(desc.section)
    if desc.swap_model is not None:
        swap_sampler, swap_scheduler = ctx.explicit_sampler(SECTION_VIDEO_SWAP)
        sampler, scheduler = swap_sampler or sampler, swap_scheduler or scheduler
    return sampler, scheduler
