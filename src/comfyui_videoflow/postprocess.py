"""
Post-Processing Chain

Frame trimming, frame interpolation, boomerang looping, multi-segment
"extend" chaining and the final save node.
"""

from typing import Callable, Optional

from .context import GenerationContext
from .errors import extend_too_short, missing_extend_model
from .graph import node_path
from .media import MediaKind
from .mcp_utils import get_logger
from .prompt_regions import ExtendPart, has_extend, parse_extend_parts
from .video import VideoGenDescriptor, create_image_to_video, video_sampler

logger = get_logger("postprocess")

# Stable id of the final output node
FINAL_SAVE_ID = "9"

# Seeds of extend segments start here above the request seed
EXTEND_SEED_OFFSET = 600

SegmentGenerator = Callable[[GenerationContext, VideoGenDescriptor, Optional[str], Optional[str]], None]


def apply_trim(ctx: GenerationContext) -> bool:
    """Insert a frame-trim node when either trim parameter is present."""
    params = ctx.params
    if not (params.has("trim_video_start_frames") or params.has("trim_video_end_frames")):
        return False
    cursor = ctx.ensure_kind(MediaKind.RAW_IMAGE)
    trimmed = ctx.create_node(
        "SwarmTrimFrames",
        {
            "image": cursor.ref,
            "trim_start": params.get("trim_video_start_frames"),
            "trim_end": params.get("trim_video_end_frames"),
        },
    )
    ctx.update_media_ref(node_path(trimmed, 0))
    return True


def interpolation_settings(ctx: GenerationContext):
    """(method, multiplier) when frame interpolation is requested, else None."""
    has_method, method = ctx.params.try_get("video_frame_interpolation_method")
    has_mult, multiplier = ctx.params.try_get("video_frame_interpolation_multiplier")
    if has_method and has_mult and int(multiplier) > 1:
        return method, int(multiplier)
    return None


def apply_interpolation(ctx: GenerationContext, fmt: str) -> bool:
    """Interpolate the current frames, saving the pre-interpolation output first if asked."""
    settings = interpolation_settings(ctx)
    if settings is None:
        return False
    method, multiplier = settings
    if ctx.params.get("output_intermediate_images"):
        ctx.save_media(fmt)
    cursor = ctx.ensure_kind(MediaKind.RAW_IMAGE)
    fps = (cursor.fps or ctx.current_family().default_fps) * multiplier
    ctx.advance_media(ctx.do_interpolation(cursor.ref, method, multiplier), MediaKind.RAW_IMAGE, fps=fps, audio=cursor.audio)
    return True


def apply_boomerang(ctx: GenerationContext) -> bool:
    if not ctx.params.get("video_boomerang"):
        return False
    cursor = ctx.ensure_kind(MediaKind.RAW_IMAGE)
    bounced = ctx.create_node("SwarmVideoBoomerang", {"images": cursor.ref})
    ctx.update_media_ref(node_path(bounced, 0))
    return True


def finish_video(ctx: GenerationContext, fmt: str) -> str:
    """
    Interpolate, loop and save the output of an image-to-video pass.

    With extend segments in the prompt, interpolation is left to the
    assembled sequence and the save goes to a dynamic id so the final
    save slot stays free.
    """
    extending = has_extend(ctx.params.get("prompt"))
    if not extending:
        apply_interpolation(ctx, fmt)
    apply_boomerang(ctx)
    return ctx.save_media(fmt, None if extending else FINAL_SAVE_ID)


def default_segment_generator(
    ctx: GenerationContext, desc: VideoGenDescriptor, sampler: Optional[str], scheduler: Optional[str]
) -> None:
    create_image_to_video(ctx, desc, sampler, scheduler)


def _segment_descriptor(ctx: GenerationContext, part: ExtendPart, width, height, fps, seed: int) -> VideoGenDescriptor:
    params = ctx.params
    cfg = params.get_nullable("cfg_scale", part.section, include_base=False)
    if cfg is None:
        cfg = params.get_nullable("video_cfg", part.section)
    if cfg is None:
        cfg = params.get("cfg_scale")
    steps = params.get_nullable("steps", part.section, include_base=False)
    if steps is None:
        steps = params.get_nullable("video_steps", part.section)
    if steps is None:
        steps = params.get("steps")
    return VideoGenDescriptor(
        video_model=ctx.resolve_model("video_extend_model"),
        width=width,
        height=height,
        prompt=part.prompt,
        negative_prompt=params.get("negative_prompt"),
        steps=int(steps),
        seed=seed,
        section=part.section,
        frames=part.frames,
        fps=fps,
        cfg=cfg,
        swap_model=ctx.resolve_model("video_extend_swap_model"),
        swap_percent=params.get("video_extend_swap_percent"),
    )


def run_extend(ctx: GenerationContext, generate_segment: Optional[SegmentGenerator] = None) -> bool:
    """
    Chain one generation pass per <extend:FRAMES> segment.

    Each pass is conditioned on the trailing overlap window of the running
    output; its frames after the overlap are appended. Returns False when
    the prompt has no extend segments.
    """
    params = ctx.params
    prompt = params.get("prompt")
    if not has_extend(prompt):
        return False
    generate_segment = generate_segment or default_segment_generator

    parts = parse_extend_parts(prompt)
    if ctx.resolve_model("video_extend_model") is None:
        raise missing_extend_model()

    overlap = int(params.get("video_extend_frame_overlap"))
    for part in parts:
        if part.frames <= overlap:
            raise extend_too_short(part.frames, overlap)

    seed = int(params.get("seed")) + EXTEND_SEED_OFFSET
    fps = params.get_nullable("video_fps")
    fmt = str(params.get("video_extend_format")).lower()
    save_intermediate = params.get("output_intermediate_images")

    cursor = ctx.ensure_kind(MediaKind.RAW_IMAGE)
    fps = fps or cursor.fps
    conjoined = cursor.ref
    width = node_path(ctx.create_node("SwarmImageWidth", {"image": cursor.ref}), 0)
    height = node_path(ctx.create_node("SwarmImageHeight", {"image": cursor.ref}), 0)

    logger.info("postprocess: extending video by %d segments (overlap %d)", len(parts), overlap)
    for part in parts:
        seed += 1
        current = ctx.ensure_kind(MediaKind.RAW_IMAGE).ref
        frame_count = ctx.create_node("SwarmCountFrames", {"image": current})
        from_end = ctx.create_node("SwarmIntAdd", {"a": node_path(frame_count, 0), "b": -overlap})
        window = ctx.create_node(
            "ImageFromBatch",
            {"image": current, "batch_index": node_path(from_end, 0), "length": overlap},
        )
        ctx.advance_media(node_path(window, 0), MediaKind.RAW_IMAGE, fps=fps)

        desc = _segment_descriptor(ctx, part, width, height, fps, seed)
        sampler, scheduler = video_sampler(ctx, desc)

        generate_segment(ctx, desc, sampler, scheduler)
        fps = desc.fps
        if save_intermediate:
            ctx.save_media(fmt)

        segment = ctx.ensure_kind(MediaKind.RAW_IMAGE).ref
        cut = ctx.create_node(
            "ImageFromBatch",
            {"image": segment, "batch_index": overlap, "length": part.frames - overlap},
        )
        batched = ctx.create_node("ImageBatch", {"image1": conjoined, "image2": node_path(cut, 0)})
        conjoined = node_path(batched, 0)
        ctx.advance_media(node_path(cut, 0), MediaKind.RAW_IMAGE, fps=fps)

    ctx.advance_media(conjoined, MediaKind.RAW_IMAGE, fps=fps)
    apply_interpolation(ctx, fmt)
    ctx.save_media(fmt, FINAL_SAVE_ID)
    return True
