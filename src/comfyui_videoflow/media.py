"""
Media Cursor

The single "current media" reference stages hand to each other, and the
closed table of legal conversions between media kinds. Every conversion is
a plain node insertion.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from .graph import node_path
from .schemas import NodeRef

if TYPE_CHECKING:
    from .context import GenerationContext


class MediaKind(Enum):
    """What the cursor reference points at."""

    RAW_IMAGE = "raw_image"
    LATENT = "latent"
    LATENT_AUDIO_VIDEO = "latent_audio_video"


@dataclass(frozen=True)
class MediaCursor:
    """Current media reference plus its auxiliary channels."""

    ref: NodeRef
    kind: MediaKind
    fps: Optional[int] = None
    audio_latent: Optional[NodeRef] = None
    audio: Optional[NodeRef] = None

    def with_ref(self, ref: NodeRef) -> "MediaCursor":
        """Same kind and auxiliary data, new reference."""
        return replace(self, ref=ref)


Converter = Callable[["GenerationContext", MediaCursor], MediaCursor]


def _encode(ctx: "GenerationContext", cursor: MediaCursor) -> MediaCursor:
    encoded = ctx.create_vae_encode(ctx.current_vae, cursor.ref)
    return replace(cursor, ref=node_path(encoded, 0), kind=MediaKind.LATENT)


def _decode(ctx: "GenerationContext", cursor: MediaCursor) -> MediaCursor:
    decoded = ctx.create_vae_decode(ctx.current_vae, cursor.ref)
    audio = cursor.audio
    if cursor.audio_latent is not None and ctx.current_audio_vae is not None:
        audio_node = ctx.create_node(
            "LTXVAudioVAEDecode",
            {"samples": cursor.audio_latent, "audio_vae": ctx.current_audio_vae},
        )
        audio = node_path(audio_node, 0)
    return replace(cursor, ref=node_path(decoded, 0), kind=MediaKind.RAW_IMAGE, audio=audio)


def _separate(ctx: "GenerationContext", cursor: MediaCursor) -> MediaCursor:
    separated = ctx.create_node("LTXVSeparateAVLatent", {"av_latent": cursor.ref})
    return replace(
        cursor,
        ref=node_path(separated, 0),
        kind=MediaKind.LATENT,
        audio_latent=node_path(separated, 1),
    )


def _combine(ctx: "GenerationContext", cursor: MediaCursor) -> MediaCursor:
    audio_latent = cursor.audio_latent or ctx.create_empty_audio_latent()
    combined = ctx.create_node(
        "LTXVConcatAVLatent",
        {"video_latent": cursor.ref, "audio_latent": audio_latent},
    )
    return replace(
        cursor,
        ref=node_path(combined, 0),
        kind=MediaKind.LATENT_AUDIO_VIDEO,
        audio_latent=audio_latent,
    )


# Single-step conversions
CONVERTERS: Dict[Tuple[MediaKind, MediaKind], Converter] = {
    (MediaKind.RAW_IMAGE, MediaKind.LATENT): _encode,
    (MediaKind.LATENT, MediaKind.RAW_IMAGE): _decode,
    (MediaKind.LATENT_AUDIO_VIDEO, MediaKind.LATENT): _separate,
    (MediaKind.LATENT, MediaKind.LATENT_AUDIO_VIDEO): _combine,
}

# Every legal transition as the sequence of kinds it passes through
CONVERSION_ROUTES: Dict[Tuple[MediaKind, MediaKind], List[MediaKind]] = {
    (MediaKind.RAW_IMAGE, MediaKind.LATENT): [MediaKind.LATENT],
    (MediaKind.LATENT, MediaKind.RAW_IMAGE): [MediaKind.RAW_IMAGE],
    (MediaKind.LATENT_AUDIO_VIDEO, MediaKind.LATENT): [MediaKind.LATENT],
    (MediaKind.LATENT, MediaKind.LATENT_AUDIO_VIDEO): [MediaKind.LATENT_AUDIO_VIDEO],
    (MediaKind.LATENT_AUDIO_VIDEO, MediaKind.RAW_IMAGE): [MediaKind.LATENT, MediaKind.RAW_IMAGE],
    (MediaKind.RAW_IMAGE, MediaKind.LATENT_AUDIO_VIDEO): [MediaKind.LATENT, MediaKind.LATENT_AUDIO_VIDEO],
}


def convert(ctx: "GenerationContext", cursor: MediaCursor, target: MediaKind) -> MediaCursor:
    """Insert the conversion nodes that turn cursor into target kind."""
    if cursor.kind == target:
        return cursor
    for step in CONVERSION_ROUTES[(cursor.kind, target)]:
        cursor = CONVERTERS[(cursor.kind, step)](ctx, cursor)
    return cursor
