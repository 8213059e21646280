"""
Generation Context

Mutable state threaded through the pipeline stages for one request: the
graph under construction, the media cursor, the currently loaded model
references and a helper cache. All graph and cursor mutation goes through
this object.
"""

from typing import Any, Dict, Optional, Tuple

from .graph import NodeGraph, node_path
from .media import MediaCursor, MediaKind, convert
from .mcp_utils import get_logger
from .model_registry import ModelInfo, ModelRegistry, FamilySpec, get_family, COMPAT_LTXV2
from .params import ParameterSet, SECTION_REFINER
from .schemas import NodeRef

logger = get_logger("context")

# Frame interpolation node per method
INTERPOLATION_NODES = {
    "RIFE": ("RIFE VFI", "rife47.pth"),
    "FILM": ("FILM VFI", "film_net_fp32.pt"),
}


class GenerationContext:
    """Everything one workflow build reads and writes."""

    def __init__(self, params: ParameterSet, models: Optional[ModelRegistry] = None, graph: Optional[NodeGraph] = None):
        self.params = params
        self.models = models or ModelRegistry()
        self.graph = graph or NodeGraph()
        self.media: Optional[MediaCursor] = None
        self.node_helpers: Dict[str, Any] = {}

        self.loaded_model: Optional[ModelInfo] = None
        self.final_model: Optional[NodeRef] = None
        self.final_clip: Optional[NodeRef] = None
        self.final_vae: Optional[NodeRef] = None
        self.current_audio_vae: Optional[NodeRef] = None
        self.positive: Optional[NodeRef] = None
        self.negative: Optional[NodeRef] = None

        self.is_refiner_stage = False
        self.is_image_to_video = False

    # -------------------------------------------------------------------------
    # Graph access
    # -------------------------------------------------------------------------

    def create_node(self, class_type: str, inputs: Dict[str, Any], node_id: Optional[str] = None) -> str:
        return self.graph.create_node(class_type, inputs, node_id)

    def remove_node(self, node_id: str) -> bool:
        return self.graph.remove_node(node_id)

    # -------------------------------------------------------------------------
    # Media cursor
    # -------------------------------------------------------------------------

    def advance_media(
        self,
        ref: NodeRef,
        kind: MediaKind,
        fps: Optional[int] = None,
        audio_latent: Optional[NodeRef] = None,
        audio: Optional[NodeRef] = None,
    ) -> MediaCursor:
        """Replace the cursor with a new one."""
        self.media = MediaCursor(ref=ref, kind=kind, fps=fps, audio_latent=audio_latent, audio=audio)
        return self.media

    def set_media(self, cursor: MediaCursor) -> MediaCursor:
        self.media = cursor
        return cursor

    def update_media_ref(self, ref: NodeRef) -> MediaCursor:
        """Move the cursor to a new node, keeping kind and auxiliary data."""
        self.media = self.media.with_ref(ref)
        return self.media

    def ensure_kind(self, kind: MediaKind) -> MediaCursor:
        """Convert the cursor to kind with the minimal encode/decode nodes."""
        if self.media is None:
            raise ValueError("No current media to convert")
        self.media = convert(self, self.media, kind)
        return self.media

    # -------------------------------------------------------------------------
    # Model family
    # -------------------------------------------------------------------------

    @property
    def current_vae(self) -> Optional[NodeRef]:
        return self.final_vae

    def current_compat(self) -> str:
        return self.loaded_model.compat_class if self.loaded_model else "unknown"

    def current_family(self) -> FamilySpec:
        return get_family(self.current_compat())

    def is_ltxv2(self) -> bool:
        return self.current_compat() == COMPAT_LTXV2

    def resolve_model(self, name: str, section: Optional[str] = None) -> Optional[ModelInfo]:
        """Look up a model-handle parameter through the registry."""
        return self.models.get(self.params.get_nullable(name, section))

    # -------------------------------------------------------------------------
    # Node helpers
    # -------------------------------------------------------------------------

    def create_model_loader(self, info: ModelInfo, node_id: Optional[str] = None) -> Tuple[NodeRef, NodeRef, NodeRef, Optional[NodeRef]]:
        """
        Load a model checkpoint; returns (model, clip, vae, audio_vae).

        Loaders are cached per model name so repeated passes with the same
        model share one loader.
        """
        cache_key = f"loader:{info.name}"
        if cache_key in self.node_helpers and node_id is None:
            return self.node_helpers[cache_key]

        loader = self.create_node("CheckpointLoaderSimple", {"ckpt_name": info.name}, node_id)
        audio_vae = None
        if get_family(info.compat_class).joint_av_latent:
            audio_loader = self.create_node("LTXVAudioVAELoader", {"ckpt_name": info.name})
            audio_vae = node_path(audio_loader, 0)
        result = (node_path(loader, 0), node_path(loader, 1), node_path(loader, 2), audio_vae)
        self.node_helpers[cache_key] = result
        return result

    def create_conditioning(self, text: str, clip: NodeRef, node_id: Optional[str] = None) -> NodeRef:
        encoded = self.create_node("CLIPTextEncode", {"text": text, "clip": clip}, node_id)
        return node_path(encoded, 0)

    def create_vae_encode(self, vae: NodeRef, pixels: NodeRef, node_id: Optional[str] = None) -> str:
        return self.create_node("VAEEncode", {"vae": vae, "pixels": pixels}, node_id)

    def create_vae_decode(self, vae: NodeRef, samples: NodeRef, node_id: Optional[str] = None) -> str:
        return self.create_node("VAEDecode", {"vae": vae, "samples": samples}, node_id)

    def create_empty_audio_latent(self, frames: Optional[int] = None, fps: Optional[int] = None) -> NodeRef:
        family = self.current_family()
        frames = frames or self.params.get("video_frames", family.default_frames)
        fps = fps or self.params.get("video_fps", family.default_fps)
        empty = self.create_node(
            "LTXVEmptyLatentAudio",
            {
                "audio_vae": self.current_audio_vae,
                "frames_number": frames,
                "frame_rate": fps,
                "batch_size": 1,
            },
        )
        return node_path(empty, 0)

    def create_ksampler(
        self,
        model: NodeRef,
        positive: NodeRef,
        negative: NodeRef,
        latent: NodeRef,
        cfg: float,
        steps: int,
        start_step: int,
        end_step: int,
        seed: int,
        return_with_leftover_noise: bool,
        add_noise: bool,
        sampler: Optional[str] = None,
        scheduler: Optional[str] = None,
        tiled: bool = False,
        previews: str = "default",
        sigma_min: float = -1,
        sigma_max: float = -1,
        node_id: Optional[str] = None,
    ) -> str:
        family = self.current_family()
        return self.create_node(
            "SwarmKSampler",
            {
                "model": model,
                "noise_seed": seed,
                "steps": steps,
                "cfg": cfg,
                "sampler_name": sampler or family.default_sampler,
                "scheduler": scheduler or family.default_scheduler,
                "positive": positive,
                "negative": negative,
                "latent_image": latent,
                "start_at_step": start_step,
                "end_at_step": end_step,
                "return_with_leftover_noise": "enable" if return_with_leftover_noise else "disable",
                "add_noise": "enable" if add_noise else "disable",
                "sigma_min": sigma_min,
                "sigma_max": sigma_max,
                "previews": previews,
                "tile_sample": tiled,
            },
            node_id,
        )

    def explicit_sampler(self, section: str, fallback: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
        """
        Sampler and scheduler overrides for a section.

        Section-only values win, then the refiner-specific parameters (for
        the refiner section), then the fallback.
        """
        sampler = self.params.get_nullable("sampler", section, include_base=False)
        scheduler = self.params.get_nullable("scheduler", section, include_base=False)
        if section == SECTION_REFINER:
            sampler = sampler or self.params.get_nullable("refiner_sampler")
            scheduler = scheduler or self.params.get_nullable("refiner_scheduler")
        return sampler or fallback, scheduler

    def create_image_save(self, images: NodeRef, node_id: Optional[str] = None) -> str:
        return self.create_node("SwarmSaveImageWS", {"images": images}, node_id)

    def create_animation_save(
        self,
        images: NodeRef,
        fps: int,
        fmt: str,
        node_id: Optional[str] = None,
        audio: Optional[NodeRef] = None,
    ) -> str:
        inputs: Dict[str, Any] = {
            "images": images,
            "fps": fps,
            "lossless": False,
            "quality": 95,
            "method": "default",
            "format": fmt,
        }
        if audio is not None:
            inputs["audio"] = audio
        return self.create_node("SwarmSaveAnimationWS", inputs, node_id)

    def save_media(self, fmt: str, node_id: Optional[str] = None) -> str:
        """Decode if needed and save the current media as an animation."""
        cursor = self.ensure_kind(MediaKind.RAW_IMAGE)
        fps = cursor.fps or self.current_family().default_fps
        return self.create_animation_save(cursor.ref, fps, fmt, node_id, audio=cursor.audio)

    def do_interpolation(self, images: NodeRef, method: str, multiplier: int) -> NodeRef:
        node_type, ckpt = INTERPOLATION_NODES.get(method.upper(), INTERPOLATION_NODES["RIFE"])
        interpolated = self.create_node(
            node_type,
            {
                "frames": images,
                "ckpt_name": ckpt,
                "clear_cache_after_n_frames": 10,
                "multiplier": multiplier,
            },
        )
        return node_path(interpolated, 0)
