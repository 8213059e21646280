"""
Model Registry - Single Source of Truth for Model Definitions

Resolves a model handle to its compatibility class and preferred resolution,
and holds the per-family node chain and sampling defaults used when wiring
a workflow.

Usage:
    from .model_registry import ModelRegistry, COMPAT_LTXV2

    registry = ModelRegistry()
    info = registry.get("ltx-2-19b-dev.safetensors")
    info.compat_class  # "lightricks-ltx-video-2"

Extra models can be declared in a JSON file named by VIDEOFLOW_MODEL_REGISTRY:
    {"my-model.safetensors": {"compat_class": "wan-2_1", "standard_width": 832, "standard_height": 480}}
"""

import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from .mcp_utils import get_logger

logger = get_logger("model_registry")

MODEL_REGISTRY_FILE = os.environ.get("VIDEOFLOW_MODEL_REGISTRY", "")

# =============================================================================
# Compatibility classes
# =============================================================================

COMPAT_LTXV2 = "lightricks-ltx-video-2"
COMPAT_HUNYUAN_VIDEO = "hunyuan-video"
COMPAT_HUNYUAN_VIDEO_15 = "hunyuan-video-1.5"
COMPAT_WAN21 = "wan-2_1"
COMPAT_SDXL = "stable-diffusion-xl-v1"
COMPAT_SDXL_REFINER = "stable-diffusion-xl-v1-refiner"
COMPAT_FLUX = "flux-1"
COMPAT_UNKNOWN = "unknown"

DEFAULT_VIDEO_WIDTH = 1024
DEFAULT_VIDEO_HEIGHT = 576


# =============================================================================
# Type Definitions
# =============================================================================


@dataclass(frozen=True)
class ModelInfo:
    """A resolved model handle."""

    name: str
    compat_class: str
    standard_width: int = 0
    standard_height: int = 0

    def hint_dimensions(self) -> tuple:
        """Preferred (width, height), defaulting to 1024x576 when the model has none."""
        width = self.standard_width if self.standard_width > 0 else DEFAULT_VIDEO_WIDTH
        height = self.standard_height if self.standard_height > 0 else DEFAULT_VIDEO_HEIGHT
        return width, height


@dataclass
class FamilySpec:
    """Node chain and sampling defaults for one compatibility class."""

    display_name: str
    is_video: bool = False
    joint_av_latent: bool = False
    image_to_video_node: Optional[str] = None
    default_fps: int = 24
    default_frames: int = 25
    default_cfg: float = 7.0
    default_sampler: str = "euler"
    default_scheduler: str = "normal"
    res_precision: int = 64
    latent_upscaler: Optional[str] = None
    image_input: str = "start_image"
    image_preprocess_node: Optional[str] = None
    i2v_negative_output: Optional[int] = 1
    i2v_latent_output: int = 2
    notes: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "display_name": self.display_name,
            "type": "video" if self.is_video else "image",
            "defaults": {
                "fps": self.default_fps,
                "frames": self.default_frames,
                "cfg": self.default_cfg,
                "sampler": self.default_sampler,
                "scheduler": self.default_scheduler,
            },
            "resolution_precision": self.res_precision,
        }
        if self.image_to_video_node:
            result["image_to_video_node"] = self.image_to_video_node
        if self.joint_av_latent:
            result["joint_av_latent"] = True
        if self.latent_upscaler:
            result["latent_upscaler"] = self.latent_upscaler
        if self.notes:
            result["notes"] = self.notes
        return result


# =============================================================================
# Family Registry
# =============================================================================

FAMILY_SPECS: Dict[str, FamilySpec] = {
    COMPAT_LTXV2: FamilySpec(
        display_name="LTX-Video 2",
        is_video=True,
        joint_av_latent=True,
        image_to_video_node="LTXVImgToVideo",
        default_fps=24,
        default_frames=97,
        default_cfg=3.0,
        default_sampler="euler",
        default_scheduler="simple",
        latent_upscaler="ltxv2",
        image_input="image",
        image_preprocess_node="LTXVPreprocess",
        notes={"frames": "Frame count must be 8n+1", "latent": "Audio and video share one latent"},
    ),
    COMPAT_HUNYUAN_VIDEO: FamilySpec(
        display_name="HunyuanVideo",
        is_video=True,
        image_to_video_node="HunyuanImageToVideo",
        default_fps=24,
        default_frames=73,
        default_cfg=6.0,
        default_scheduler="simple",
        res_precision=16,
        i2v_negative_output=None,
        i2v_latent_output=1,
    ),
    COMPAT_HUNYUAN_VIDEO_15: FamilySpec(
        display_name="HunyuanVideo 1.5",
        is_video=True,
        image_to_video_node="HunyuanVideo15ImageToVideo",
        default_fps=24,
        default_frames=121,
        default_cfg=6.0,
        default_scheduler="simple",
        latent_upscaler="hunyuan15",
    ),
    COMPAT_WAN21: FamilySpec(
        display_name="Wan 2.1",
        is_video=True,
        image_to_video_node="WanImageToVideo",
        default_fps=16,
        default_frames=81,
        default_cfg=5.0,
        default_sampler="uni_pc",
        default_scheduler="simple",
    ),
    COMPAT_SDXL: FamilySpec(display_name="SDXL", default_cfg=7.0),
    COMPAT_SDXL_REFINER: FamilySpec(display_name="SDXL Refiner", default_cfg=7.0),
    COMPAT_FLUX: FamilySpec(display_name="FLUX.1", default_cfg=1.0, default_scheduler="simple"),
}

_UNKNOWN_FAMILY = FamilySpec(display_name="Unknown")


def get_family(compat_class: Optional[str]) -> FamilySpec:
    """Family spec for a compat class; unknown classes get generic defaults."""
    return FAMILY_SPECS.get(compat_class or COMPAT_UNKNOWN, _UNKNOWN_FAMILY)


# =============================================================================
# Built-in Models
# =============================================================================

_BUILTIN_MODELS: List[ModelInfo] = [
    ModelInfo("ltx-2-19b-dev.safetensors", COMPAT_LTXV2, 1280, 704),
    ModelInfo("ltx-2-19b-distilled.safetensors", COMPAT_LTXV2, 1280, 704),
    ModelInfo("hunyuan_video_image_to_video_720p_bf16.safetensors", COMPAT_HUNYUAN_VIDEO, 1280, 720),
    ModelInfo("hunyuanvideo1.5_720p_i2v_fp16.safetensors", COMPAT_HUNYUAN_VIDEO_15, 1280, 720),
    ModelInfo("wan2.1_i2v_480p_14B_fp16.safetensors", COMPAT_WAN21, 832, 480),
    ModelInfo("sd_xl_base_1.0.safetensors", COMPAT_SDXL, 1024, 1024),
    ModelInfo("sd_xl_refiner_1.0.safetensors", COMPAT_SDXL_REFINER, 1024, 1024),
    ModelInfo("flux1-dev.safetensors", COMPAT_FLUX, 1024, 1024),
]

MODEL_ALIASES: Dict[str, str] = {
    "ltx2": "ltx-2-19b-dev.safetensors",
    "ltxv2": "ltx-2-19b-dev.safetensors",
    "ltx2-distilled": "ltx-2-19b-distilled.safetensors",
    "hunyuan": "hunyuan_video_image_to_video_720p_bf16.safetensors",
    "hunyuan15": "hunyuanvideo1.5_720p_i2v_fp16.safetensors",
    "wan": "wan2.1_i2v_480p_14B_fp16.safetensors",
    "wan21": "wan2.1_i2v_480p_14B_fp16.safetensors",
    "sdxl": "sd_xl_base_1.0.safetensors",
    "sdxl-refiner": "sd_xl_refiner_1.0.safetensors",
    "flux": "flux1-dev.safetensors",
}


def _load_registry_file(path: str) -> List[ModelInfo]:
    """Read extra model definitions from a JSON file."""
    data = json.loads(Path(path).read_text())
    models = []
    for name, entry in data.items():
        models.append(
            ModelInfo(
                name=name,
                compat_class=entry.get("compat_class", COMPAT_UNKNOWN),
                standard_width=int(entry.get("standard_width", 0)),
                standard_height=int(entry.get("standard_height", 0)),
            )
        )
    return models


class ModelRegistry:
    """
    Model handle lookup.

    Handles are file names or aliases. Unknown handles resolve to a model of
    the unknown compat class with no resolution hints.
    """

    def __init__(self, models: Optional[List[ModelInfo]] = None, registry_file: Optional[str] = None):
        self._lock = threading.Lock()
        self._models: Dict[str, ModelInfo] = {}
        for info in _BUILTIN_MODELS if models is None else models:
            self._models[info.name] = info

        registry_file = MODEL_REGISTRY_FILE if registry_file is None else registry_file
        if registry_file:
            try:
                extra = _load_registry_file(registry_file)
            except (OSError, ValueError) as e:
                logger.warning("model_registry: failed to load %s: %s", registry_file, e)
            else:
                for info in extra:
                    self._models[info.name] = info
                logger.info("model_registry: loaded %d models from %s", len(extra), registry_file)

    def register(self, info: ModelInfo) -> None:
        with self._lock:
            self._models[info.name] = info

    def get(self, handle: Any) -> Optional[ModelInfo]:
        """Resolve a handle (name, alias or ModelInfo). None for empty handles."""
        if handle is None or handle == "":
            return None
        if isinstance(handle, ModelInfo):
            return handle
        name = MODEL_ALIASES.get(str(handle).lower(), str(handle))
        with self._lock:
            info = self._models.get(name)
        if info is None:
            logger.info("model_registry: unknown model '%s', using generic defaults", name)
            return ModelInfo(name, COMPAT_UNKNOWN)
        return info

    def list_models(self) -> List[Dict[str, Any]]:
        with self._lock:
            models = list(self._models.values())
        return [
            {
                "name": m.name,
                "compat_class": m.compat_class,
                "standard_width": m.standard_width,
                "standard_height": m.standard_height,
            }
            for m in models
        ]
