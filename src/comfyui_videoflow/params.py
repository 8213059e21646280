"""
Parameter Set

Read-only view over the flat request parameters, with section-scoped
overrides ("refiner", "video", "videoswap", "extend-<n>") that fall back to
the base values.
"""

from typing import Any, Dict, Mapping, Optional, Tuple

SECTION_REFINER = "refiner"
SECTION_VIDEO = "video"
SECTION_VIDEO_SWAP = "videoswap"

_MISSING = object()


def extend_section(index: int) -> str:
    """Section name for the index-th extend segment."""
    return f"extend-{index}"


# Documented defaults for absent parameters
PARAM_DEFAULTS: Dict[str, Any] = {
    "prompt": "",
    "negative_prompt": "",
    "seed": 0,
    "steps": 20,
    "cfg_scale": 7.0,
    "width": 1024,
    "height": 1024,
    "init_image_creativity": 0.6,
    "refiner_method": "PostApply",
    "refiner_control": 0.5,
    "refiner_upscale_method": "None",
    "refiner_do_tiling": False,
    "video_steps": 20,
    "video_format": "h264-mp4",
    "video_resolution": "Model Preferred",
    "video_swap_percent": 0.5,
    "video_boomerang": False,
    "video_preview_type": "animate",
    "video_extend_format": "mp4",
    "video_extend_frame_overlap": 9,
    "video_extend_swap_percent": 0.5,
    "trim_video_start_frames": 0,
    "trim_video_end_frames": 0,
    "output_intermediate_images": False,
}


class ParameterSet:
    """
    Typed getters over a parameter mapping.

    A parameter is *present* when its key exists with a non-None value.
    Absent parameters resolve to the caller's default, then to PARAM_DEFAULTS.
    """

    def __init__(
        self,
        values: Optional[Mapping[str, Any]] = None,
        sections: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        self._values = dict(values or {})
        self._sections = {name: dict(overrides) for name, overrides in (sections or {}).items()}

    def _lookup(self, name: str, section: Optional[str], include_base: bool) -> Any:
        if section is not None:
            value = self._sections.get(section, {}).get(name)
            if value is not None:
                return value
            if not include_base:
                return _MISSING
        value = self._values.get(name)
        return _MISSING if value is None else value

    def get(self, name: str, default: Any = _MISSING, section: str = None, include_base: bool = True) -> Any:
        value = self._lookup(name, section, include_base)
        if value is not _MISSING:
            return value
        if default is not _MISSING:
            return default
        return PARAM_DEFAULTS.get(name)

    def get_nullable(self, name: str, section: str = None, include_base: bool = True) -> Any:
        """Value if present, else None (ignores PARAM_DEFAULTS)."""
        value = self._lookup(name, section, include_base)
        return None if value is _MISSING else value

    def try_get(self, name: str, section: str = None) -> Tuple[bool, Any]:
        value = self._lookup(name, section, True)
        if value is _MISSING:
            return False, None
        return True, value

    def has(self, name: str, section: str = None) -> bool:
        return self.try_get(name, section)[0]

    @property
    def image_width(self) -> int:
        return int(self.get("width"))

    @property
    def image_height(self) -> int:
        return int(self.get("height"))

    def to_dict(self) -> Dict[str, Any]:
        return {"values": dict(self._values), "sections": {k: dict(v) for k, v in self._sections.items()}}

    def __repr__(self) -> str:
        return f"ParameterSet({self._values!r}, sections={list(self._sections)})"
