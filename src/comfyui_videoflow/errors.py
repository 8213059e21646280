"""
Error Handling

The single fatal error kind raised during workflow construction, with the
actionable-guidance envelope used by every surface.

All envelopes follow the MCP error shape:
- "isError": true
- "code" for error categorization
- "error" human-readable message
- "suggestion" for actionable guidance
- "details" for additional context
"""

from typing import Dict, Any, Optional


class UserConfigError(Exception):
    """
    Requested capability cannot be built for the active model family.

    Raised only when the caller explicitly asks for something structurally
    impossible (latent-model upscaling on a family with no upscale node
    chain, an extend directive with no extend model). Aborts construction
    of the current workflow only.

    Example:
        UserConfigError(
            "Cannot latent-upscale for wan-2_1",
            suggestion="Use a pixel- or latent- upscale method for this model family.",
            details={"compat_class": "wan-2_1", "upscale_method": "latentmodel-x2.safetensors"},
        ).to_dict()
    """

    code = "USER_CONFIG_ERROR"

    def __init__(
        self,
        message: str,
        suggestion: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to MCP-compliant error dict."""
        result: Dict[str, Any] = {
            "isError": True,
            "code": self.code,
            "error": self.message,
            "suggestion": self.suggestion,
        }
        if self.details:
            result["details"] = self.details
        return result


def unsupported_latent_upscale(compat_class: str, upscale_method: str) -> UserConfigError:
    """Latent-model upscale requested on a family with no registered chain."""
    return UserConfigError(
        f"Cannot latent-upscale for {compat_class}",
        suggestion=(
            "Latent-model upscaling is only available for model families with a latent "
            "upscale node chain. Use a 'pixel-', 'model-' or 'latent-' upscale method instead."
        ),
        details={"compat_class": compat_class, "upscale_method": upscale_method},
    )


def missing_extend_model() -> UserConfigError:
    """Extend directive in the prompt without an extend model selected."""
    return UserConfigError(
        "You have an '<extend:' block in your prompt, but you don't have a 'Video Extend Model' selected.",
        suggestion="Set video_extend_model, or remove the <extend:...> blocks from the prompt.",
        details={"parameter": "video_extend_model"},
    )


def extend_too_short(frames: int, overlap: int) -> UserConfigError:
    """Extend segment that would contribute no new frames after the overlap."""
    return UserConfigError(
        f"Extend segment of {frames} frames is not longer than the {overlap}-frame overlap",
        suggestion="Increase the <extend:FRAMES> count or lower video_extend_frame_overlap.",
        details={"frames": frames, "overlap": overlap},
    )


def invalid_extend_frames(raw: str) -> UserConfigError:
    """Extend directive whose frame count is not a positive integer."""
    return UserConfigError(
        f"Invalid frame count in '<extend:{raw}>'",
        suggestion="Use a positive integer frame count, e.g. <extend:97>.",
        details={"frames": raw},
    )


def missing_model() -> UserConfigError:
    """Neither a base model nor a video model was given."""
    return UserConfigError(
        "No model selected",
        suggestion="Set 'model' (base image model) or 'video_model'.",
        details={"parameter": "model"},
    )
