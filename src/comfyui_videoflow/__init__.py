"""
ComfyUI VideoFlow

Builds ComfyUI video workflows from flat generation parameters, including
the two-stage LTXV2 path: base-resolution generation followed by a latent
upscale and refine pass. Exposed as an MCP server and a CLI.
"""

__version__ = "0.1.0"

from .errors import UserConfigError
from .generator import VideoWorkflowGenerator
from .latent_upscale import LatentUpscaleExtension, wants_latent_upscale
from .params import ParameterSet

__all__ = [
    "__version__",
    "UserConfigError",
    "VideoWorkflowGenerator",
    "LatentUpscaleExtension",
    "wants_latent_upscale",
    "ParameterSet",
]
