"""
Video Workflow Generator

Composition root: owns the model registry, the stage registry and the
latent upscale extension, and turns a parameter set into a complete
workflow.

Usage:
    from comfyui_videoflow.generator import VideoWorkflowGenerator

    generator = VideoWorkflowGenerator()
    result = generator.generate({
        "video_model": "ltx2",
        "init_image": "start.png",
        "refiner_upscale": 1.5,
        "refiner_upscale_method": "latentmodel-ltx-2-spatial-upscaler-x2-1.0.safetensors",
        "refiner_control": 0.4,
    })
    result["workflow"]  # ComfyUI API format
"""

import uuid
from typing import Any, Dict, Mapping, Optional, Union

from .context import GenerationContext
from .default_stages import build_default_registry
from .latent_upscale import LatentUpscaleExtension, wants_latent_upscale
from .mcp_utils import clear_correlation_id, get_logger, log_structured, set_correlation_id
from .model_registry import ModelRegistry
from .params import ParameterSet
from .topology_validator import validate_topology

logger = get_logger("generator")


class VideoWorkflowGenerator:
    """
    Builds workflows from parameter sets.

    The stage registry is assembled and patched once, here; generate() only
    reads it, so one generator can serve concurrent requests.
    """

    def __init__(
        self,
        models: Optional[ModelRegistry] = None,
        extension: Optional[LatentUpscaleExtension] = None,
        activate_extensions: bool = True,
    ):
        self.models = models or ModelRegistry()
        self.registry = build_default_registry()
        self.extension = extension or LatentUpscaleExtension()
        if activate_extensions:
            self.extension.activate(self.registry)

    def build_context(
        self,
        params: Union[ParameterSet, Mapping[str, Any]],
        sections: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> GenerationContext:
        """Run every stage against a fresh context and return it."""
        if not isinstance(params, ParameterSet):
            params = ParameterSet(params, sections)
        ctx = GenerationContext(params, self.models)
        self.registry.run(ctx)
        return ctx

    def generate(
        self,
        params: Union[ParameterSet, Mapping[str, Any]],
        sections: Optional[Mapping[str, Mapping[str, Any]]] = None,
        validate: bool = True,
    ) -> Dict[str, Any]:
        """
        Build the workflow for one request.

        Raises:
            UserConfigError: the request asks for something the selected
                model family cannot do
        """
        if not isinstance(params, ParameterSet):
            params = ParameterSet(params, sections)
        set_correlation_id(str(uuid.uuid4())[:8])
        try:
            ctx = self.build_context(params)
            workflow = ctx.graph.to_workflow()
            result: Dict[str, Any] = {
                "workflow": workflow,
                "node_count": len(workflow),
                "two_stage": wants_latent_upscale(params, self.models),
                "stages": self.registry.describe(),
            }
            if validate:
                result["validation"] = validate_topology(workflow)
                if not result["validation"]["valid"]:
                    logger.warning("generator: built workflow failed validation: %s", result["validation"]["errors"])
            log_structured(
                "info",
                "workflow_built",
                node_count=len(workflow),
                two_stage=result["two_stage"],
            )
            return result
        finally:
            clear_correlation_id()
