"""
Workflow and Tool Input Schemas

Typed shapes for ComfyUI API-format workflows and JSON Schema definitions
for the MCP tool inputs.
"""

from typing import TypedDict, Dict, Any, List, Union
from typing_extensions import Required, NotRequired

# =============================================================================
# Workflow Schema
# =============================================================================

# [node_id, output_index]
NodeRef = List[Union[str, int]]


class WorkflowNode(TypedDict):
    """A single node in a ComfyUI workflow."""

    class_type: Required[str]
    inputs: Required[Dict[str, Any]]
    _meta: NotRequired[Dict[str, Any]]


# Workflow is a dict of node_id -> WorkflowNode
Workflow = Dict[str, WorkflowNode]


WORKFLOW_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "description": "ComfyUI workflow JSON with node definitions",
    "additionalProperties": {
        "type": "object",
        "required": ["class_type", "inputs"],
        "properties": {
            "class_type": {"type": "string", "description": "Node type (e.g., 'KSamplerAdvanced')"},
            "inputs": {
                "type": "object",
                "description": "Node inputs - can be values or links [node_id, slot]",
                "additionalProperties": True,
            },
            "_meta": {"type": "object", "description": "Optional metadata"},
        },
    },
}


# =============================================================================
# Build Parameters Schema
# =============================================================================

BUILD_PARAMS_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "description": "Flat generation parameters for build_video_workflow",
    "properties": {
        "model": {"type": "string", "description": "Base model handle"},
        "prompt": {"type": "string", "description": "Prompt; may contain <extend:FRAMES> segments"},
        "negative_prompt": {"type": "string"},
        "seed": {"type": "integer"},
        "steps": {"type": "integer", "minimum": 1},
        "cfg_scale": {"type": "number"},
        "width": {"type": "integer", "minimum": 16},
        "height": {"type": "integer", "minimum": 16},
        "init_image": {"type": "string", "description": "Input image name for image-to-video"},
        "init_image_creativity": {"type": "number", "minimum": 0, "maximum": 1},
        "video_model": {"type": "string"},
        "video_frames": {"type": "integer", "minimum": 1},
        "video_fps": {"type": "integer", "minimum": 1},
        "video_cfg": {"type": "number"},
        "video_steps": {"type": "integer", "minimum": 1},
        "video_resolution": {
            "type": "string",
            "enum": ["Model Preferred", "Image Aspect, Model Res", "Image"],
        },
        "refiner_method": {"type": "string", "enum": ["PostApply", "StepSwap", "StepSwapNoisy"]},
        "refiner_control": {"type": "number", "minimum": 0, "maximum": 1},
        "refiner_upscale": {"type": "number", "exclusiveMinimum": 0},
        "refiner_upscale_method": {
            "type": "string",
            "description": "None, pixel-<method>, model-<file>, latent-<method> or latentmodel-<file>",
        },
        "refiner_hypertile": {"type": "integer"},
        "video_frame_interpolation_method": {"type": "string", "enum": ["RIFE", "FILM"]},
        "video_frame_interpolation_multiplier": {"type": "integer", "minimum": 1},
        "video_boomerang": {"type": "boolean"},
        "video_extend_model": {"type": "string"},
        "video_extend_frame_overlap": {"type": "integer", "minimum": 1},
        "trim_video_start_frames": {"type": "integer", "minimum": 0},
        "trim_video_end_frames": {"type": "integer", "minimum": 0},
    },
    "additionalProperties": True,
}
