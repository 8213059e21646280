"""ComfyUI VideoFlow MCP Server - Main entry point."""

import json
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from . import topology_validator
from . import workflow_builder
from .errors import UserConfigError
from .generator import VideoWorkflowGenerator
from .mcp_utils import mcp_error, mcp_tool_wrapper, validation_error
from .model_registry import FAMILY_SPECS
from .schemas import BUILD_PARAMS_SCHEMA, WORKFLOW_SCHEMA

# Initialize MCP server
mcp = FastMCP(
    "comfyui-videoflow",
    instructions="Builds ComfyUI video workflows, including two-stage LTXV2 latent upscaling",
)

# One generator per process: the stage registry is patched exactly once
_generator = VideoWorkflowGenerator()


def _to_mcp_response(result: dict) -> dict:
    """Convert result to MCP format with isError flag."""
    if isinstance(result, dict) and "error" in result and "isError" not in result:
        return {
            **result,
            "isError": True,
            "code": result.get("code", "TOOL_ERROR"),
        }
    return result


# =============================================================================
# Workflow Tools (3)
# =============================================================================


@mcp.tool()
@mcp_tool_wrapper
def build_video_workflow(
    params: Dict[str, Any],
    sections: Optional[Dict[str, Dict[str, Any]]] = None,
    validate: bool = True,
) -> dict:
    """Build a ComfyUI workflow from generation parameters. sections: per-section overrides (refiner, video, extend-N)."""
    if not isinstance(params, dict):
        return validation_error("params must be an object", "params")
    try:
        return _generator.generate(params, sections, validate)
    except UserConfigError as e:
        return e.to_dict()


@mcp.tool()
@mcp_tool_wrapper
def validate_workflow(workflow: Dict[str, Any]) -> dict:
    """Check a workflow for forward, dangling and out-of-range references."""
    return _to_mcp_response(topology_validator.validate_topology(workflow))


@mcp.tool()
@mcp_tool_wrapper
def explain_workflow(workflow: Dict[str, Any]) -> dict:
    """Describe a workflow node by node."""
    if not isinstance(workflow, dict) or not workflow:
        return mcp_error("workflow must be a non-empty object", "VALIDATION_ERROR")
    return {"explanation": workflow_builder.explain_workflow(workflow)}


# =============================================================================
# Discovery Tools (2)
# =============================================================================


@mcp.tool()
@mcp_tool_wrapper
def list_pipeline_stages() -> dict:
    """List pipeline stages in run order with their priorities."""
    return {
        "stages": _generator.registry.describe(),
        "extensions": {_generator.extension.name: _generator.extension.activated},
    }


@mcp.tool()
@mcp_tool_wrapper
def list_models() -> dict:
    """List known models with compat class and preferred resolution."""
    return {"models": _generator.models.list_models()}


@mcp.resource(
    "videoflow://families",
    name="Model Families",
    description="Per-family node chains and sampling defaults",
    mime_type="application/json",
)
def resource_families() -> str:
    """Model family table."""
    return json.dumps({compat: spec.to_dict() for compat, spec in FAMILY_SPECS.items()}, indent=2)


@mcp.resource(
    "videoflow://schemas/build-params",
    name="Build Parameters Schema",
    description="JSON Schema of the build_video_workflow params argument",
    mime_type="application/json",
)
def resource_build_params_schema() -> str:
    return json.dumps(BUILD_PARAMS_SCHEMA, indent=2)


@mcp.resource(
    "videoflow://schemas/workflow",
    name="Workflow Schema",
    description="JSON Schema of a ComfyUI API-format workflow",
    mime_type="application/json",
)
def resource_workflow_schema() -> str:
    return json.dumps(WORKFLOW_SCHEMA, indent=2)


def main():
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
