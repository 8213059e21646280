"""
Workflow Topology Validator

Structural checks of a built workflow before it is handed to an executor:
every reference points at a node inserted earlier, no reference dangles, and
output slots exist on the referenced node type.

Key order of the workflow mapping is taken as construction order.
"""

import json
from typing import Any, Dict, List

from .graph import iter_references

# Node output types - maps node class to their output slot types
NODE_OUTPUT_TYPES = {
    # Loaders
    "CheckpointLoaderSimple": ["MODEL", "CLIP", "VAE"],
    "VAELoader": ["VAE"],
    "LTXVAudioVAELoader": ["VAE"],
    "UpscaleModelLoader": ["UPSCALE_MODEL"],
    "LatentUpscaleModelLoader": ["LATENT_UPSCALE_MODEL"],
    "LoadImage": ["IMAGE", "MASK"],
    # Conditioning
    "CLIPTextEncode": ["CONDITIONING"],
    "LTXVConditioning": ["CONDITIONING", "CONDITIONING"],
    "LTXVCropGuides": ["CONDITIONING", "CONDITIONING", "LATENT"],
    "LTXVImgToVideo": ["CONDITIONING", "CONDITIONING", "LATENT"],
    "HunyuanImageToVideo": ["CONDITIONING", "LATENT"],
    "HunyuanVideo15ImageToVideo": ["CONDITIONING", "CONDITIONING", "LATENT"],
    "WanImageToVideo": ["CONDITIONING", "CONDITIONING", "LATENT"],
    # Latents
    "EmptyLatentImage": ["LATENT"],
    "EmptyLTXVLatentVideo": ["LATENT"],
    "EmptyHunyuanLatentVideo": ["LATENT"],
    "LTXVEmptyLatentAudio": ["LATENT"],
    "VAEEncode": ["LATENT"],
    "LatentUpscaleBy": ["LATENT"],
    "LTXVLatentUpsampler": ["LATENT"],
    "HunyuanVideo15LatentUpscaleWithModel": ["LATENT"],
    "LTXVImgToVideoInplace": ["LATENT"],
    "LTXVSeparateAVLatent": ["LATENT", "LATENT"],
    "LTXVConcatAVLatent": ["LATENT"],
    # Sampling
    "SwarmKSampler": ["LATENT"],
    "KSamplerAdvanced": ["LATENT"],
    "HyperTile": ["MODEL"],
    # Images
    "VAEDecode": ["IMAGE"],
    "LTXVAudioVAEDecode": ["AUDIO"],
    "ImageScale": ["IMAGE"],
    "ImageScaleBy": ["IMAGE"],
    "ImageUpscaleWithModel": ["IMAGE"],
    "LTXVPreprocess": ["IMAGE"],
    "ImageFromBatch": ["IMAGE"],
    "ImageBatch": ["IMAGE"],
    "SwarmTrimFrames": ["IMAGE"],
    "SwarmVideoBoomerang": ["IMAGE"],
    "RIFE VFI": ["IMAGE"],
    "FILM VFI": ["IMAGE"],
    # Integers
    "SwarmImageWidth": ["INT"],
    "SwarmImageHeight": ["INT"],
    "SwarmCountFrames": ["INT"],
    "SwarmIntAdd": ["INT"],
    # Outputs
    "SwarmSaveImageWS": [],
    "SwarmSaveAnimationWS": [],
}

OUTPUT_NODES = {"SwarmSaveImageWS", "SwarmSaveAnimationWS"}


def validate_references(workflow: Dict[str, Any]) -> List[str]:
    """
    Check every [node_id, slot] input of the workflow.

    Returns:
        List of error messages (empty if all references are valid)
    """
    errors = []
    seen = set()

    for node_id, node_data in workflow.items():
        if not isinstance(node_data, dict) or "class_type" not in node_data:
            errors.append(f"Node {node_id}: missing class_type")
            seen.add(str(node_id))
            continue

        for input_name, (source_id, slot) in iter_references(node_data.get("inputs", {})):
            source = workflow.get(source_id)
            if source is None:
                errors.append(f"Node {node_id}: Input '{input_name}' references non-existent node {source_id}")
                continue
            if source_id not in seen:
                errors.append(f"Node {node_id}: Input '{input_name}' references node {source_id} before it is created")
                continue
            output_types = NODE_OUTPUT_TYPES.get(source.get("class_type"))
            if output_types is not None and not 0 <= slot < len(output_types):
                errors.append(
                    f"Node {node_id}: Input '{input_name}' references slot {slot} of {source['class_type']}, "
                    f"but it only has {len(output_types)} outputs"
                )
        seen.add(str(node_id))

    return errors


def validate_topology(workflow_json: Any) -> Dict[str, Any]:
    """
    Validate a workflow given as a dict or JSON string.

    Returns:
        {
            "valid": True/False,
            "errors": [...],
            "warnings": [...],
            "output_nodes": [...],
            "node_count": N
        }
    """
    try:
        workflow = json.loads(workflow_json) if isinstance(workflow_json, str) else workflow_json
    except json.JSONDecodeError as e:
        return {"valid": False, "errors": [f"Invalid JSON: {e}"], "warnings": [], "output_nodes": [], "node_count": 0}
    if not isinstance(workflow, dict):
        return {
            "valid": False,
            "errors": ["Workflow must be an object of node_id -> node"],
            "warnings": [],
            "output_nodes": [],
            "node_count": 0,
        }

    errors = validate_references(workflow)
    warnings = []

    output_nodes = [
        node_id
        for node_id, node in workflow.items()
        if isinstance(node, dict) and node.get("class_type") in OUTPUT_NODES
    ]
    if not output_nodes:
        warnings.append("Workflow has no save node; nothing will be written")

    unknown = sorted(
        {
            node.get("class_type")
            for node in workflow.values()
            if isinstance(node, dict) and node.get("class_type") not in NODE_OUTPUT_TYPES
        }
        - {None}
    )
    if unknown:
        warnings.append(f"Unknown node types (slots not checked): {', '.join(unknown)}")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "output_nodes": output_nodes,
        "node_count": len(workflow),
    }
