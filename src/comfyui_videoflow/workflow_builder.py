"""
Workflow Builder Module

Human-readable views of a built workflow, for agents and the CLI.
"""

from collections import Counter
from typing import Any, Dict

from .graph import is_reference
from .topology_validator import OUTPUT_NODES


def explain_workflow(workflow: Dict[str, Any]) -> str:
    """
    Generate natural language description of a workflow.

    Nodes are listed in construction order with each input either as a link
    to its source node or as its literal value.

    Args:
        workflow: Workflow JSON to explain

    Returns:
        Human-readable description of the workflow
    """
    lines = []

    nodes = {node_id: node for node_id, node in workflow.items() if isinstance(node, dict) and "class_type" in node}
    counts = Counter(node["class_type"] for node in nodes.values())
    outputs = [node_id for node_id, node in nodes.items() if node["class_type"] in OUTPUT_NODES]

    lines.append("## Summary")
    lines.append(f"Total nodes: {len(nodes)}")
    lines.append(f"Samplers: {counts.get('SwarmKSampler', 0)}")
    lines.append(f"Outputs: {', '.join(outputs) if outputs else 'none'}")
    if counts.get("LTXVLatentUpsampler"):
        lines.append("Two-stage: base pass + latent upscale refine")
    lines.append("")

    lines.append("## Node Chain")
    lines.append("")
    for node_id, node in nodes.items():
        class_type = node["class_type"]
        title = node.get("_meta", {}).get("title", class_type)
        lines.append(f"**Node {node_id}: {title}** ({class_type})")
        for input_name, input_value in node.get("inputs", {}).items():
            if is_reference(input_value):
                lines.append(f"  - {input_name}: ← Node {input_value[0]} (slot {input_value[1]})")
            else:
                lines.append(f"  - {input_name}: {input_value}")
        lines.append("")

    return "\n".join(lines)
