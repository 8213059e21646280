"""
Node Graph

ComfyUI API-format workflow under construction. Records insertion order so
that references can be checked against it, and owns the dynamic node-id
counter for one build.
"""

import copy
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .mcp_utils import get_logger
from .schemas import NodeRef, Workflow

logger = get_logger("graph")

# Dynamic ids start far above the short fixed ids ("4", "9", "23", ...)
DYNAMIC_ID_BASE = 50000


def node_path(node_id: str, index: int = 0) -> NodeRef:
    """Reference to the index-th output of a node."""
    return [str(node_id), index]


def is_reference(value: Any) -> bool:
    """True for a [node_id, output_index] link."""
    return (
        isinstance(value, list)
        and len(value) == 2
        and isinstance(value[0], str)
        and isinstance(value[1], int)
        and not isinstance(value[1], bool)
    )


def iter_references(inputs: Dict[str, Any]) -> Iterator[Tuple[str, NodeRef]]:
    """Yield (input_name, reference) for every linked input."""
    for name, value in inputs.items():
        if is_reference(value):
            yield name, value


class NodeGraph:
    """Mapping of node id to {"class_type", "inputs"} with construction order."""

    def __init__(self, dynamic_id_base: int = DYNAMIC_ID_BASE):
        self._nodes: Dict[str, Dict[str, Any]] = {}
        self._order: List[str] = []
        self._next_id = dynamic_id_base

    def _allocate_id(self) -> str:
        while str(self._next_id) in self._nodes:
            self._next_id += 1
        node_id = str(self._next_id)
        self._next_id += 1
        return node_id

    def create_node(self, class_type: str, inputs: Dict[str, Any], node_id: Optional[str] = None) -> str:
        """Insert a node and return its id. Omitted ids come from the dynamic counter."""
        if node_id is None:
            node_id = self._allocate_id()
        node_id = str(node_id)
        if node_id in self._nodes:
            logger.warning(
                "graph: node %s (%s) replaced by %s", node_id, self._nodes[node_id]["class_type"], class_type
            )
            self._order.remove(node_id)
        self._nodes[node_id] = {"class_type": class_type, "inputs": dict(inputs)}
        self._order.append(node_id)
        return node_id

    def remove_node(self, node_id: str) -> bool:
        node_id = str(node_id)
        if node_id not in self._nodes:
            logger.warning("graph: cannot remove missing node %s", node_id)
            return False
        del self._nodes[node_id]
        self._order.remove(node_id)
        return True

    def get(self, node_id: str) -> Optional[Dict[str, Any]]:
        return self._nodes.get(str(node_id))

    def __contains__(self, node_id: object) -> bool:
        return str(node_id) in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def order(self) -> List[str]:
        """Node ids in construction order."""
        return list(self._order)

    def nodes_of_type(self, class_type: str) -> List[str]:
        return [node_id for node_id in self._order if self._nodes[node_id]["class_type"] == class_type]

    def count(self, class_type: str) -> int:
        return len(self.nodes_of_type(class_type))

    def to_workflow(self) -> Workflow:
        """Deep copy in ComfyUI API format, keyed in construction order."""
        return {node_id: copy.deepcopy(self._nodes[node_id]) for node_id in self._order}
