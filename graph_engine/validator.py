"""
Graph validation.

Checks a serialized graph document against the node type registry. Problems
are collected and returned, never raised, so callers can decide whether to
accept the graph, rebuild a simpler one, or report it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .graph_types import FORMAT_VERSION, Graph
from .node_registry import ANY_TYPE, DEFAULT_REGISTRY, NodeTypeRegistry


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"is_valid": self.is_valid, "errors": list(self.errors)}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_graph(
    document: Union[Graph, Dict[str, Any]],
    registry: Optional[NodeTypeRegistry] = None,
) -> ValidationResult:
    """Validate a graph document (or Graph). Returns (is_valid, errors)."""
    registry = registry or DEFAULT_REGISTRY
    if isinstance(document, Graph):
        document = document.to_dict()
    if not isinstance(document, dict):
        return ValidationResult(False, ["Graph document must be an object"])

    errors: List[str] = []

    version = document.get("version")
    if not _is_int(version) or version != FORMAT_VERSION:
        errors.append(f"Unsupported format version {version!r}, expected {FORMAT_VERSION}")

    state = document.get("state")
    if not isinstance(state, dict):
        errors.append("Missing 'state' section")
        state = {}
    for key in ("lastNodeId", "lastEdgeId"):
        if key in state and not _is_int(state[key]):
            errors.append(f"state.{key} must be an integer")
        elif key not in state and "state" in document:
            errors.append(f"state.{key} is missing")

    nodes = document.get("nodes")
    if not isinstance(nodes, list):
        errors.append("Missing 'nodes' list")
        nodes = []
    elif not nodes:
        errors.append("Graph has no nodes")

    edges = document.get("edges")
    if edges is None:
        edges = []
    elif not isinstance(edges, list):
        errors.append("'edges' must be a list")
        edges = []

    nodes_by_id = _check_nodes(nodes, registry, errors)
    _check_counters(state, nodes_by_id, edges, errors)
    _check_edges(edges, nodes_by_id, errors)
    _check_backfill(nodes_by_id, edges, errors)

    return ValidationResult(is_valid=not errors, errors=errors)


def _slot_entries(node: Dict, key: str, node_id: int, errors: List[str]) -> List[Optional[Dict]]:
    """
    A node's inputs/outputs list; entries that are not objects become None
    so slot indexes keep their positions.
    """
    entries = node.get(key)
    if entries is None:
        return []
    if not isinstance(entries, list):
        errors.append(f"Node {node_id}: '{key}' must be a list")
        return []
    checked = []
    for slot, entry in enumerate(entries):
        if isinstance(entry, dict):
            checked.append(entry)
        else:
            errors.append(f"Node {node_id}: {key}[{slot}] is not an object")
            checked.append(None)
    return checked


def _check_nodes(nodes: List[Any], registry: NodeTypeRegistry, errors: List[str]) -> Dict[int, Dict]:
    nodes_by_id: Dict[int, Dict] = {}
    for index, node in enumerate(nodes):
        if not isinstance(node, dict):
            errors.append(f"Node #{index} is not an object")
            continue
        node_id = node.get("id")
        if not _is_int(node_id) or node_id < 1:
            errors.append(f"Node #{index} has invalid id {node_id!r}")
            continue
        if node_id in nodes_by_id:
            errors.append(f"Duplicate node id {node_id}")
            continue

        inputs = _slot_entries(node, "inputs", node_id, errors)
        outputs = _slot_entries(node, "outputs", node_id, errors)
        nodes_by_id[node_id] = {"node": node, "inputs": inputs, "outputs": outputs}

        node_type = node.get("type")
        node_def = registry.lookup(node_type) if isinstance(node_type, str) else None
        if node_def is None:
            errors.append(f"Node {node_id}: unknown node type {node_type!r}")
            continue

        present = {inp.get("name") for inp in inputs if inp is not None and isinstance(inp.get("name"), str)}
        for name in node_def.required_inputs():
            if name not in present:
                errors.append(f"Node {node_id} ({node_type}): missing required input '{name}'")
    return nodes_by_id


def _check_counters(state: Dict, nodes_by_id: Dict[int, Dict], edges: List[Any], errors: List[str]):
    max_node = max(nodes_by_id, default=0)
    edge_ids = [e.get("id") for e in edges if isinstance(e, dict) and _is_int(e.get("id"))]
    max_edge = max(edge_ids, default=0)

    last_node = state.get("lastNodeId")
    if _is_int(last_node) and last_node != max_node:
        errors.append(f"state.lastNodeId is {last_node}, highest node id is {max_node}")
    last_edge = state.get("lastEdgeId")
    if _is_int(last_edge) and last_edge != max_edge:
        errors.append(f"state.lastEdgeId is {last_edge}, highest edge id is {max_edge}")


def _check_edges(edges: List[Any], nodes_by_id: Dict[int, Dict], errors: List[str]):
    seen = set()
    for index, edge in enumerate(edges):
        if not isinstance(edge, dict):
            errors.append(f"Edge #{index} is not an object")
            continue
        edge_id = edge.get("id")
        if not _is_int(edge_id) or edge_id < 1:
            errors.append(f"Edge #{index} has invalid id {edge_id!r}")
            continue
        if edge_id in seen:
            errors.append(f"Duplicate edge id {edge_id}")
            continue
        seen.add(edge_id)

        origin_id = edge.get("origin_id")
        target_id = edge.get("target_id")
        origin = nodes_by_id.get(origin_id) if _is_int(origin_id) else None
        target = nodes_by_id.get(target_id) if _is_int(target_id) else None
        if origin is None:
            errors.append(f"Edge {edge_id}: origin node {origin_id!r} does not exist")
            continue
        if target is None:
            errors.append(f"Edge {edge_id}: target node {target_id!r} does not exist")
            continue

        origin_type = origin["node"].get("type")
        target_type = target["node"].get("type")
        outputs = origin["outputs"]
        inputs = target["inputs"]
        origin_slot = edge.get("origin_slot")
        target_slot = edge.get("target_slot")
        if not _is_int(origin_slot) or not 0 <= origin_slot < len(outputs):
            errors.append(
                f"Edge {edge_id}: uses output[{origin_slot!r}] of {origin_type!r}, "
                f"but it only has {len(outputs)} outputs"
            )
            continue
        if not _is_int(target_slot) or not 0 <= target_slot < len(inputs):
            errors.append(
                f"Edge {edge_id}: targets input[{target_slot!r}] of {target_type!r}, "
                f"but it only has {len(inputs)} inputs"
            )
            continue

        source_output = outputs[origin_slot]
        target_input = inputs[target_slot]
        if source_output is None or target_input is None:
            # already reported by _slot_entries
            continue

        if target_input.get("link") != edge_id:
            errors.append(
                f"Edge {edge_id}: input '{target_input.get('name')}' of node {target_id} "
                f"is not linked to it"
            )

        source_type = source_output.get("type")
        expected_type = target_input.get("type")
        if (source_type != expected_type
                and ANY_TYPE not in (source_type, expected_type)):
            errors.append(
                f"Edge {edge_id}: input '{target_input.get('name')}' expects {expected_type} "
                f"but receives {source_type} from {origin_type}[{origin_slot}]"
            )


def _check_backfill(nodes_by_id: Dict[int, Dict], edges: List[Any], errors: List[str]):
    expected: Dict[tuple, List[int]] = {}
    for edge in edges:
        if not isinstance(edge, dict):
            continue
        edge_id, origin_id, origin_slot = edge.get("id"), edge.get("origin_id"), edge.get("origin_slot")
        if _is_int(edge_id) and _is_int(origin_id) and _is_int(origin_slot):
            expected.setdefault((origin_id, origin_slot), []).append(edge_id)

    for node_id, entry in nodes_by_id.items():
        for slot, output in enumerate(entry["outputs"]):
            if output is None:
                continue
            links = output.get("links") or []
            if not isinstance(links, list) or not all(_is_int(link) for link in links):
                errors.append(f"Node {node_id}: output[{slot}] links must be a list of edge ids")
                continue
            listed = sorted(links)
            wanted = sorted(expected.get((node_id, slot), []))
            if listed != wanted:
                errors.append(
                    f"Node {node_id}: output[{slot}] lists links {listed}, edges say {wanted}"
                )
