"""
Legacy API-format import and graph analysis.

The API format is the id-keyed map ComfyUI's /prompt endpoint takes:

    {"3": {"class_type": "KSampler",
           "inputs": {"seed": 5, "model": ["4", 0], ...}}}

import_api_workflow() converts it into the array/edge-list document with
fresh ids. analyze_graph() summarises any array document.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Union

import networkx as nx

from .assembler import assemble_graph
from .errors import GraphConstructionError, LegacyImportError
from .graph_types import Graph, Handle
from .ids import IdAllocator
from .node_factory import POSITIONAL_WIDGET_ORDER, NodeFactory
from .node_registry import DEFAULT_REGISTRY, NodeTypeRegistry

logger = logging.getLogger("graph_engine.legacy_import")


def _is_reference(value: Any) -> bool:
    return (
        isinstance(value, list)
        and len(value) == 2
        and isinstance(value[0], (str, int))
        and not isinstance(value[0], bool)
        and isinstance(value[1], int)
        and not isinstance(value[1], bool)
    )


def _sort_key(node_key: str):
    return (0, int(node_key)) if node_key.isdigit() else (1, node_key)


# Highest output slot a reference may use; wildcard nodes get one output per slot
MAX_OUTPUT_SLOT = 63


def _reference_graph(prompt_map: Dict[str, Dict]) -> nx.DiGraph:
    """Dependency graph with an edge source -> consumer for every reference."""
    graph = nx.DiGraph()
    graph.add_nodes_from(prompt_map)
    for key, entry in prompt_map.items():
        for input_name, value in entry["inputs"].items():
            if not _is_reference(value):
                continue
            source = str(value[0])
            if source not in prompt_map:
                raise LegacyImportError(
                    f"Node {key} input '{input_name}' references missing node {source}"
                )
            if not 0 <= value[1] <= MAX_OUTPUT_SLOT:
                raise LegacyImportError(
                    f"Node {key} input '{input_name}' uses output slot {value[1]} of node {source}, "
                    f"slots must be between 0 and {MAX_OUTPUT_SLOT}"
                )
            graph.add_edge(source, key)
    return graph


def _topological_order(prompt_map: Dict[str, Dict]) -> List[str]:
    """Dependency order; ties are broken by numeric node key."""
    graph = _reference_graph(prompt_map)
    try:
        return list(nx.lexicographical_topological_sort(graph, key=_sort_key))
    except nx.NetworkXUnfeasible as e:
        cycle = [source for source, _ in nx.find_cycle(graph)]
        raise LegacyImportError(f"Cycle between nodes {cycle}") from e


def _normalize_map(prompt_map: Any) -> Dict[str, Dict]:
    if isinstance(prompt_map, dict) and isinstance(prompt_map.get("prompt"), dict):
        prompt_map = prompt_map["prompt"]
    if not isinstance(prompt_map, dict) or not prompt_map:
        raise LegacyImportError("API workflow must be a non-empty object keyed by node id")

    normalized = {}
    for key, entry in prompt_map.items():
        if not isinstance(entry, dict) or not isinstance(entry.get("class_type"), str):
            raise LegacyImportError(f"Node {key} is missing 'class_type'")
        inputs = entry.get("inputs") or {}
        if not isinstance(inputs, dict):
            raise LegacyImportError(f"Node {key} 'inputs' must be an object")
        normalized[str(key)] = {"class_type": entry["class_type"], "inputs": inputs}
    return normalized


def import_api_workflow(
    prompt_map: Dict[str, Any],
    registry: Optional[NodeTypeRegistry] = None,
) -> Graph:
    """
    Convert an API-format map into a Graph.

    Unknown class types are kept with wildcard slots so validation can
    report them; inputs a known type does not declare are dropped.
    Raises LegacyImportError for cycles, dangling references, or wiring
    the registry rejects.
    """
    registry = registry or DEFAULT_REGISTRY
    nodes_map = _normalize_map(prompt_map)
    order = _topological_order(nodes_map)

    # Unknown types need enough output slots for every reference into them
    output_slots: Dict[str, int] = {}
    for entry in nodes_map.values():
        for value in entry["inputs"].values():
            if _is_reference(value):
                source = str(value[0])
                output_slots[source] = max(output_slots.get(source, 0), value[1] + 1)

    allocator = IdAllocator()
    factory = NodeFactory(
        allocator=allocator,
        registry=registry,
        allow_unknown_types=True,
        resolve_seeds=False,
    )
    new_ids: Dict[str, int] = {}

    for key in order:
        entry = nodes_map[key]
        class_type = entry["class_type"]
        node_def = registry.lookup(class_type)
        inputs = {}
        for name, value in entry["inputs"].items():
            if node_def is not None and node_def.get_input(name) is None:
                logger.warning(f"Dropping undeclared input '{name}' on node {key} ({class_type})")
                continue
            if _is_reference(value):
                value = Handle(new_ids[str(value[0])], value[1])
            inputs[name] = value

        try:
            node = factory.create_node(class_type, inputs, output_slots=output_slots.get(key, 0))
        except GraphConstructionError as e:
            raise LegacyImportError(f"Node {key} ({class_type}): {e}") from e
        new_ids[key] = node.id

    graph = assemble_graph(factory.nodes, factory.edges, allocator)
    logger.info(f"Imported API workflow: {len(graph.nodes)} nodes, {len(graph.edges)} edges")
    return graph


# ============================================================
# ANALYSIS
# ============================================================

KEY_NODE_TYPES = (
    "KSampler", "KSamplerAdvanced", "CheckpointLoaderSimple", "LoraLoader",
    "ControlNetLoader", "VAEDecode", "VAEEncode", "UpscaleModelLoader",
    "ImageUpscaleWithModel", "CLIPTextEncode",
)

TECHNIQUE_MARKERS = (
    ("ControlNet", "ControlNet"),
    ("Upscale", "Upscaling"),
    ("Lora", "LoRA"),
    ("VAE", "VAE"),
    ("Blend", "Blending"),
    ("Mask", "Masking"),
    ("Conditioning", "Conditioning"),
)

# First match wins
CATEGORY_MARKERS = (
    ("ControlNet", "ControlNet"),
    ("Upscale", "Upscaling"),
    ("Lora", "LoRA"),
    ("Blend", "Blending"),
)


def _node_type(node: Dict[str, Any]) -> str:
    node_type = node.get("type")
    return node_type if isinstance(node_type, str) else ""


def _widget_map(node: Dict[str, Any]) -> Dict[str, Any]:
    """Widget values keyed by input name."""
    names = POSITIONAL_WIDGET_ORDER.get(_node_type(node))
    if names is None:
        inputs = node.get("inputs")
        inputs = inputs if isinstance(inputs, list) else []
        names = [inp["name"] for inp in inputs
                 if isinstance(inp, dict) and "widget" in inp and isinstance(inp.get("name"), str)]
    values = node.get("widgets_values")
    return dict(zip(names, values if isinstance(values, list) else []))


def complexity_of(node_count: int, edge_count: int) -> str:
    if node_count <= 8 and edge_count <= 10:
        return "simple"
    if node_count <= 16 and edge_count <= 25:
        return "medium"
    return "complex"


def analyze_graph(document: Union[Graph, Dict[str, Any]]) -> Dict[str, Any]:
    """Summarise node types, model selection and sampling parameters."""
    if isinstance(document, Graph):
        document = document.to_dict()
    nodes = document.get("nodes")
    nodes = [n for n in nodes if isinstance(n, dict)] if isinstance(nodes, list) else []
    edges = document.get("edges")
    edges = edges if isinstance(edges, list) else []

    types = Counter(_node_type(n) for n in nodes)
    parameters = {"models": [], "loras": [], "samplers": [], "steps": [], "cfg": [], "resolutions": []}

    for node in nodes:
        node_type = _node_type(node)
        widgets = _widget_map(node)
        if node_type == "CheckpointLoaderSimple" and widgets.get("ckpt_name"):
            parameters["models"].append(widgets["ckpt_name"])
        elif node_type == "LoraLoader" and widgets.get("lora_name"):
            parameters["loras"].append(widgets["lora_name"])
        elif node_type in ("KSampler", "KSamplerAdvanced"):
            if widgets.get("sampler_name"):
                parameters["samplers"].append(widgets["sampler_name"])
            if widgets.get("steps"):
                parameters["steps"].append(widgets["steps"])
            if widgets.get("cfg"):
                parameters["cfg"].append(widgets["cfg"])
        elif node_type == "EmptyLatentImage" and "width" in widgets and "height" in widgets:
            parameters["resolutions"].append(f"{widgets['width']}x{widgets['height']}")

    techniques = []
    for marker, technique in TECHNIQUE_MARKERS:
        if any(marker in t for t in types) and technique not in techniques:
            techniques.append(technique)

    category = "Generation"
    for marker, name in CATEGORY_MARKERS:
        if any(marker in t for t in types):
            category = name
            break

    return {
        "nodes": {
            "total": len(nodes),
            "types": dict(types),
            "key_nodes": [t for t in map(_node_type, nodes) if t in KEY_NODE_TYPES],
        },
        "parameters": parameters,
        "techniques": techniques,
        "complexity": complexity_of(len(nodes), len(edges)),
        "category": category,
    }
