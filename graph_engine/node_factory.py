"""
Node Factory

Creates typed graph nodes for one construction session. Handle-valued
inputs become edges, literal inputs become the node's widget values in the
positional order the ComfyUI frontend decodes them in.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from .errors import (
    InvalidHandleError,
    UnknownInputError,
    UnknownNodeTypeError,
    WireTypeMismatchError,
)
from .graph_types import GraphEdge, GraphNode, Handle, NodeInput, NodeOutput
from .ids import IdAllocator
from .model_defaults import resolve_seed
from .node_registry import (
    ANY_TYPE,
    DEFAULT_REGISTRY,
    NUMERIC_TYPES,
    InputDef,
    NodeTypeDef,
    NodeTypeRegistry,
    OutputDef,
)

logger = logging.getLogger("graph_engine.factory")


# Widget order the frontend decodes positionally. Missing entries are filled
# from registry defaults so every position is present.
POSITIONAL_WIDGET_ORDER = {
    "KSampler": ("seed", "steps", "cfg", "sampler_name", "scheduler", "denoise"),
    "KSamplerAdvanced": (
        "add_noise", "noise_seed", "steps", "cfg", "sampler_name", "scheduler",
        "start_at_step", "end_at_step", "return_with_leftover_noise",
    ),
}

SEED_INPUTS = frozenset({"seed", "noise_seed"})


# ============================================================
# LAYOUT
# ============================================================

# Column anchors per stage: loaders left, output right
NODE_LAYOUT = {
    "CheckpointLoaderSimple": (50, 200),
    "LoraLoader": (50, 400),
    "CLIPSetLastLayer": (50, 600),
    "VAELoader": (50, 750),
    "CLIPTextEncode": (350, 150),
    "ConditioningCombine": (350, 600),
    "ConditioningSetArea": (350, 750),
    "LoadImage": (350, 350),
    "ControlNetLoader": (350, 500),
    "ControlNetApply": (600, 550),
    "ControlNetApplyAdvanced": (600, 400),
    "EmptyLatentImage": (600, 50),
    "VAEEncode": (600, 250),
    "KSampler": (850, 200),
    "KSamplerAdvanced": (850, 550),
    "LatentUpscale": (1200, 450),
    "VAEDecode": (1200, 200),
    "ImageScale": (1450, 150),
    "ImageScaleBy": (1450, 750),
    "ImageUpscaleWithModel": (1450, 300),
    "UpscaleModelLoader": (1450, 450),
    "ImageBlend": (1450, 600),
    "PreviewImage": (1700, 200),
    "SaveImage": (1700, 500),
}

NODE_SIZES = {
    "CheckpointLoaderSimple": (320, 98),
    "CLIPTextEncode": (210, 76),
    "KSampler": (315, 262),
    "KSamplerAdvanced": (315, 334),
    "VAEDecode": (210, 46),
    "VAEEncode": (210, 46),
    "EmptyLatentImage": (210, 106),
    "LoraLoader": (315, 126),
    "PreviewImage": (210, 246),
    "SaveImage": (210, 270),
    "ControlNetLoader": (315, 58),
    "ControlNetApplyAdvanced": (315, 186),
    "LoadImage": (315, 314),
    "ImageScale": (315, 130),
    "ImageUpscaleWithModel": (241, 46),
    "UpscaleModelLoader": (315, 58),
    "ImageBlend": (315, 102),
}

DEFAULT_NODE_SIZE = (200, 100)
STACK_SPACING = 150


def node_position(type_name: str, rank: int, node_id: int) -> Tuple[int, int]:
    """Canvas position from node type and its rank among same-type nodes."""
    anchor = NODE_LAYOUT.get(type_name)
    if anchor:
        return (anchor[0], anchor[1] + rank * STACK_SPACING)
    # Unrecognized types fall back to a grid keyed by node id
    column = (node_id - 1) // 3
    row = (node_id - 1) % 3
    return (200 + column * 300, 100 + row * 200)


def node_size(type_name: str) -> Tuple[int, int]:
    return NODE_SIZES.get(type_name, DEFAULT_NODE_SIZE)


# ============================================================
# LITERAL SANITIZATION
# ============================================================

def sanitize_number(value: Any, input_def: InputDef) -> Any:
    """
    Coerce a numeric literal, replacing None/NaN/inf/garbage with the
    registry default.
    """
    fallback = input_def.default if input_def.default is not None else 0
    if value is None:
        return fallback
    if isinstance(value, bool):
        value = int(value)
    # Integers go through unchanged; float() would round seeds above 2**53
    if input_def.type == "INT" and isinstance(value, int):
        return value
    if input_def.type == "INT" and isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"Non-numeric value {value!r} for '{input_def.name}', using {fallback}")
        return fallback
    if math.isnan(number) or math.isinf(number):
        logger.warning(f"Invalid number {value!r} for '{input_def.name}', using {fallback}")
        return fallback
    if input_def.type == "INT":
        return int(number)
    return number


class NodeFactory:
    """
    Builds nodes and edges for a single graph session.

    The factory owns the session's node and edge lists; it never fills in
    output edge lists, that is done once by the assembler.
    """

    def __init__(
        self,
        allocator: Optional[IdAllocator] = None,
        registry: Optional[NodeTypeRegistry] = None,
        allow_unknown_types: bool = False,
        resolve_seeds: bool = True,
    ):
        self.allocator = allocator or IdAllocator()
        self.registry = registry or DEFAULT_REGISTRY
        self.allow_unknown_types = allow_unknown_types
        self.resolve_seeds = resolve_seeds
        self.nodes: List[GraphNode] = []
        self.edges: List[GraphEdge] = []
        self._by_id: Dict[int, GraphNode] = {}
        self._type_counts: Dict[str, int] = {}

    def create_node(
        self,
        type_name: str,
        inputs: Optional[Dict[str, Any]] = None,
        output_slots: int = 0,
    ) -> GraphNode:
        """
        Create a node of `type_name`.

        Each input value is either a Handle (wired as an edge) or a literal.
        `output_slots` is only used for types missing from the registry when
        unknown types are allowed.
        """
        inputs = dict(inputs or {})
        node_def = self.registry.lookup(type_name)
        if node_def is None and not self.allow_unknown_types:
            raise UnknownNodeTypeError(type_name)

        node_id = self.allocator.next_node_id()

        if node_def is None:
            node_def = self._wildcard_def(type_name, inputs, output_slots)

        for name in inputs:
            if node_def.get_input(name) is None:
                raise UnknownInputError(type_name, name, node_def.input_names())

        positional = POSITIONAL_WIDGET_ORDER.get(type_name)
        node_inputs: List[NodeInput] = []
        pending_edges: List[GraphEdge] = []
        literals: Dict[str, Any] = {}

        for input_def in node_def.inputs:
            name = input_def.name
            if name in inputs:
                value = inputs[name]
            elif positional and name in positional:
                value = input_def.default
            else:
                continue

            if isinstance(value, Handle):
                wire_type = self._check_handle(type_name, input_def, value)
                edge = GraphEdge(
                    id=self.allocator.next_edge_id(),
                    origin_id=value.node_id,
                    origin_slot=value.slot,
                    target_id=node_id,
                    target_slot=len(node_inputs),
                    type=wire_type,
                )
                pending_edges.append(edge)
                node_inputs.append(NodeInput(name=name, type=wire_type, link=edge.id))
            else:
                value = self._prepare_literal(input_def, value)
                literals[name] = value
                node_inputs.append(NodeInput(name=name, type=input_def.type, value=value))

        if positional:
            widgets = [literals[n] for n in positional if n in literals]
        else:
            widgets = list(literals.values())

        rank = self._type_counts.get(type_name, 0)
        node = GraphNode(
            id=node_id,
            type=type_name,
            inputs=node_inputs,
            outputs=[NodeOutput(name=o.name, type=o.type) for o in node_def.outputs],
            widgets_values=widgets,
            pos=node_position(type_name, rank, node_id),
            size=node_size(type_name),
            order=len(self.nodes),
        )

        self._type_counts[type_name] = rank + 1
        self.nodes.append(node)
        self._by_id[node_id] = node
        self.edges.extend(pending_edges)
        logger.debug(f"Created node {node_id} ({type_name}) with {len(pending_edges)} links")
        return node

    def _check_handle(self, type_name: str, input_def: InputDef, handle: Handle) -> str:
        origin = self._by_id.get(handle.node_id)
        if origin is None:
            raise InvalidHandleError(
                f"{type_name}.{input_def.name} references missing node {handle.node_id}"
            )
        if not 0 <= handle.slot < len(origin.outputs):
            raise InvalidHandleError(
                f"{type_name}.{input_def.name} uses output[{handle.slot}] of "
                f"{origin.type}, but it only has {len(origin.outputs)} outputs"
            )
        source_type = origin.outputs[handle.slot].type
        if input_def.type == ANY_TYPE:
            return source_type
        if source_type != ANY_TYPE and source_type != input_def.type:
            raise WireTypeMismatchError(
                f"{type_name}.{input_def.name} expects {input_def.type} "
                f"but receives {source_type} from {origin.type}[{handle.slot}]"
            )
        return input_def.type

    def _prepare_literal(self, input_def: InputDef, value: Any) -> Any:
        if input_def.type in NUMERIC_TYPES:
            value = sanitize_number(value, input_def)
            if self.resolve_seeds and input_def.name in SEED_INPUTS:
                value = resolve_seed(value)
            return value
        if value is None and input_def.default is not None:
            return input_def.default
        return value

    @staticmethod
    def _wildcard_def(type_name: str, inputs: Dict[str, Any], output_slots: int) -> NodeTypeDef:
        """Permissive definition for a type the registry does not know."""
        return NodeTypeDef(
            name=type_name,
            category="unknown",
            inputs=tuple(InputDef(name=n, type=ANY_TYPE, required=False) for n in inputs),
            outputs=tuple(OutputDef(name=f"output_{i}", type=ANY_TYPE) for i in range(output_slots)),
        )
