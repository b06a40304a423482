"""
Data structures for the array/edge-list graph document.

Nodes and edges are plain dataclasses; to_dict() produces the JSON shape
the ComfyUI frontend loads.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

FORMAT_VERSION = 1


@dataclass(frozen=True)
class Handle:
    """Reference to one output slot of one node."""
    node_id: int
    slot: int = 0

    def as_list(self) -> List[int]:
        return [self.node_id, self.slot]


@dataclass
class NodeInput:
    name: str
    type: str
    value: Any = None
    link: Optional[int] = None  # edge id when wired, None for literals

    @property
    def is_link(self) -> bool:
        return self.link is not None

    def to_dict(self) -> Dict[str, Any]:
        data = {"name": self.name, "type": self.type, "link": self.link}
        if not self.is_link:
            data["widget"] = {"name": self.name}
        return data


@dataclass
class NodeOutput:
    name: str
    type: str
    links: List[int] = field(default_factory=list)

    def to_dict(self, slot_index: int) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "links": list(self.links),
            "slot_index": slot_index,
        }


@dataclass
class GraphNode:
    id: int
    type: str
    inputs: List[NodeInput] = field(default_factory=list)
    outputs: List[NodeOutput] = field(default_factory=list)
    widgets_values: List[Any] = field(default_factory=list)
    pos: Tuple[int, int] = (0, 0)
    size: Tuple[int, int] = (200, 100)
    order: int = 0
    mode: int = 0

    def handle(self, slot: int = 0) -> Handle:
        return Handle(self.id, slot)

    def get_input(self, name: str) -> Optional[NodeInput]:
        for inp in self.inputs:
            if inp.name == name:
                return inp
        return None

    def literal(self, name: str, default: Any = None) -> Any:
        inp = self.get_input(name)
        if inp is None or inp.is_link:
            return default
        return inp.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "pos": list(self.pos),
            "size": list(self.size),
            "flags": {},
            "order": self.order,
            "mode": self.mode,
            "inputs": [inp.to_dict() for inp in self.inputs],
            "outputs": [out.to_dict(i) for i, out in enumerate(self.outputs)],
            "properties": {"Node name for S&R": self.type},
            "widgets_values": list(self.widgets_values),
        }


@dataclass
class GraphEdge:
    id: int
    origin_id: int
    origin_slot: int
    target_id: int
    target_slot: int
    type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "origin_id": self.origin_id,
            "origin_slot": self.origin_slot,
            "target_id": self.target_id,
            "target_slot": self.target_slot,
            "type": self.type,
        }


@dataclass
class Graph:
    """An assembled graph; counters mirror the allocator at assembly time."""
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)
    last_node_id: int = 0
    last_edge_id: int = 0
    version: int = FORMAT_VERSION

    def get_node(self, node_id: int) -> Optional[GraphNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def nodes_of_type(self, type_name: str) -> List[GraphNode]:
        return [n for n in self.nodes if n.type == type_name]

    def source_of(self, node_id: int, input_name: str) -> Optional[Handle]:
        """Handle feeding a named input of a node, if it is wired."""
        node = self.get_node(node_id)
        if node is None:
            return None
        inp = node.get_input(input_name)
        if inp is None or not inp.is_link:
            return None
        for edge in self.edges:
            if edge.id == inp.link:
                return Handle(edge.origin_id, edge.origin_slot)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "state": {
                "lastNodeId": self.last_node_id,
                "lastEdgeId": self.last_edge_id,
            },
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "groups": [],
            "config": {},
            "extra": {},
        }


@dataclass
class ExplanationStep:
    step: int
    description: str
    node_type: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "description": self.description,
            "nodeType": self.node_type,
            "parameters": dict(self.parameters),
        }


@dataclass
class WorkflowExplanation:
    title: str
    steps: List[ExplanationStep] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "steps": [s.to_dict() for s in self.steps],
            "summary": self.summary,
        }
