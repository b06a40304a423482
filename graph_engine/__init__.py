"""
Graph Engine

Compiles ordered intent steps into ComfyUI graph documents (the
nodes/edges array format the editor loads) and validates them against the
node type registry.
"""

from .builder import BuildResult, GraphBuilder
from .dispatcher import DispatchOptions, StepDispatcher, canonical_order
from .errors import (
    GraphConstructionError,
    GraphEngineError,
    InvalidHandleError,
    LegacyImportError,
    UnknownInputError,
    UnknownNodeTypeError,
    WireTypeMismatchError,
)
from .graph_types import Graph, GraphEdge, GraphNode, Handle, WorkflowExplanation
from .ids import IdAllocator
from .legacy_import import analyze_graph, import_api_workflow
from .model_defaults import GenerationContext, detect_model_defaults
from .node_factory import NodeFactory
from .node_registry import (
    DEFAULT_REGISTRY,
    NodeTypeDef,
    NodeTypeRegistry,
    find_nodes_by_keyword,
    get_node_catalog,
    get_node_type_def,
)
from .signal_chain import SignalChain
from .steps import parse_steps
from .validator import ValidationResult, validate_graph

__all__ = [
    # Build
    'GraphBuilder',
    'BuildResult',
    'StepDispatcher',
    'DispatchOptions',
    'canonical_order',
    'parse_steps',
    'GenerationContext',
    'detect_model_defaults',

    # Graph pieces
    'Graph',
    'GraphNode',
    'GraphEdge',
    'Handle',
    'WorkflowExplanation',
    'IdAllocator',
    'NodeFactory',
    'SignalChain',

    # Registry
    'DEFAULT_REGISTRY',
    'NodeTypeDef',
    'NodeTypeRegistry',
    'get_node_type_def',
    'get_node_catalog',
    'find_nodes_by_keyword',

    # Validation / import
    'validate_graph',
    'ValidationResult',
    'import_api_workflow',
    'analyze_graph',

    # Errors
    'GraphEngineError',
    'GraphConstructionError',
    'UnknownNodeTypeError',
    'UnknownInputError',
    'InvalidHandleError',
    'WireTypeMismatchError',
    'LegacyImportError',
]
