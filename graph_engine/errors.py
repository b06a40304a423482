"""
Exception hierarchy for graph construction.

Construction errors indicate a dispatcher or registry bug and abort the
build. Content problems found after the fact are reported by the validator
as a list and never raised.
"""


class GraphEngineError(Exception):
    """Base class for all graph engine errors."""


class GraphConstructionError(GraphEngineError):
    """Raised when a node cannot be built from its inputs."""


class UnknownNodeTypeError(GraphConstructionError):
    """Raised when a node type is not in the registry."""

    def __init__(self, node_type: str):
        self.node_type = node_type
        super().__init__(f"Unknown node type: {node_type}")


class UnknownInputError(GraphConstructionError):
    """Raised when a node is given an input its type does not declare."""

    def __init__(self, node_type: str, input_name: str, declared=None):
        self.node_type = node_type
        self.input_name = input_name
        self.declared = list(declared or [])
        super().__init__(
            f"Node type '{node_type}' has no input '{input_name}'. "
            f"Declared: {self.declared}"
        )


class InvalidHandleError(GraphConstructionError):
    """Raised when a handle points at a node or output slot that does not exist."""


class WireTypeMismatchError(GraphConstructionError):
    """Raised when a handle's output type does not match the input's wire type."""


class LegacyImportError(GraphEngineError, ValueError):
    """Raised when an API-format workflow map cannot be converted."""
