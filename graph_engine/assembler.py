"""
Graph assembly: output back-fill and the final document.
"""

import logging
from typing import List, Optional

from .graph_types import Graph, GraphEdge, GraphNode
from .ids import IdAllocator

logger = logging.getLogger("graph_engine.assembler")


def backfill_output_links(nodes: List[GraphNode], edges: List[GraphEdge]):
    """
    Rebuild every output slot's edge list from the edge list.

    Existing lists are cleared first, so running this twice gives the same
    result.
    """
    by_id = {node.id: node for node in nodes}
    for node in nodes:
        for output in node.outputs:
            output.links = []

    for edge in edges:
        origin = by_id.get(edge.origin_id)
        if origin is None or not 0 <= edge.origin_slot < len(origin.outputs):
            logger.warning(f"Edge {edge.id} has no origin slot {edge.origin_id}[{edge.origin_slot}]")
            continue
        origin.outputs[edge.origin_slot].links.append(edge.id)


def assemble_graph(
    nodes: List[GraphNode],
    edges: List[GraphEdge],
    allocator: Optional[IdAllocator] = None,
) -> Graph:
    """
    Collect nodes and edges into a Graph.

    Counters are the highest ids present (0 when empty). They match the
    allocator unless the last allocation belonged to a discarded node.
    """
    backfill_output_links(nodes, edges)
    last_node_id = max((n.id for n in nodes), default=0)
    last_edge_id = max((e.id for e in edges), default=0)

    if allocator is not None and allocator.last_node_id != last_node_id:
        logger.debug(
            f"Allocator issued node id {allocator.last_node_id}, "
            f"highest node in graph is {last_node_id}"
        )

    return Graph(
        nodes=list(nodes),
        edges=list(edges),
        last_node_id=last_node_id,
        last_edge_id=last_edge_id,
    )
