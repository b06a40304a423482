"""
Identifier allocation for one graph construction session.
"""


class IdAllocator:
    """
    Issues strictly increasing node and edge ids, both starting at 1.

    Ids are never handed out twice within a session, including ids consumed
    by a node construction that later failed.
    """

    def __init__(self):
        self._last_node_id = 0
        self._last_edge_id = 0

    def next_node_id(self) -> int:
        self._last_node_id += 1
        return self._last_node_id

    def next_edge_id(self) -> int:
        self._last_edge_id += 1
        return self._last_edge_id

    @property
    def last_node_id(self) -> int:
        return self._last_node_id

    @property
    def last_edge_id(self) -> int:
        return self._last_edge_id

    def reset(self):
        self._last_node_id = 0
        self._last_edge_id = 0
