"""
Interfaces of the collaborators around the graph engine.

Step extraction and model recommendation live outside this package; the
builder only needs objects with these shapes.
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple


class StepResolver(Protocol):
    """Turns a free-text description into ordered `{action, parameters}` steps."""

    def resolve_steps(self, description: str) -> List[Dict[str, Any]]:
        ...


class ModelRecommender(Protocol):
    """Picks a checkpoint and LoRAs for a set of prompt keywords."""

    def select_model(self, keywords: Sequence[str], style: Optional[str] = None) -> Optional[str]:
        ...

    def select_loras(self, keywords: Sequence[str], style: Optional[str] = None) -> List[Tuple[str, float]]:
        ...
