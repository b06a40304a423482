"""
Signal chain: the handles that are "currently active" while steps are
walked. Dispatcher cases read the handles they need and write back the ones
they redefine.
"""

from dataclasses import dataclass, fields
from typing import Dict, List, Optional

from .graph_types import Handle

SLOTS = ("model", "text_encoder", "positive", "negative", "vae", "latent", "image")


@dataclass
class SignalChain:
    model: Optional[Handle] = None
    text_encoder: Optional[Handle] = None
    positive: Optional[Handle] = None
    negative: Optional[Handle] = None
    vae: Optional[Handle] = None
    latent: Optional[Handle] = None
    image: Optional[Handle] = None

    def get(self, slot: str) -> Optional[Handle]:
        if slot not in SLOTS:
            raise KeyError(f"Unknown signal slot: {slot}")
        return getattr(self, slot)

    def set(self, slot: str, handle: Optional[Handle]):
        if slot not in SLOTS:
            raise KeyError(f"Unknown signal slot: {slot}")
        setattr(self, slot, handle)

    def is_set(self, slot: str) -> bool:
        return self.get(slot) is not None

    def unset_slots(self) -> List[str]:
        return [s for s in SLOTS if self.get(s) is None]

    def reset(self):
        for f in fields(self):
            setattr(self, f.name, None)

    def snapshot(self) -> Dict[str, Optional[List[int]]]:
        """Plain-dict view for logs and debugging."""
        snapshot = {}
        for slot in SLOTS:
            handle = self.get(slot)
            snapshot[slot] = handle.as_list() if handle is not None else None
        return snapshot
