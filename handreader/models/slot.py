from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

PRIMARY_SLOTS = (0, 1, 2, 3)
PREVIEW_SLOT = 4
ALL_SLOTS = PRIMARY_SLOTS + (PREVIEW_SLOT,)


@dataclass(frozen=True)
class SlotRegion:
    """Slot rectangle expressed as fractions of the frame size."""
    x: float
    y: float
    width: float
    height: float

    def to_pixels(self, frame_width: int, frame_height: int) -> tuple[int, int, int, int]:
        """Scale to the actual frame resolution (not a fixed display size)."""
        return (
            int(round(self.x * frame_width)),
            int(round(self.y * frame_height)),
            int(round(self.width * frame_width)),
            int(round(self.height * frame_height)),
        )

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict) -> SlotRegion:
        return cls(
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            width=float(data.get("width", 0.0)),
            height=float(data.get("height", 0.0)),
        )


@dataclass(frozen=True)
class Template:
    """Calibrated reference features for one label.

    The alt variant models the darkened/desaturated on-screen rendering.
    Legacy records may lack the alt fingerprint and both histograms.
    """
    label: str
    fingerprint: np.ndarray
    alt_fingerprint: Optional[np.ndarray] = None
    histogram: Optional[np.ndarray] = None
    alt_histogram: Optional[np.ndarray] = None


@dataclass(frozen=True)
class CandidateMatch:
    """One scored (slot, label) pair from a single scan."""
    slot: int
    label: str
    fused: float
    fingerprint_sim: float
    histogram_sim: float


@dataclass(frozen=True)
class HandState:
    """Immutable slot -> label snapshot published after every scan."""
    assignments: tuple[tuple[int, str], ...] = field(default_factory=tuple)

    @classmethod
    def from_mapping(cls, mapping: dict[int, str]) -> HandState:
        slots = list(mapping.keys())
        labels = list(mapping.values())
        if len(set(labels)) != len(labels) or len(set(slots)) != len(slots):
            raise ValueError(f"duplicate slot or label in {mapping!r}")
        return cls(assignments=tuple(sorted(mapping.items())))

    def as_dict(self) -> dict[int, str]:
        return dict(self.assignments)

    def label_for(self, slot: int) -> Optional[str]:
        return self.as_dict().get(slot)

    @property
    def label_to_slot(self) -> dict[str, int]:
        """Inverse mapping for the primary (hand) slots only."""
        return {label: slot for slot, label in self.assignments if slot in PRIMARY_SLOTS}

    @property
    def preview_label(self) -> Optional[str]:
        return self.label_for(PREVIEW_SLOT)

    def is_empty(self) -> bool:
        return not self.assignments

    def describe(self) -> str:
        mapping = self.as_dict()
        hand = " | ".join(mapping.get(s, "?") for s in PRIMARY_SLOTS)
        return f"{hand} | Next: {mapping.get(PREVIEW_SLOT, '?')}"


EMPTY_HAND = HandState()
