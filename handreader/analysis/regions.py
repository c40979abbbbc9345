"""Slot regions — map a slot index to a pixel rectangle of the current frame."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from handreader.models import ALL_SLOTS, SlotRegion, default_slot_regions

logger = logging.getLogger(__name__)


class OutOfBounds(ValueError):
    """The slot is undefined or its rectangle falls outside the frame."""


class SlotLayout:
    """Proportional slot rectangles, scaled to each frame's actual resolution."""

    def __init__(self, regions: Sequence[SlotRegion] | None = None):
        regions = list(regions) if regions is not None else default_slot_regions()
        if len(regions) != len(ALL_SLOTS):
            raise ValueError(
                f"expected {len(ALL_SLOTS)} slot regions, got {len(regions)}"
            )
        self._regions = regions

    @property
    def slots(self) -> tuple[int, ...]:
        return ALL_SLOTS

    def rect_for(
        self, slot_index: int, frame_width: int, frame_height: int
    ) -> tuple[int, int, int, int]:
        """Return (x, y, w, h) clamped to the frame. Raises OutOfBounds."""
        if slot_index not in ALL_SLOTS:
            raise OutOfBounds(f"slot {slot_index} is not defined")
        x, y, w, h = self._regions[slot_index].to_pixels(frame_width, frame_height)
        x1 = max(0, x)
        y1 = max(0, y)
        x2 = min(frame_width, x + w)
        y2 = min(frame_height, y + h)
        if x2 <= x1 or y2 <= y1:
            raise OutOfBounds(
                f"slot {slot_index} rect ({x},{y},{w},{h}) is outside "
                f"frame {frame_width}x{frame_height}"
            )
        return x1, y1, x2 - x1, y2 - y1

    def crop(self, frame: np.ndarray, slot_index: int) -> np.ndarray:
        """Extract one slot's image from the frame (a view, valid while the frame is)."""
        if frame is None or frame.size == 0:
            raise OutOfBounds("empty frame")
        h, w = frame.shape[:2]
        x, y, cw, ch = self.rect_for(slot_index, w, h)
        return frame[y : y + ch, x : x + cw]

    def crop_all(self, frame: np.ndarray) -> dict[int, np.ndarray]:
        """Crop every slot, skipping the ones that do not fit this frame."""
        crops: dict[int, np.ndarray] = {}
        for slot_index in ALL_SLOTS:
            try:
                crops[slot_index] = self.crop(frame, slot_index)
            except OutOfBounds as e:
                logger.debug("Skipping slot %s: %s", slot_index, e)
        return crops
