from handreader.models.config import AppConfig, default_slot_regions
from handreader.models.slot import (
    ALL_SLOTS,
    EMPTY_HAND,
    PREVIEW_SLOT,
    PRIMARY_SLOTS,
    CandidateMatch,
    HandState,
    SlotRegion,
    Template,
)

__all__ = [
    "ALL_SLOTS",
    "AppConfig",
    "CandidateMatch",
    "EMPTY_HAND",
    "HandState",
    "PREVIEW_SLOT",
    "PRIMARY_SLOTS",
    "SlotRegion",
    "Template",
    "default_slot_regions",
]
