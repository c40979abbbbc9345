from handreader.analysis.matcher import HandMatcher, assign
from handreader.analysis.regions import OutOfBounds, SlotLayout

__all__ = ["HandMatcher", "OutOfBounds", "SlotLayout", "assign"]
