from handreader.calibration.reference import (
    CalibrationReport,
    HttpReferenceProvider,
    ReferenceCalibrator,
    ReferenceProvider,
    card_slug,
)
from handreader.calibration.vision import (
    ClaudeVisionLabeler,
    VisionCalibrator,
    VisionLabeler,
    VisionResponseError,
    parse_label_list,
)

__all__ = [
    "CalibrationReport",
    "ClaudeVisionLabeler",
    "HttpReferenceProvider",
    "ReferenceCalibrator",
    "ReferenceProvider",
    "VisionCalibrator",
    "VisionLabeler",
    "VisionResponseError",
    "card_slug",
    "parse_label_list",
]
