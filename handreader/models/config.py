from __future__ import annotations

from dataclasses import dataclass, field

from handreader.models.slot import SlotRegion


def default_slot_regions() -> list[SlotRegion]:
    """Hand slots 0-3 left to right along the bottom bar, then the smaller
    next-card preview at the left edge. Fractions of a portrait frame."""
    return [
        SlotRegion(x=0.213 + i * 0.19, y=0.8375, width=0.176, height=0.1)
        for i in range(4)
    ] + [SlotRegion(x=0.05, y=0.915, width=0.1, height=0.06)]


@dataclass
class AppConfig:
    """Runtime application configuration."""
    # Ordered list of the 8 labels that may appear in the slots
    deck: list[str] = field(default_factory=list)
    templates_dir: str = "templates"
    monitor_index: int = 1
    slot_regions: list[SlotRegion] = field(default_factory=default_slot_regions)
    scan_interval_ms: int = 200
    min_templates: int = 4
    fingerprint_weight: float = 0.6
    histogram_weight: float = 0.4
    min_score: float = 0.5
    min_score_preview: float = 0.5
    desaturation_amount: float = 0.7
    missing_frame_warn_after: int = 10
    reference_url_template: str = "https://royaleapi.github.io/cr-api-assets/cards/{slug}.png"
    reference_timeout_s: float = 10.0
    reference_workers: int = 8
    vision_model: str = "claude-haiku-4-5-20251001"
    vision_max_tokens: int = 256

    @classmethod
    def from_dict(cls, data: dict) -> AppConfig:
        detection = data.get("detection", {}) or {}
        calibration = data.get("calibration", {}) or {}
        slots = data.get("slots", {}) or {}
        capture = data.get("capture", {}) or {}
        raw_regions = slots.get("regions") or []
        regions = [SlotRegion.from_dict(r) for r in raw_regions if isinstance(r, dict)]
        if len(regions) != 5:
            regions = default_slot_regions()
        return cls(
            deck=[str(name) for name in data.get("deck", []) or []],
            templates_dir=data.get("templates_dir", "templates"),
            monitor_index=capture.get("monitor_index", 1),
            slot_regions=regions,
            scan_interval_ms=detection.get("scan_interval_ms", 200),
            min_templates=detection.get("min_templates", 4),
            fingerprint_weight=detection.get("fingerprint_weight", 0.6),
            histogram_weight=detection.get("histogram_weight", 0.4),
            min_score=detection.get("min_score", 0.5),
            min_score_preview=detection.get(
                "min_score_preview", detection.get("min_score", 0.5)
            ),
            missing_frame_warn_after=detection.get("missing_frame_warn_after", 10),
            desaturation_amount=calibration.get("desaturation_amount", 0.7),
            reference_url_template=calibration.get(
                "reference_url_template",
                "https://royaleapi.github.io/cr-api-assets/cards/{slug}.png",
            ),
            reference_timeout_s=calibration.get("reference_timeout_s", 10.0),
            reference_workers=calibration.get("reference_workers", 8),
            vision_model=calibration.get("vision_model", "claude-haiku-4-5-20251001"),
            vision_max_tokens=calibration.get("vision_max_tokens", 256),
        )

    def to_dict(self) -> dict:
        """Serialize to dict for JSON config file (round-trip with from_dict)."""
        return {
            "deck": list(self.deck),
            "templates_dir": self.templates_dir,
            "capture": {"monitor_index": self.monitor_index},
            "slots": {"regions": [r.to_dict() for r in self.slot_regions]},
            "detection": {
                "scan_interval_ms": self.scan_interval_ms,
                "min_templates": self.min_templates,
                "fingerprint_weight": self.fingerprint_weight,
                "histogram_weight": self.histogram_weight,
                "min_score": self.min_score,
                "min_score_preview": self.min_score_preview,
                "missing_frame_warn_after": self.missing_frame_warn_after,
            },
            "calibration": {
                "desaturation_amount": self.desaturation_amount,
                "reference_url_template": self.reference_url_template,
                "reference_timeout_s": self.reference_timeout_s,
                "reference_workers": self.reference_workers,
                "vision_model": self.vision_model,
                "vision_max_tokens": self.vision_max_tokens,
            },
        }
