"""Hand matcher — fused scoring of every (slot, label) pair and greedy assignment.

fused = w_fp * max(fingerprint sims) + w_hist * max(histogram sims), where each
max runs over the normal and the desaturated template variant. Candidates above
the slot's floor are pooled, sorted by fused score, and claimed greedily so no
slot and no label is used twice. Greedy is not globally optimal, but it is
deterministic and cheap enough for every scan tick.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np

from handreader.analysis.features import extract, similarity
from handreader.analysis.regions import OutOfBounds, SlotLayout
from handreader.models import (
    ALL_SLOTS,
    PREVIEW_SLOT,
    CandidateMatch,
    HandState,
    Template,
)

logger = logging.getLogger(__name__)

Features = tuple[np.ndarray, np.ndarray]


def assign(candidates: Iterable[CandidateMatch]) -> dict[int, str]:
    """Greedy conflict-free assignment, best fused score first.

    The sort is stable, so equal scores keep their input order and identical
    inputs always give identical results.
    """
    ordered = sorted(candidates, key=lambda c: c.fused, reverse=True)
    result: dict[int, str] = {}
    used_labels: set[str] = set()
    for match in ordered:
        if match.slot in result or match.label in used_labels:
            continue
        result[match.slot] = match.label
        used_labels.add(match.label)
        if len(result) == len(ALL_SLOTS):
            break
    return result


class HandMatcher:
    """Scores slot crops against calibrated templates."""

    def __init__(
        self,
        layout: Optional[SlotLayout] = None,
        fingerprint_weight: float = 0.6,
        histogram_weight: float = 0.4,
        min_score: float = 0.5,
        min_score_preview: Optional[float] = None,
    ):
        self._layout = layout if layout is not None else SlotLayout()
        self.fingerprint_weight = float(fingerprint_weight)
        self.histogram_weight = float(histogram_weight)
        self.min_score = float(min_score)
        self.min_score_preview = (
            float(min_score_preview) if min_score_preview is not None else self.min_score
        )

    def floor_for(self, slot: int) -> float:
        return self.min_score_preview if slot == PREVIEW_SLOT else self.min_score

    def score_pair(self, features: Features, template: Template) -> tuple[float, float, float]:
        """Return (fused, fingerprint_sim, histogram_sim) for one crop and one template."""
        fp, hist = features
        fp_normal = similarity(fp, template.fingerprint)
        fp_alt = (
            similarity(fp, template.alt_fingerprint)
            if template.alt_fingerprint is not None
            else fp_normal
        )
        best_fp = max(fp_normal, fp_alt)

        hist_normal = similarity(hist, template.histogram)
        hist_alt = (
            similarity(hist, template.alt_histogram)
            if template.alt_histogram is not None
            else hist_normal
        )
        best_hist = max(hist_normal, hist_alt)

        fused = self.fingerprint_weight * best_fp + self.histogram_weight * best_hist
        return fused, best_fp, best_hist

    def slot_features(self, frame: np.ndarray) -> dict[int, Features]:
        features: dict[int, Features] = {}
        for slot in ALL_SLOTS:
            try:
                crop = self._layout.crop(frame, slot)
            except OutOfBounds as e:
                logger.debug("Slot %s skipped this cycle: %s", slot, e)
                continue
            features[slot] = extract(crop)
        return features

    def score(
        self,
        features_by_slot: Mapping[int, Features],
        templates: Mapping[str, Template],
        labels: Optional[Sequence[str]] = None,
    ) -> list[CandidateMatch]:
        """Admitted candidates for every slot and every label that has a template."""
        order = list(labels) if labels is not None else sorted(templates)
        candidates: list[CandidateMatch] = []
        for slot in sorted(features_by_slot):
            floor = self.floor_for(slot)
            for label in order:
                template = templates.get(label)
                if template is None:
                    continue
                fused, fp_sim, hist_sim = self.score_pair(features_by_slot[slot], template)
                if fused > floor:
                    candidates.append(
                        CandidateMatch(
                            slot=slot,
                            label=label,
                            fused=fused,
                            fingerprint_sim=fp_sim,
                            histogram_sim=hist_sim,
                        )
                    )
        return candidates

    def match(
        self,
        frame: np.ndarray,
        templates: Mapping[str, Template],
        labels: Optional[Sequence[str]] = None,
    ) -> HandState:
        if not templates:
            return HandState()
        candidates = self.score(self.slot_features(frame), templates, labels)
        if logger.isEnabledFor(logging.DEBUG):
            self._log_best_per_slot(candidates)
        return HandState.from_mapping(assign(candidates))

    @staticmethod
    def _log_best_per_slot(candidates: list[CandidateMatch]) -> None:
        for slot in ALL_SLOTS:
            ranked = sorted(
                (c for c in candidates if c.slot == slot),
                key=lambda c: c.fused,
                reverse=True,
            )
            if not ranked:
                continue
            best = ranked[0]
            second = ranked[1] if len(ranked) > 1 else None
            margin = best.fused - second.fused if second else best.fused
            logger.debug(
                "Slot %s -> %s (fused=%.3f color=%.3f hsv=%.3f) margin=%.3f%s",
                slot,
                best.label,
                best.fused,
                best.fingerprint_sim,
                best.histogram_sim,
                margin,
                f" 2nd={second.label}({second.fused:.3f})" if second else "",
            )
