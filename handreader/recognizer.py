"""Hand recognizer — the engine handle owned by the host application.

Bundles the template store, matcher and the published hand state. Every
instance is independent; nothing here is process-global.

Published states carry the generation they were computed in. clear(),
set_labels() and reset_state() start a new generation, so a scan that began
before them can never publish afterwards. Subscribers are called on a single
notifier thread, in publish order, never on the publisher's thread.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Sequence

import numpy as np

from handreader.analysis import HandMatcher, SlotLayout
from handreader.calibration import (
    CalibrationReport,
    ReferenceCalibrator,
    ReferenceProvider,
    VisionCalibrator,
    VisionLabeler,
)
from handreader.models import EMPTY_HAND, AppConfig, HandState
from handreader.templates import TemplateRepository, TemplateStore

logger = logging.getLogger(__name__)

StateCallback = Callable[[HandState], None]


class HandRecognizer:
    """Recognizes which deck labels occupy the hand slots of a frame."""

    def __init__(
        self,
        config: AppConfig,
        store: Optional[TemplateStore] = None,
        repository: Optional[TemplateRepository] = None,
    ):
        self._config = config
        self._labels: list[str] = list(config.deck)
        self._store = (
            store if store is not None else TemplateStore(min_templates=config.min_templates)
        )
        self._repository = repository
        self._layout = SlotLayout(config.slot_regions)
        self._matcher = HandMatcher(
            self._layout,
            fingerprint_weight=config.fingerprint_weight,
            histogram_weight=config.histogram_weight,
            min_score=config.min_score,
            min_score_preview=config.min_score_preview,
        )
        self._state_lock = threading.Lock()
        self._state: HandState = EMPTY_HAND
        self._generation = 0
        self._subscribers: list[StateCallback] = []
        self._notifier = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hand-notify")
        self._closed = False

    # ── Labels ─────────────────────────────────────────────────────────

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    def set_labels(self, labels: Sequence[str]) -> bool:
        """Switch the active deck. Any change invalidates every template."""
        new_labels = list(labels)
        if set(new_labels) == set(self._labels):
            self._labels = new_labels
            return False
        self._labels = new_labels
        self.clear()
        logger.info("Deck changed to %s; templates cleared", new_labels)
        return True

    # ── Query surface ──────────────────────────────────────────────────

    @property
    def store(self) -> TemplateStore:
        return self._store

    @property
    def is_calibrated(self) -> bool:
        return self._store.is_calibrated

    @property
    def template_count(self) -> int:
        return self._store.count

    @property
    def calibrated_labels(self) -> set[str]:
        return self._store.labels

    @property
    def current_state(self) -> HandState:
        with self._state_lock:
            return self._state

    @property
    def generation(self) -> int:
        """Read before evaluate() and pass to publish() to drop stale results."""
        with self._state_lock:
            return self._generation

    @property
    def label_to_slot(self) -> dict[str, int]:
        return self.current_state.label_to_slot

    @property
    def preview_label(self) -> Optional[str]:
        return self.current_state.preview_label

    # ── Subscribers ────────────────────────────────────────────────────

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """Call `callback(state)` on the notifier thread whenever the published hand changes."""
        with self._state_lock:
            self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: StateCallback) -> None:
        with self._state_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, state: HandState, generation: Optional[int] = None) -> bool:
        """Swap in a new state; notify subscribers only if it differs.

        A state computed in an older generation is dropped.
        """
        with self._state_lock:
            if generation is not None and generation != self._generation:
                logger.debug("Dropping hand from generation %s", generation)
                return False
            if state == self._state:
                return False
            self._state = state
            self._notify(state)
        return True

    def reset_state(self) -> None:
        """Publish the empty hand and invalidate scans still in flight."""
        with self._state_lock:
            self._generation += 1
            if self._state == EMPTY_HAND:
                return
            self._state = EMPTY_HAND
            self._notify(EMPTY_HAND)

    def _notify(self, state: HandState) -> None:
        # Called with _state_lock held so notifications queue in publish order
        if self._closed:
            return
        self._notifier.submit(self._deliver, state)

    def _deliver(self, state: HandState) -> None:
        with self._state_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Hand subscriber failed: {e}", exc_info=True)

    def flush(self) -> None:
        """Block until every queued notification has been delivered."""
        with self._state_lock:
            if self._closed:
                return
            marker = self._notifier.submit(lambda: None)
        marker.result()

    def close(self) -> None:
        """Deliver pending notifications and stop the notifier thread."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        self._notifier.shutdown(wait=True)

    # ── Scanning ───────────────────────────────────────────────────────

    def _active_templates(self):
        templates = self._store.snapshot()
        if not self._labels:
            return templates
        return {label: templates[label] for label in self._labels if label in templates}

    def evaluate(self, frame: np.ndarray) -> HandState:
        """Match one frame without publishing."""
        templates = self._active_templates()
        order = self._labels or sorted(templates)
        return self._matcher.match(frame, templates, order)

    def scan(self, frame: np.ndarray) -> HandState:
        generation = self.generation
        state = self.evaluate(frame)
        self.publish(state, generation)
        return state

    # ── Calibration & persistence ──────────────────────────────────────

    def clear(self) -> None:
        """Drop every template (memory and disk) and the published state."""
        self._store.clear()
        if self._repository is not None:
            self._repository.clear()
        self.reset_state()

    def calibrate_from_references(
        self, provider: ReferenceProvider
    ) -> CalibrationReport:
        calibrator = ReferenceCalibrator(
            provider,
            self._store,
            desaturation_amount=self._config.desaturation_amount,
            max_workers=self._config.reference_workers,
        )
        report = calibrator.calibrate(self._labels)
        if report.count:
            self.save_templates()
        return report

    def calibrate_with_vision(
        self,
        frame: np.ndarray,
        labeler: VisionLabeler,
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> list[str]:
        calibrator = VisionCalibrator(
            labeler,
            self._store,
            layout=self._layout,
            desaturation_amount=self._config.desaturation_amount,
        )
        calibrated = calibrator.calibrate(frame, self._labels, on_progress)
        if calibrated:
            self.save_templates()
        return calibrated

    def save_templates(self) -> int:
        if self._repository is None:
            return 0
        try:
            return self._repository.save_all(self._store)
        except OSError as e:
            logger.error(f"Failed to save templates: {e}", exc_info=True)
            return 0

    def load_templates(self) -> int:
        """Load persisted templates, dropping any that are not in the active deck."""
        if self._repository is None:
            return 0
        loaded = self._repository.load_into(self._store)
        if self._labels:
            dropped = self._store.retain(self._labels)
            if dropped:
                logger.info("Ignoring persisted templates outside the deck: %s", dropped)
                loaded = max(0, loaded - len(dropped))
        return loaded
