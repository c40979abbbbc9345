"""Hand scanner — background thread that re-scans the latest frame at a fixed period."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from PyQt6.QtCore import QObject, QThread, pyqtSignal

from handreader.capture import FrameSource
from handreader.models import HandState
from handreader.recognizer import HandRecognizer

logger = logging.getLogger(__name__)


class HandScanner(QThread):
    """Worker thread: frame source -> recognizer -> hand_changed, every interval.

    Idle -> Scanning -> Idle. start() is refused while uncalibrated; stop()
    returns immediately, clears the published hand and may be called repeatedly.
    """

    hand_changed = pyqtSignal(object)  # HandState

    def __init__(
        self,
        recognizer: HandRecognizer,
        frame_source: FrameSource,
        interval_ms: int = 200,
        missing_frame_warn_after: int = 10,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._recognizer = recognizer
        self._frame_source = frame_source
        self._interval = max(1, int(interval_ms)) / 1000.0
        self._warn_after = max(1, int(missing_frame_warn_after))
        self._stop_event = threading.Event()
        self._stop_event.set()
        self._missing_frames = 0
        self._unsubscribe = recognizer.subscribe(self._on_hand_changed)

    @property
    def missing_frames(self) -> int:
        """Consecutive polls that returned no frame."""
        return self._missing_frames

    @property
    def is_scanning(self) -> bool:
        return self.isRunning() and not self._stop_event.is_set()

    def start(self) -> bool:  # type: ignore[override]
        if self.is_scanning:
            logger.warning("Scanning already active")
            return False
        if not self._recognizer.is_calibrated:
            logger.warning(
                "Not calibrated (%s templates), can't scan",
                self._recognizer.template_count,
            )
            return False
        if self.isRunning():
            # A previous loop is still winding down after stop().
            self.wait()
        self._missing_frames = 0
        self._stop_event.clear()
        logger.info(
            "Starting background scan (%s templates, %.0fms interval)",
            self._recognizer.template_count,
            self._interval * 1000,
        )
        super().start()
        return True

    def stop(self) -> None:
        """Request the loop to end and clear the published hand. Does not block."""
        was_scanning = not self._stop_event.is_set()
        # Event first: a scan that reads the new generation then sees the stop
        self._stop_event.set()
        self._recognizer.reset_state()
        if was_scanning:
            logger.info("Scanning stopped")

    def step(self) -> Optional[HandState]:
        """One poll: fetch the latest frame and scan it. Publishes only while scanning."""
        frame = self._frame_source.get_latest_frame()
        if frame is None:
            self._missing_frames += 1
            if self._missing_frames == self._warn_after:
                logger.warning(
                    "Screen capture appears dead: no frames for %.0fms",
                    self._warn_after * self._interval * 1000,
                )
            return None
        self._missing_frames = 0
        generation = self._recognizer.generation
        try:
            state = self._recognizer.evaluate(frame)
        except Exception as e:
            logger.error(f"Scan error: {e}", exc_info=True)
            return None
        if not self._stop_event.is_set():
            self._recognizer.publish(state, generation)
        return state

    def run(self) -> None:
        try:
            while not self._stop_event.is_set():
                self.step()
                self._stop_event.wait(self._interval)
        finally:
            self._recognizer.reset_state()

    def close(self) -> None:
        """Stop, wait for the thread and detach from the recognizer."""
        self.stop()
        self.wait()
        self._unsubscribe()

    def _on_hand_changed(self, state: HandState) -> None:
        if not state.is_empty():
            logger.info("Hand: %s", state.describe())
        self.hand_changed.emit(state)
