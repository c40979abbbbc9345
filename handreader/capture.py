"""Frame sources — screen capture via mss, plus a static source for replays."""

from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    def get_latest_frame(self) -> Optional[np.ndarray]:
        """Latest BGR frame, or None when no frame is available right now."""
        ...


class ScreenCapture:
    """Grabs a whole monitor with mss.

    mss handles are not shareable across threads, so each calling thread gets
    its own handle on first use.
    """

    def __init__(self, monitor_index: int = 1):
        self._monitor_index = monitor_index
        self._local = threading.local()
        self._handles: list = []
        self._handles_lock = threading.Lock()
        self._started = False

    def start(self) -> None:
        self._started = True

    def stop(self) -> None:
        self._started = False
        with self._handles_lock:
            handles, self._handles = self._handles, []
        for sct in handles:
            try:
                sct.close()
            except Exception as e:
                logger.debug("mss close failed: %s", e)
        self._local = threading.local()

    def _sct(self):
        sct = getattr(self._local, "sct", None)
        if sct is None:
            import mss

            sct = mss.mss()
            self._local.sct = sct
            with self._handles_lock:
                self._handles.append(sct)
        return sct

    def grab(self) -> np.ndarray:
        monitors = self._sct().monitors
        idx = min(max(1, self._monitor_index), len(monitors) - 1)
        shot = self._sct().grab(monitors[idx])
        return cv2.cvtColor(np.asarray(shot), cv2.COLOR_BGRA2BGR)

    def get_latest_frame(self) -> Optional[np.ndarray]:
        if not self._started:
            return None
        try:
            return self.grab()
        except Exception as e:
            logger.debug("Screen grab failed: %s", e)
            return None


class StaticFrameSource:
    """Serves a fixed frame (or None). Useful for replaying a saved screenshot."""

    def __init__(self, frame: Optional[np.ndarray] = None):
        self._lock = threading.Lock()
        self._frame = frame

    def set_frame(self, frame: Optional[np.ndarray]) -> None:
        with self._lock:
            self._frame = frame

    def get_latest_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._frame

    @classmethod
    def from_file(cls, path: str) -> StaticFrameSource:
        frame = cv2.imread(path, cv2.IMREAD_COLOR)
        if frame is None:
            raise ValueError(f"could not read image {path}")
        return cls(frame)
