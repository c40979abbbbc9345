"""Template store — per-label calibrated features shared by calibration and scanning."""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

from handreader.analysis.features import FINGERPRINT_LEN, HISTOGRAM_LEN
from handreader.models import Template

logger = logging.getLogger(__name__)

DEFAULT_MIN_TEMPLATES = 4


def _check_lengths(template: Template) -> None:
    if template.fingerprint is None or template.fingerprint.size != FINGERPRINT_LEN:
        raise ValueError(f"template '{template.label}': bad fingerprint length")
    if (
        template.alt_fingerprint is not None
        and template.alt_fingerprint.size != FINGERPRINT_LEN
    ):
        raise ValueError(f"template '{template.label}': bad alt fingerprint length")
    for hist in (template.histogram, template.alt_histogram):
        if hist is not None and hist.size != HISTOGRAM_LEN:
            raise ValueError(f"template '{template.label}': bad histogram length")


class TemplateStore:
    """Thread-safe label -> Template map.

    Templates are immutable and replaced whole, so a reader never sees a mix of
    old and new vectors for the same label.
    """

    def __init__(self, min_templates: int = DEFAULT_MIN_TEMPLATES):
        self._lock = threading.RLock()
        self._templates: dict[str, Template] = {}
        self._min_templates = max(1, int(min_templates))

    def put(self, template: Template) -> None:
        """Store a template, overwriting any prior one for the same label."""
        _check_lengths(template)
        with self._lock:
            replaced = template.label in self._templates
            self._templates[template.label] = template
        logger.debug(
            "%s template for '%s'", "Replaced" if replaced else "Stored", template.label
        )

    def put_many(self, templates: Iterable[Template]) -> int:
        batch = list(templates)
        for template in batch:
            _check_lengths(template)
        with self._lock:
            for template in batch:
                self._templates[template.label] = template
        return len(batch)

    def get(self, label: str) -> Optional[Template]:
        with self._lock:
            return self._templates.get(label)

    def snapshot(self) -> dict[str, Template]:
        """Consistent copy of every template at one point in time."""
        with self._lock:
            return dict(self._templates)

    def remove(self, label: str) -> bool:
        with self._lock:
            return self._templates.pop(label, None) is not None

    def retain(self, labels: Iterable[str]) -> list[str]:
        """Drop every template whose label is not in `labels`; return the dropped names."""
        keep = set(labels)
        with self._lock:
            dropped = [name for name in self._templates if name not in keep]
            for name in dropped:
                del self._templates[name]
        return dropped

    def clear(self) -> None:
        with self._lock:
            count = len(self._templates)
            self._templates.clear()
        logger.info("Cleared %s templates", count)

    @property
    def labels(self) -> set[str]:
        with self._lock:
            return set(self._templates)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._templates)

    @property
    def min_templates(self) -> int:
        return self._min_templates

    @property
    def is_calibrated(self) -> bool:
        """Enough templates to start scanning, even before the whole deck is ready."""
        return self.count >= self._min_templates

    def __contains__(self, label: object) -> bool:
        with self._lock:
            return label in self._templates

    def __len__(self) -> int:
        return self.count
