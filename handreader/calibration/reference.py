"""Reference-image calibration — one canonical card image per label.

All labels are fetched concurrently, one task per label, and joined before the
store is touched. A failed fetch or decode only leaves that label uncalibrated;
it never cancels or fails its siblings.
"""

from __future__ import annotations

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence

import httpx

from handreader.analysis.features import (
    DEFAULT_DESATURATION,
    composite_on_dark,
    decode_image,
    extract_template,
)
from handreader.models import Template
from handreader.templates.store import TemplateStore

logger = logging.getLogger(__name__)

DEFAULT_URL_TEMPLATE = "https://royaleapi.github.io/cr-api-assets/cards/{slug}.png"


class ReferenceProvider(Protocol):
    def fetch(self, label: str) -> bytes:
        """Return encoded image bytes for the label; raise on failure."""
        ...


def card_slug(label: str) -> str:
    """'Mini P.E.K.K.A' -> 'mini-pekka', "Royal Giant" -> 'royal-giant'."""
    slug = label.strip().lower()
    slug = re.sub(r"[.'’]", "", slug)
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    return slug.strip("-")


class HttpReferenceProvider:
    """Downloads card art from a CDN URL pattern with a `{slug}` placeholder."""

    def __init__(
        self,
        url_template: str = DEFAULT_URL_TEMPLATE,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url_template = url_template
        self.timeout = timeout
        self._client = client

    def url_for(self, label: str) -> str:
        return self.url_template.format(slug=card_slug(label), name=label)

    def fetch(self, label: str) -> bytes:
        url = self.url_for(label)
        if self._client is not None:
            resp = self._client.get(url, timeout=self.timeout)
        else:
            resp = httpx.get(url, timeout=self.timeout, follow_redirects=True)
        resp.raise_for_status()
        if not resp.content:
            raise ValueError(f"empty body from {url}")
        return resp.content


@dataclass
class CalibrationReport:
    calibrated: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    elapsed_ms: float = 0.0

    @property
    def count(self) -> int:
        return len(self.calibrated)


class ReferenceCalibrator:
    """Builds templates from reference images and writes them to the store."""

    def __init__(
        self,
        provider: ReferenceProvider,
        store: TemplateStore,
        desaturation_amount: float = DEFAULT_DESATURATION,
        max_workers: int = 8,
    ):
        self._provider = provider
        self._store = store
        self._amount = desaturation_amount
        self._max_workers = max(1, int(max_workers))

    def build_template(self, label: str) -> Template:
        """Fetch, decode, flatten onto black, then compute normal + desaturated features."""
        image = decode_image(self._provider.fetch(label))
        opaque = composite_on_dark(image)
        return extract_template(label, opaque, self._amount)

    def _build_or_error(self, label: str) -> tuple[Optional[Template], Optional[str]]:
        try:
            return self.build_template(label), None
        except Exception as e:
            logger.warning("Reference image failed for '%s': %s", label, e)
            return None, str(e) or type(e).__name__

    def calibrate(self, labels: Sequence[str]) -> CalibrationReport:
        report = CalibrationReport()
        if not labels:
            return report
        logger.info("Fetching %s reference images", len(labels))
        started = time.monotonic()
        with ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(labels)),
            thread_name_prefix="reference-fetch",
        ) as executor:
            futures = {label: executor.submit(self._build_or_error, label) for label in labels}
            results = {label: future.result() for label, future in futures.items()}

        built: list[Template] = []
        for label in labels:
            template, error = results[label]
            if template is None:
                report.failed[label] = error or "unknown error"
                continue
            built.append(template)
            report.calibrated.append(label)
        self._store.put_many(built)

        report.elapsed_ms = (time.monotonic() - started) * 1000.0
        logger.info(
            "Reference templates loaded: %s/%s in %.0fms",
            report.count,
            len(labels),
            report.elapsed_ms,
        )
        return report
