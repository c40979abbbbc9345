"""Vision-assisted calibration — a vision model names the cards in the live slots.

The model only supplies names. Every template is computed from the live crop
itself with the same feature pipeline the scanner uses.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import time
from typing import Callable, Optional, Protocol, Sequence

import numpy as np

from handreader.analysis.features import (
    DEFAULT_DESATURATION,
    encode_png,
    extract_template,
)
from handreader.analysis.regions import OutOfBounds, SlotLayout
from handreader.models import ALL_SLOTS, Template
from handreader.templates.store import TemplateStore

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


class VisionResponseError(ValueError):
    """The vision model reply is not a JSON list of names."""


class VisionLabeler(Protocol):
    def label(self, images: Sequence[bytes], allowed: Sequence[str]) -> list[str]:
        """Return one name per image, in image order, drawn from `allowed`."""
        ...


def clean_json_response(raw: str) -> str:
    """Strip markdown code fences and surrounding prose around a JSON array."""
    text = _FENCE.sub("", raw.strip()).strip()
    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text


def parse_label_list(raw: str) -> list[str]:
    try:
        data = json.loads(clean_json_response(raw))
    except json.JSONDecodeError as e:
        raise VisionResponseError(f"reply is not JSON: {raw[:200]!r}") from e
    if not isinstance(data, list):
        raise VisionResponseError(f"reply is not a list: {raw[:200]!r}")
    return [str(item).strip() for item in data]


def build_instruction(allowed: Sequence[str], image_count: int) -> str:
    deck_list = ", ".join(allowed)
    return (
        "You identify Clash Royale cards from screenshot crops of a player's hand.\n"
        f"The player's deck contains EXACTLY these {len(allowed)} cards: {deck_list}.\n"
        f"You see {image_count} images. Images 1-4 are the visible hand cards (left to right).\n"
        'Image 5 (if present) is the smaller "next card" preview.\n'
        "Cards may appear dimmed or greyed out (insufficient elixir); still identify them.\n"
        "Respond ONLY with a JSON array of card names in the EXACT order of the images.\n"
        "Use EXACT card names from the deck list above. No other text."
    )


class ClaudeVisionLabeler:
    """Labels slot crops with Claude vision. Requires ANTHROPIC_API_KEY."""

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        max_tokens: int = 256,
        api_key: Optional[str] = None,
        client: object = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self._api_key:
                raise RuntimeError("ANTHROPIC_API_KEY not set")
            import anthropic

            self._client = anthropic.Anthropic(api_key=self._api_key)
        return self._client

    def label(self, images: Sequence[bytes], allowed: Sequence[str]) -> list[str]:
        content: list[dict] = []
        for data in images:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": "image/png",
                        "data": base64.standard_b64encode(data).decode("utf-8"),
                    },
                }
            )
        content.append(
            {
                "type": "text",
                "text": (
                    f"Identify each card in these {len(images)} images from my hand. "
                    f"My deck is: {', '.join(allowed)}"
                ),
            }
        )
        message = self._get_client().messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=build_instruction(allowed, len(images)),
            messages=[{"role": "user", "content": content}],
        )
        raw = message.content[0].text
        logger.info("Vision reply: %s", raw.strip()[:200])
        return parse_label_list(raw)


class VisionCalibrator:
    """Calibrates templates from the live frame using a vision labeler."""

    def __init__(
        self,
        labeler: VisionLabeler,
        store: TemplateStore,
        layout: Optional[SlotLayout] = None,
        desaturation_amount: float = DEFAULT_DESATURATION,
    ):
        self._labeler = labeler
        self._store = store
        self._layout = layout if layout is not None else SlotLayout()
        self._amount = desaturation_amount

    @staticmethod
    def select_pairs(
        slots: Sequence[int], names: Sequence[str], allowed: Sequence[str]
    ) -> list[tuple[int, str]]:
        """Pair replies with slots, dropping unknown names and repeated names.

        A repeated name keeps its first slot: hand slots come before the small
        preview slot and give the better crop.
        """
        valid = set(allowed)
        seen: set[str] = set()
        pairs: list[tuple[int, str]] = []
        for slot, name in zip(slots, names):
            if name not in valid:
                logger.warning("Vision returned '%s' for slot %s, not in deck; skipping", name, slot)
                continue
            if name in seen:
                logger.info("Skipping duplicate '%s' from slot %s", name, slot)
                continue
            seen.add(name)
            pairs.append((slot, name))
        return pairs

    def calibrate(
        self,
        frame: np.ndarray,
        allowed: Sequence[str],
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> list[str]:
        """Returns the labels whose templates were (re)written."""
        progress = on_progress or (lambda _msg: None)

        progress("Cropping card slots...")
        crops: dict[int, np.ndarray] = {}
        for slot in ALL_SLOTS:
            try:
                crops[slot] = self._layout.crop(frame, slot).copy()
            except OutOfBounds as e:
                logger.warning("Failed to crop slot %s during calibration: %s", slot, e)
        if not crops:
            progress("ERROR: Could not crop any card slots")
            return []

        slots = sorted(crops)
        progress("Identifying cards...")
        started = time.monotonic()
        try:
            names = self._labeler.label([encode_png(crops[s]) for s in slots], list(allowed))
        except Exception as e:
            logger.error("Vision calibration failed: %s", e)
            progress(f"Calibration failed: {str(e)[:40]}")
            return []
        elapsed_ms = (time.monotonic() - started) * 1000.0

        if len(names) != len(slots):
            logger.warning("Expected %s card names, got %s", len(slots), len(names))

        templates: list[Template] = []
        for slot, name in self.select_pairs(slots, names, allowed):
            templates.append(extract_template(name, crops[slot], self._amount))
            logger.info("Calibrated '%s' from slot %s", name, slot)
        self._store.put_many(templates)
        calibrated = [t.label for t in templates]

        msg = f"Vision identified {len(calibrated)} cards in {elapsed_ms:.0f}ms"
        logger.info("%s (%s total templates)", msg, self._store.count)
        progress(msg)
        return calibrated
