"""Feature extraction — color fingerprints and HSV histograms for slot crops.

Two complementary vectors describe every crop:

* fingerprint: raw R, G, B intensities of a 32x32 downsample in raster order.
  Sensitive to spatial layout, so it separates cards with similar palettes but
  different art.
* histogram: hue / saturation / value distribution of the same downsample.
  Layout-free and largely illumination-robust, so it separates a mostly-blue
  card from a mostly-red one even when the slot is dimmed.

Both use the same pipeline for calibration and detection; templates and live
crops must always go through these functions.
"""

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from handreader.models import Template

HASH_SIZE = 32
HASH_CHANNELS = 3
FINGERPRINT_LEN = HASH_SIZE * HASH_SIZE * HASH_CHANNELS

HUE_BINS = 24
SAT_BINS = 12
VAL_BINS = 12
HISTOGRAM_LEN = HUE_BINS + SAT_BINS + VAL_BINS

# Hue counts double relative to saturation: color identity over color intensity.
HUE_WEIGHT = 2.0
# max - min channel (0-1 scale) above which a pixel has a meaningful hue
CHROMA_EPSILON = 0.01

DEFAULT_DESATURATION = 0.7


def _as_bgr(image: np.ndarray) -> np.ndarray:
    if image is None or image.size == 0:
        raise ValueError("empty image")
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image


def _downsample(image: np.ndarray) -> np.ndarray:
    bgr = _as_bgr(image)
    if bgr.shape[0] == HASH_SIZE and bgr.shape[1] == HASH_SIZE:
        return bgr
    return cv2.resize(bgr, (HASH_SIZE, HASH_SIZE), interpolation=cv2.INTER_AREA)


def fingerprint(image: np.ndarray) -> np.ndarray:
    """Return the 3072-float color fingerprint: [R0, G0, B0, R1, G1, B1, ...]."""
    small = _downsample(image)
    rgb = small[:, :, ::-1]
    return np.ascontiguousarray(rgb, dtype=np.float32).reshape(-1)


def histogram(image: np.ndarray) -> np.ndarray:
    """Return the 48-float HSV histogram: 24 hue, 12 saturation, 12 value bins.

    Hue and saturation are counted over chromatic pixels only, value over all
    pixels. Each block is normalized to sum 1 over its own population; the hue
    block is then scaled by HUE_WEIGHT. An empty population leaves its block at 0.
    """
    small = _downsample(image).astype(np.float32) / 255.0
    hsv = cv2.cvtColor(small, cv2.COLOR_BGR2HSV)
    hue = hsv[:, :, 0].reshape(-1)  # degrees [0, 360)
    sat = hsv[:, :, 1].reshape(-1)
    val = hsv[:, :, 2].reshape(-1)
    chroma = (small.max(axis=2) - small.min(axis=2)).reshape(-1) > CHROMA_EPSILON

    v_bins = np.clip((val * (VAL_BINS - 1)).astype(np.int32), 0, VAL_BINS - 1)
    v_hist = np.bincount(v_bins, minlength=VAL_BINS).astype(np.float32)
    v_hist /= float(val.size)

    h_hist = np.zeros(HUE_BINS, dtype=np.float32)
    s_hist = np.zeros(SAT_BINS, dtype=np.float32)
    chroma_count = int(np.count_nonzero(chroma))
    if chroma_count:
        h_bins = np.clip(
            (hue[chroma] / 360.0 * HUE_BINS).astype(np.int32), 0, HUE_BINS - 1
        )
        s_bins = np.clip(
            (sat[chroma] * (SAT_BINS - 1)).astype(np.int32), 0, SAT_BINS - 1
        )
        h_hist = np.bincount(h_bins, minlength=HUE_BINS).astype(np.float32)
        s_hist = np.bincount(s_bins, minlength=SAT_BINS).astype(np.float32)
        h_hist = (h_hist / chroma_count) * HUE_WEIGHT
        s_hist /= chroma_count

    return np.concatenate([h_hist, s_hist, v_hist]).astype(np.float32)


def split_histogram(hist: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split a histogram into (hue, saturation, value) distributions, hue weight removed."""
    hue = hist[:HUE_BINS] / HUE_WEIGHT
    sat = hist[HUE_BINS : HUE_BINS + SAT_BINS]
    val = hist[HUE_BINS + SAT_BINS :]
    return hue, sat, val


def similarity(a: Optional[np.ndarray], b: Optional[np.ndarray]) -> float:
    """Cosine similarity; 0.0 for missing, empty, zero-magnitude or mismatched vectors."""
    if a is None or b is None:
        return 0.0
    if a.size == 0 or a.shape != b.shape:
        return 0.0
    a64 = a.astype(np.float64, copy=False)
    b64 = b.astype(np.float64, copy=False)
    denom = float(np.linalg.norm(a64)) * float(np.linalg.norm(b64))
    if denom < 1e-10:
        return 0.0
    return float(np.dot(a64, b64) / denom)


def desaturate(image: np.ndarray, amount: float = DEFAULT_DESATURATION) -> np.ndarray:
    """Blend every pixel toward its luma grey: 0.0 = no change, 1.0 = greyscale.

    Approximates how a card renders dimmed when it cannot be played yet.
    """
    amount = max(0.0, min(1.0, float(amount)))
    bgr = _as_bgr(image).astype(np.float64)
    grey = 0.114 * bgr[:, :, 0] + 0.587 * bgr[:, :, 1] + 0.299 * bgr[:, :, 2]
    blended = bgr * (1.0 - amount) + grey[:, :, np.newaxis] * amount
    return np.clip(np.rint(blended), 0, 255).astype(np.uint8)


def composite_on_dark(image: np.ndarray) -> np.ndarray:
    """Flatten transparency onto an opaque black background.

    The live slot background is dark; compositing onto white would turn
    transparent corners pale and let pale cards match everything.
    """
    if image.ndim == 3 and image.shape[2] == 4:
        color = image[:, :, :3].astype(np.float32)
        alpha = image[:, :, 3:4].astype(np.float32) / 255.0
        return np.clip(np.rint(color * alpha), 0, 255).astype(np.uint8)
    return _as_bgr(image)


def decode_image(data: bytes) -> np.ndarray:
    """Decode PNG/JPEG bytes, keeping the alpha channel when present."""
    if not data:
        raise ValueError("empty image data")
    arr = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(arr, cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ValueError("could not decode image")
    if image.dtype != np.uint8:
        image = cv2.convertScaleAbs(image, alpha=255.0 / 65535.0)
    return image


def encode_png(image: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", image)
    if not ok:
        raise ValueError("could not encode image as PNG")
    return bytes(buf)


def extract(image: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Compute (fingerprint, histogram) for one crop."""
    return fingerprint(image), histogram(image)


def extract_template(
    label: str, image: np.ndarray, amount: float = DEFAULT_DESATURATION
) -> Template:
    """Build a full template: normal features from the image, alt from its desaturated copy."""
    normal_fp, normal_hist = extract(image)
    alt_fp, alt_hist = extract(desaturate(image, amount))
    return Template(
        label=label,
        fingerprint=normal_fp,
        alt_fingerprint=alt_fp,
        histogram=normal_hist,
        alt_histogram=alt_hist,
    )
