"""Template persistence — one binary record per label.

Record layout (little-endian):

    int32   name length in bytes
    bytes   UTF-8 name
    float32 x 3072  normal fingerprint
    float32 x 3072  alt (desaturated) fingerprint     optional
    float32 x 48    normal histogram                  optional
    float32 x 48    alt histogram                     optional

Older records stop after the normal fingerprint or the alt fingerprint; the
loader checks the remaining byte count before each optional section, so the
format grows by appending sections without a version field.
"""

from __future__ import annotations

import hashlib
import logging
import re
import struct
from pathlib import Path
from typing import Optional

import numpy as np

from handreader.analysis.features import FINGERPRINT_LEN, HISTOGRAM_LEN
from handreader.models import Template
from handreader.templates.store import TemplateStore

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".tmpl"
_FLOAT = np.dtype("<f4")
_NAME_LEN = struct.Struct("<i")
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")


class TemplateFormatError(ValueError):
    """A persisted record is corrupt or truncated."""


def label_slug(label: str) -> str:
    """Filesystem-safe file stem for a label."""
    return _UNSAFE_CHARS.sub("_", label)


def encode_template(template: Template) -> bytes:
    name = template.label.encode("utf-8")
    normal_fp = template.fingerprint
    alt_fp = template.alt_fingerprint if template.alt_fingerprint is not None else normal_fp
    normal_hist = (
        template.histogram
        if template.histogram is not None
        else np.zeros(HISTOGRAM_LEN, dtype=np.float32)
    )
    alt_hist = template.alt_histogram if template.alt_histogram is not None else normal_hist
    parts = [_NAME_LEN.pack(len(name)), name]
    for vec in (normal_fp, alt_fp, normal_hist, alt_hist):
        parts.append(np.asarray(vec, dtype=_FLOAT).tobytes())
    return b"".join(parts)


def _read_vector(data: bytes, offset: int, length: int) -> tuple[np.ndarray, int]:
    nbytes = length * _FLOAT.itemsize
    vec = np.frombuffer(data, dtype=_FLOAT, count=length, offset=offset)
    return vec.astype(np.float32), offset + nbytes


def _remaining(data: bytes, offset: int, length: int) -> bool:
    return len(data) - offset >= length * _FLOAT.itemsize


def decode_template(data: bytes) -> Template:
    if len(data) < _NAME_LEN.size:
        raise TemplateFormatError("record shorter than its header")
    (name_len,) = _NAME_LEN.unpack_from(data, 0)
    offset = _NAME_LEN.size
    if name_len <= 0 or offset + name_len > len(data):
        raise TemplateFormatError(f"invalid name length {name_len}")
    try:
        label = data[offset : offset + name_len].decode("utf-8")
    except UnicodeDecodeError as e:
        raise TemplateFormatError(f"name is not UTF-8: {e}") from e
    offset += name_len

    if not _remaining(data, offset, FINGERPRINT_LEN):
        raise TemplateFormatError(f"'{label}': truncated fingerprint")
    fingerprint, offset = _read_vector(data, offset, FINGERPRINT_LEN)

    alt_fingerprint: Optional[np.ndarray] = None
    histogram: Optional[np.ndarray] = None
    alt_histogram: Optional[np.ndarray] = None
    if _remaining(data, offset, FINGERPRINT_LEN):
        alt_fingerprint, offset = _read_vector(data, offset, FINGERPRINT_LEN)
    if _remaining(data, offset, HISTOGRAM_LEN):
        histogram, offset = _read_vector(data, offset, HISTOGRAM_LEN)
    if _remaining(data, offset, HISTOGRAM_LEN):
        alt_histogram, offset = _read_vector(data, offset, HISTOGRAM_LEN)

    return Template(
        label=label,
        fingerprint=fingerprint,
        alt_fingerprint=alt_fingerprint,
        histogram=histogram,
        alt_histogram=alt_histogram,
    )


class TemplateRepository:
    """Directory of per-label template files."""

    def __init__(self, directory: str | Path):
        self._dir = Path(directory)

    def path_for(self, label: str) -> Path:
        return self._dir / f"{label_slug(label)}{TEMPLATE_SUFFIX}"

    def _hashed_path(self, label: str) -> Path:
        digest = hashlib.sha1(label.encode("utf-8")).hexdigest()[:8]
        return self._dir / f"{label_slug(label)}_{digest}{TEMPLATE_SUFFIX}"

    def _resolve(self, label: str, owner: Optional[str]) -> Path:
        """Plain slug path, or a hashed one when another label already owns it."""
        path = self.path_for(label)
        if owner is None or owner == label:
            return path
        hashed = self._hashed_path(label)
        logger.warning(
            "Labels '%s' and '%s' share file name %s; saving '%s' as %s",
            owner,
            label,
            path.name,
            label,
            hashed.name,
        )
        return hashed

    def _files(self) -> list[Path]:
        if not self._dir.is_dir():
            return []
        return sorted(self._dir.glob(f"*{TEMPLATE_SUFFIX}"))

    def save_all(self, store: TemplateStore) -> int:
        """Replace the directory contents with the store's current templates."""
        templates = store.snapshot()
        self._dir.mkdir(parents=True, exist_ok=True)
        for old in self._files():
            old.unlink()
        owners: dict[Path, str] = {}
        for label in sorted(templates):
            path = self._resolve(label, owners.get(self.path_for(label)))
            owners.setdefault(path, label)
            path.write_bytes(encode_template(templates[label]))
        logger.info("Saved %s templates to %s", len(templates), self._dir)
        return len(templates)

    def save(self, template: Template) -> Path:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._resolve(template.label, self._stored_label(self.path_for(template.label)))
        path.write_bytes(encode_template(template))
        return path

    @staticmethod
    def _stored_label(path: Path) -> Optional[str]:
        if not path.exists():
            return None
        try:
            return decode_template(path.read_bytes()).label
        except (OSError, TemplateFormatError):
            return None

    def load_all(self) -> list[Template]:
        """Decode every readable record; corrupt files are skipped with a warning."""
        loaded: list[Template] = []
        for path in self._files():
            try:
                loaded.append(decode_template(path.read_bytes()))
            except (OSError, TemplateFormatError) as e:
                logger.warning("Failed to load template %s: %s", path.name, e)
        return loaded

    def load_into(self, store: TemplateStore) -> int:
        templates = self.load_all()
        stored = 0
        for template in templates:
            try:
                store.put(template)
                stored += 1
            except ValueError as e:
                logger.warning("Skipping persisted template '%s': %s", template.label, e)
        if stored:
            logger.info("Loaded %s templates from %s", stored, self._dir)
        return stored

    def clear(self) -> int:
        removed = 0
        for path in self._files():
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Failed to delete %s: %s", path.name, e)
        return removed
