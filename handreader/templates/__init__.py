from handreader.templates.persistence import (
    TemplateFormatError,
    TemplateRepository,
    decode_template,
    encode_template,
    label_slug,
)
from handreader.templates.store import TemplateStore

__all__ = [
    "TemplateFormatError",
    "TemplateRepository",
    "TemplateStore",
    "decode_template",
    "encode_template",
    "label_slug",
]
