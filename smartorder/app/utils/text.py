"""Text helpers."""

from __future__ import annotations

import re
import unicodedata


def slugify(name: str) -> str:
    """Return an ASCII, dash-separated id for a Vietnamese display name.

    >>> slugify("Phở bò")
    'pho-bo'
    """

    text = name.strip().lower().replace("đ", "d")
    text = unicodedata.normalize("NFD", text)
    text = "".join(ch for ch in text if unicodedata.category(ch) != "Mn")
    return re.sub(r"[^a-z0-9]+", "-", text).strip("-")
