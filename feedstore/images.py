# feedstore/images.py
"""
Pick a representative image URL for one parsed feed item.
Pure functions: no network, no database access.
"""
from __future__ import annotations

import re
from urllib.parse import quote

from feedstore.rss_parse import ParsedItem


PLACEHOLDER_BASE = "https://via.placeholder.com/300x200?text="

IMG_SRC_RE = re.compile(
    r"""<img\b[^>]*?\ssrc\s*=\s*["'](https?://[^"']+)["'][^>]*>""",
    re.IGNORECASE,
)


def placeholder_url(title: str) -> str:
    return PLACEHOLDER_BASE + quote(title, safe="")


def first_img_src(html: str) -> str | None:
    """Return the first absolute http(s) <img src> in an HTML fragment."""
    if not html:
        return None
    m = IMG_SRC_RE.search(html)
    return m.group(1) if m else None


def resolve_image_url(item: ParsedItem) -> str:
    """
    Ordered fallback chain, first match wins:
    1. enclosure url when its MIME type is image/*
    2. first media:content url
    3. first media:thumbnail url
    4. first <img src="http(s)://..."> in the description
    5. placeholder carrying the percent-encoded title

    Never raises; always returns a non-empty URL.
    """
    enc = item.enclosure
    if enc is not None and enc.url and enc.mime.startswith("image/"):
        return enc.url

    if item.media_content:
        return item.media_content[0]

    if item.media_thumbnails:
        return item.media_thumbnails[0]

    src = first_img_src(item.description)
    if src:
        return src

    return placeholder_url(item.title)
