# feedstore/rss_parse.py
from __future__ import annotations

from dataclasses import dataclass, field
import xml.etree.ElementTree as ET


MEDIA_NS = "http://search.yahoo.com/mrss/"


class FeedParseError(ValueError):
    """Raised when feed XML cannot be parsed (maps to PARSE_ERROR)."""


@dataclass(frozen=True)
class Enclosure:
    url: str
    mime: str


@dataclass
class ParsedItem:
    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str | None = None
    enclosure: Enclosure | None = None
    media_content: list[str] = field(default_factory=list)
    media_thumbnails: list[str] = field(default_factory=list)


@dataclass
class Channel:
    title: str = ""
    link: str = ""
    description: str = ""
    items: list[ParsedItem] = field(default_factory=list)


def _text_of(elem: ET.Element, path: str) -> str | None:
    found = elem.find(path)
    if found is None or found.text is None:
        return None
    text = found.text.strip()
    return text if text else None


def _media_urls(elem: ET.Element, tag: str) -> list[str]:
    # iter() also reaches entries nested in <media:group>
    urls = []
    for node in elem.iter(f"{{{MEDIA_NS}}}{tag}"):
        url = (node.get("url") or "").strip()
        if url:
            urls.append(url)
    return urls


def _parse_item(it: ET.Element) -> ParsedItem:
    enclosure = None
    enc = it.find("enclosure")
    if enc is not None:
        url = (enc.get("url") or "").strip()
        if url:
            enclosure = Enclosure(url=url, mime=(enc.get("type") or "").strip().lower())

    return ParsedItem(
        title=_text_of(it, "title") or "",
        link=_text_of(it, "link") or "",
        description=_text_of(it, "description") or "",
        pub_date=_text_of(it, "pubDate"),
        enclosure=enclosure,
        media_content=_media_urls(it, "content"),
        media_thumbnails=_media_urls(it, "thumbnail"),
    )


def parse_channel(data: bytes | str) -> Channel:
    """
    Convert an RSS 2.0 document into a Channel of ParsedItem objects.

    Rules:
    - Parse <item> elements under <rss><channel>
    - Missing title/link/description decode to "" (the item is kept)
    - pubDate is kept as raw RFC 2822 text, or None when absent
    - Image candidates (enclosure, media:content, media:thumbnail) are collected, not chosen
    - Preserve order
    - Malformed XML or no <channel> -> raise FeedParseError
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise FeedParseError(f"PARSE_ERROR: malformed XML: {exc}") from exc

    channel = root if root.tag == "channel" else root.find("channel")
    if channel is None:
        raise FeedParseError(f"PARSE_ERROR: no <channel> element under <{root.tag}>")

    return Channel(
        title=_text_of(channel, "title") or "",
        link=_text_of(channel, "link") or "",
        description=_text_of(channel, "description") or "",
        items=[_parse_item(it) for it in channel.findall("item")],
    )
