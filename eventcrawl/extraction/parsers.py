"""Resilient HTML parsing helpers.

Includes:
- BeautifulSoup/lxml soup construction
- text and attribute lookups relative to one element
- image URL discovery (img src, lazy-load attributes, CSS backgrounds)
- HTML condensing for LLM prompts

This module should NOT enforce a schema. It just provides primitives.
"""

from __future__ import annotations

import re
from typing import Optional

from bs4 import BeautifulSoup, Tag
from bs4.element import Comment
from soupsieve import SelectorSyntaxError

# soupsieve rejects some selectors an LLM may produce
SELECTOR_ERRORS = (ValueError, SelectorSyntaxError)

_WS_RE = re.compile(r"\s+")
_BG_URL_RE = re.compile(r"url\(\s*['\"]?([^'\")]+)['\"]?\s*\)")

_LAZY_IMAGE_ATTRS = ("src", "data-src", "data-lazy-src", "data-original")
_NOISE_TAGS = ("script", "style", "noscript", "svg", "iframe", "head")


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def collapse_ws(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def get_text(html: str) -> str:
    """Visible text of a page."""
    soup = make_soup(html)
    for t in soup(["script", "style", "noscript"]):
        t.extract()
    return collapse_ws(soup.get_text(" ", strip=True))


def select_text(el: Tag, selector: Optional[str]) -> Optional[str]:
    """Text of the first match for `selector` inside `el`."""
    if not selector:
        return None
    try:
        node = el.select_one(selector)
    except SELECTOR_ERRORS:
        return None
    if node is None:
        return None
    return collapse_ws(node.get_text(" ", strip=True)) or None


def select_attr(el: Tag, selector: Optional[str], attr: str) -> Optional[str]:
    if not selector:
        return None
    try:
        node = el.select_one(selector)
    except SELECTOR_ERRORS:
        return None
    if node is None:
        return None
    value = node.get(attr)
    return str(value) if value else None


def first_link(el: Tag) -> Optional[str]:
    if el.name == "a" and el.get("href"):
        return str(el["href"])
    anchor = el.find("a", href=True)
    return str(anchor["href"]) if anchor else None


def image_url(el: Tag) -> Optional[str]:
    """First image in `el`: <img> (incl. lazy-load attrs) or CSS background."""
    img = el.find("img")
    if img is not None:
        for attr in _LAZY_IMAGE_ATTRS:
            if img.get(attr) and not str(img[attr]).startswith("data:"):
                return str(img[attr])
    styled = [el] + el.select("[style*='background']")
    for node in styled:
        m = _BG_URL_RE.search(str(node.get("style") or ""))
        if m:
            return m.group(1)
    return None


def datetime_attr(el: Tag) -> Optional[str]:
    node = el if el.has_attr("datetime") else el.find(attrs={"datetime": True})
    return str(node["datetime"]) if node is not None else None


def condense_html(html: str, *, max_chars: int = 15_000) -> str:
    """
    Strip scripts, styles and comments and truncate, so a listing page fits
    in an LLM prompt while keeping tags and class names for selector work.
    """
    soup = make_soup(html)
    for t in soup(list(_NOISE_TAGS)):
        t.decompose()
    for c in soup.find_all(string=lambda s: isinstance(s, Comment)):
        c.extract()
    body = soup.body or soup
    text = _WS_RE.sub(" ", str(body))
    return text[:max_chars]
