"""Pure URL/link classification rules shared by the discoverers.

Kept free of network access so the allow-list and the hub heuristics can be
tested on their own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable
from urllib.parse import parse_qsl, unquote, urlsplit

HUB_RELEVANCE_PATTERNS = (
    re.compile(r"/epstein/", re.IGNORECASE),
    re.compile(r"/usao-sdny/.*epstein", re.IGNORECASE),
    re.compile(r"/opa/.*epstein", re.IGNORECASE),
    re.compile(r"/archive/.*epstein", re.IGNORECASE),
)
SITEMAP_RELEVANCE_PATTERNS = HUB_RELEVANCE_PATTERNS[:3]

CONTENT_FILE_EXTENSIONS = (".pdf",)
HTML_EXTENSION_RE = re.compile(r"\.(html?|asp|php)$")
ANY_EXTENSION_RE = re.compile(r"\.\w{2,4}$")
LISTING_TEXT_MARKERS = ("data set", "view all")
LISTING_PATH_RE = re.compile(r"/(disclosures|releases|filings|documents)/?$", re.IGNORECASE)

DOCUMENT = "document"
HUB = "hub"


def is_relevant(url: str, patterns=HUB_RELEVANCE_PATTERNS) -> bool:
    return any(pattern.search(url) for pattern in patterns)


def classify_file_type(url: str) -> str:
    path = (urlsplit(url).path or "").lower()
    if path.endswith(CONTENT_FILE_EXTENSIONS):
        return "pdf"
    if HTML_EXTENSION_RE.search(path):
        return "html"
    # Pages without an extension on the target site are HTML.
    if not ANY_EXTENSION_RE.search(path):
        return "html"
    return "unknown"


def is_same_site(url: str, base_host: str) -> bool:
    host = (urlsplit(url).hostname or "").lower()
    base = (base_host or "").lower()
    if base.startswith("www."):
        base = base[4:]
    if not host or not base:
        return False
    return host == base or host.endswith(f".{base}")


def _has_page_param(url: str, _text: str) -> bool:
    return any(key == "page" for key, _ in parse_qsl(urlsplit(url).query, keep_blank_values=True))


def _has_listing_text(_url: str, text: str) -> bool:
    low = (text or "").lower()
    return any(marker in low for marker in LISTING_TEXT_MARKERS)


def _has_listing_path(url: str, _text: str) -> bool:
    return bool(LISTING_PATH_RE.search(urlsplit(url).path or ""))


def _is_content_file(url: str, _text: str) -> bool:
    return classify_file_type(url) == "pdf"


@dataclass(frozen=True, slots=True)
class LinkRule:
    name: str
    kind: str
    matches: Callable[[str, str], bool]


# Evaluated in order; the first matching rule decides. Links matching none are
# content pages and therefore documents.
LINK_RULES: tuple[LinkRule, ...] = (
    LinkRule("content-file", DOCUMENT, _is_content_file),
    LinkRule("pagination-marker", HUB, _has_page_param),
    LinkRule("listing-text", HUB, _has_listing_text),
    LinkRule("listing-path", HUB, _has_listing_path),
)


def classify_link(url: str, link_text: str = "") -> str:
    for rule in LINK_RULES:
        if rule.matches(url, link_text):
            return rule.kind
    return DOCUMENT


def infer_document_type(url: str, file_type: str) -> str:
    if file_type == "pdf":
        return "EFTA Disclosure" if "EFTA" in url else "Court Document"
    return "Web Page"


def title_from_url(url: str, fallback: str = "Untitled") -> str:
    name = PurePosixPath(unquote(urlsplit(url).path or "/")).name
    name = re.sub(r"\.(pdf|html?)$", "", name, flags=re.IGNORECASE)
    return name or fallback
