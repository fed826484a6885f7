from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections import deque
from dataclasses import dataclass
from urllib.parse import urljoin

from app.discovery.base import DiscoveredUrl, DiscovererBase, DiscoveryOutcome
from app.discovery.classify import SITEMAP_RELEVANCE_PATTERNS, classify_file_type, is_relevant, title_from_url
from app.discovery.normalize import normalize_url

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SitemapResult(DiscoveryOutcome):
    sitemaps_parsed: int = 0
    total_urls_scanned: int = 0


@dataclass(slots=True)
class SitemapEntry:
    loc: str
    lastmod: str | None = None


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower() if isinstance(tag, str) else ""


def _child_text(node: ET.Element, name: str) -> str | None:
    for child in list(node):
        if _local_name(child.tag) == name:
            text = (child.text or "").strip()
            return text or None
    return None


def parse_sitemap(xml_text: str) -> tuple[list[str], list[SitemapEntry]]:
    """Return `(child sitemap locs, url entries)` from one sitemap document.

    Raises `ET.ParseError` on malformed XML.
    """
    root = ET.fromstring(xml_text.strip())
    children: list[str] = []
    entries: list[SitemapEntry] = []
    for node in root.iter():
        name = _local_name(node.tag)
        if name == "sitemap":
            loc = _child_text(node, "loc")
            if loc:
                children.append(loc)
        elif name == "url":
            loc = _child_text(node, "loc")
            if loc:
                entries.append(SitemapEntry(loc=loc, lastmod=_child_text(node, "lastmod")))
    return children, entries


class SitemapDiscoverer(DiscovererBase):
    name = "sitemap-parse"
    job_type = "DISCOVERY-SITEMAP"
    request_headers = {"Accept": "application/xml,text/xml;q=0.9,*/*;q=0.8"}

    def __init__(self, *, max_sitemaps: int | None = None, seeds: list[str] | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        base = self.settings.target_base_url.rstrip("/")
        self.max_sitemaps = max_sitemaps if max_sitemaps is not None else self.settings.sitemap_max_sitemaps
        self.seeds = list(seeds) if seeds is not None else [f"{base}/sitemap.xml"]

    def run(self) -> SitemapResult:
        result = SitemapResult()
        queue: deque[str] = deque(self.seeds)
        visited: set[str] = set()
        seen_docs: set[str] = set()

        self.job_log.info(self.job_type, f"Starting sitemap discovery with {len(self.seeds)} seed sitemaps")

        while queue and result.sitemaps_parsed < self.max_sitemaps:
            sitemap_url = queue.popleft()
            key = normalize_url(sitemap_url)
            if key in visited:
                continue
            visited.add(key)

            xml_text = self._fetch_text(sitemap_url)
            if xml_text is None:
                result.errors += 1
                continue
            try:
                children, entries = parse_sitemap(xml_text)
            except ET.ParseError as exc:
                self.job_log.error(self.job_type, f"Malformed sitemap {sitemap_url}: {exc}")
                result.errors += 1
                continue

            result.sitemaps_parsed += 1
            for child in children:
                child_url = urljoin(sitemap_url, child)
                if normalize_url(child_url) not in visited:
                    queue.append(child_url)

            result.total_urls_scanned += len(entries)
            relevant = 0
            for entry in entries:
                if not is_relevant(entry.loc, SITEMAP_RELEVANCE_PATTERNS):
                    continue
                doc_key = normalize_url(entry.loc)
                if doc_key in seen_docs:
                    continue
                seen_docs.add(doc_key)
                relevant += 1
                file_type = classify_file_type(entry.loc)
                result.documents.append(
                    DiscoveredUrl(
                        url=entry.loc,
                        title=title_from_url(entry.loc, "Untitled Page"),
                        source_id=sitemap_url,
                        file_type=file_type,
                    )
                )
            logger.debug("sitemap %s: %s children, %s urls, %s relevant", sitemap_url, len(children), len(entries), relevant)

        self.job_log.info(
            self.job_type,
            f"Sitemap discovery complete. {result.sitemaps_parsed} sitemaps parsed, "
            f"{result.total_urls_scanned} URLs scanned, {len(result.documents)} relevant, {result.errors} errors",
        )
        return result
