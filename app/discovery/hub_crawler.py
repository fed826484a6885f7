"""Hub-page discovery, the primary source.

Walks the known listing pages of the target site breadth-first, collecting
document links and further listing pages. Listings whose items carry
sequential numbered file names are expanded arithmetically once the site stops
serving deeper pagination. Nothing is downloaded beyond the listing HTML.
"""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass, field
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from app.discovery.base import DiscoveredUrl, DiscovererBase, DiscoveryOutcome
from app.discovery.classify import (
    HUB,
    classify_file_type,
    classify_link,
    is_relevant,
    is_same_site,
    title_from_url,
)
from app.discovery.normalize import normalize_url

DATA_SET_COUNT = 12
NUMBERED_ITEM_RE = re.compile(r"(?P<label>[A-Za-z][A-Za-z_-]*)(?P<number>\d+)(?P<ext>\.pdf)$", re.IGNORECASE)
PAGE_PARAM_RE = re.compile(r"[?&]page=(\d+)")
DEFAULT_PER_PAGE = 50


def seed_hubs(base_url: str) -> list[str]:
    base = base_url.rstrip("/")
    return [
        f"{base}/epstein",
        f"{base}/epstein/doj-disclosures",
        *[f"{base}/epstein/doj-disclosures/data-set-{i}-files" for i in range(1, DATA_SET_COUNT + 1)],
    ]


@dataclass(slots=True)
class HubCrawlResult(DiscoveryOutcome):
    hubs_crawled: int = 0
    inferred: int = 0


@dataclass(slots=True)
class PageLinks:
    documents: list[DiscoveredUrl] = field(default_factory=list)
    hubs: list[str] = field(default_factory=list)


@dataclass(slots=True)
class NumberingScheme:
    """`<head><zero-padded number><ext>` naming shared by a listing's items."""

    head: str
    label: str
    ext: str
    width: int
    numbers: list[int]

    def url_for(self, number: int) -> str:
        return f"{self.head}{number:0{self.width}d}{self.ext}"

    def title_for(self, number: int) -> str:
        return f"{self.label}{number:0{self.width}d}"


def detect_numbering_scheme(urls: list[str]) -> NumberingScheme | None:
    groups: dict[tuple[str, str, str, int], list[int]] = {}
    for url in urls:
        bare = url.split("#", 1)[0].split("?", 1)[0]
        match = NUMBERED_ITEM_RE.search(bare)
        if not match:
            continue
        digits = match.group("number")
        key = (bare[: match.start("number")], match.group("label"), match.group("ext"), len(digits))
        groups.setdefault(key, []).append(int(digits))

    if not groups:
        return None
    (head, label, ext, width), numbers = max(groups.items(), key=lambda kv: len(kv[1]))
    if len(numbers) < 2:
        return None
    return NumberingScheme(head=head, label=label, ext=ext, width=width, numbers=sorted(set(numbers)))


def infer_numbered_urls(
    scheme: NumberingScheme,
    total_pages: int,
    per_page: int,
    source_id: str,
) -> list[DiscoveredUrl]:
    """URLs after the last observed item, up to the listing's estimated size."""
    start = scheme.numbers[0]
    end_of_known = scheme.numbers[-1]
    end = start + total_pages * per_page - 1
    return [
        DiscoveredUrl(
            url=scheme.url_for(number),
            title=scheme.title_for(number),
            source_id=source_id,
            file_type="pdf",
            speculative=True,
        )
        for number in range(end_of_known + 1, end + 1)
    ]


def detect_total_pages(soup: BeautifulSoup) -> int:
    last = soup.select_one('a[title="Go to last page"]') or soup.select_one("li.pager__item--last a")
    href = last.get("href") if last else None
    if href:
        match = PAGE_PARAM_RE.search(href)
        if match:
            return int(match.group(1)) + 1

    total = 1
    for a in soup.select('a[href*="page="]'):
        match = PAGE_PARAM_RE.search(a.get("href") or "")
        if match:
            total = max(total, int(match.group(1)) + 1)
    return total


def page_url(hub_url: str, page: int) -> str:
    parts = urlsplit(hub_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "page"]
    query.append(("page", str(page)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


def _has_page_param(url: str) -> bool:
    return any(k == "page" for k, _ in parse_qsl(urlsplit(url).query, keep_blank_values=True))


def _same_listing(url: str, hub_url: str) -> bool:
    a, b = urlsplit(url), urlsplit(hub_url)
    return a.netloc.lower() == b.netloc.lower() and a.path.rstrip("/") == b.path.rstrip("/")


class HubCrawler(DiscovererBase):
    name = "hub-scrape"
    job_type = "DISCOVERY-HUB"
    request_headers = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
    }

    def __init__(
        self,
        *,
        max_hubs: int | None = None,
        max_pages_per_hub: int | None = None,
        seeds: list[str] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.base_url = self.settings.target_base_url
        self.base_host = urlsplit(self.base_url).hostname or ""
        self.max_hubs = max_hubs if max_hubs is not None else self.settings.discovery_max_hubs
        self.max_pages_per_hub = (
            max_pages_per_hub if max_pages_per_hub is not None else self.settings.discovery_max_pages_per_hub
        )
        self.seeds = list(seeds) if seeds is not None else seed_hubs(self.base_url)

    def _headers(self) -> dict[str, str]:
        return {**super()._headers(), "Referer": f"{self.base_url}/epstein"}

    def extract_links(self, soup: BeautifulSoup, page_url_: str) -> PageLinks:
        links = PageLinks()
        seen: set[str] = set()
        for a in soup.find_all("a", href=True):
            href = (a.get("href") or "").strip()
            if not href or href.startswith("#") or href.lower().startswith(("javascript:", "mailto:", "tel:")):
                continue
            full = _absolute(page_url_, href)
            if not full or not is_same_site(full, self.base_host):
                continue
            key = normalize_url(full)
            if key in seen:
                continue
            seen.add(key)
            if not is_relevant(full):
                continue

            text = a.get_text(" ", strip=True)
            if classify_link(full, text) == HUB:
                links.hubs.append(full)
                continue
            file_type = classify_file_type(full)
            fallback = title_from_url(full) if file_type == "pdf" else "Untitled Page"
            links.documents.append(
                DiscoveredUrl(url=full, title=(text or fallback)[:512], source_id=page_url_, file_type=file_type)
            )
        return links

    def run(self) -> HubCrawlResult:
        result = HubCrawlResult()
        seen_docs: set[str] = set()
        visited: set[str] = set()
        queue: deque[str] = deque(self.seeds)

        self.job_log.info(self.job_type, f"Starting hub crawl with {len(self.seeds)} seed URLs")

        while queue and result.hubs_crawled < self.max_hubs:
            hub_url = queue.popleft()
            hub_key = normalize_url(hub_url)
            if hub_key in visited:
                continue
            visited.add(hub_key)
            result.hubs_crawled += 1

            html = self._fetch_text(hub_url)
            if html is None:
                result.errors += 1
                continue

            soup = BeautifulSoup(html, "html.parser")
            links = self.extract_links(soup, hub_url)
            for doc in links.documents:
                self._add(result, seen_docs, doc)

            total_pages = detect_total_pages(soup)
            first_page_pdfs = [d for d in links.documents if d.file_type == "pdf"]
            paged = (
                total_pages > 1
                and not _has_page_param(hub_url)
                and detect_numbering_scheme([d.url for d in first_page_pdfs]) is not None
            )
            if paged:
                self._expand_numbered_listing(hub_url, first_page_pdfs, total_pages, result, seen_docs, visited)

            for hub in links.hubs:
                if normalize_url(hub) in visited:
                    continue
                if paged and _same_listing(hub, hub_url):
                    continue
                queue.append(hub)

            self.job_log.info(
                self.job_type,
                f"Hub {result.hubs_crawled}/{self.max_hubs}: {hub_url} -> {len(links.documents)} docs found",
            )

        self.job_log.info(
            self.job_type,
            f"Hub crawl complete. {result.hubs_crawled} hubs crawled, {len(result.documents)} documents "
            f"discovered ({result.inferred} inferred), {result.errors} errors",
        )
        return result

    def _expand_numbered_listing(
        self,
        hub_url: str,
        first_page_pdfs: list[DiscoveredUrl],
        total_pages: int,
        result: HubCrawlResult,
        seen_docs: set[str],
        visited: set[str],
    ) -> None:
        per_page = len(first_page_pdfs) or DEFAULT_PER_PAGE
        known = list(first_page_pdfs)
        extra_pages = min(total_pages - 1, self.max_pages_per_hub - 1)

        for page in range(1, extra_pages + 1):
            url = page_url(hub_url, page)
            visited.add(normalize_url(url))
            html = self._fetch_text(url, failure_status="INFO")
            if html is None:
                # Deep pagination is rate limited; the rest is inferred.
                self.job_log.info(self.job_type, f"{hub_url}: page {page + 1} blocked, switching to inference")
                break
            for doc in self.extract_links(BeautifulSoup(html, "html.parser"), hub_url).documents:
                if self._add(result, seen_docs, doc) and doc.file_type == "pdf":
                    known.append(doc)

        scheme = detect_numbering_scheme([d.url for d in known])
        if scheme is None:
            return
        inferred = 0
        for doc in infer_numbered_urls(scheme, total_pages, per_page, hub_url):
            if self._add(result, seen_docs, doc):
                inferred += 1
        result.inferred += inferred
        self.job_log.info(
            self.job_type,
            f"{hub_url}: {total_pages} pages (~{total_pages * per_page} items), "
            f"observed {len(known)}, inferred {inferred}",
        )

    @staticmethod
    def _add(result: HubCrawlResult, seen_docs: set[str], doc: DiscoveredUrl) -> bool:
        key = normalize_url(doc.url)
        if key in seen_docs:
            return False
        seen_docs.add(key)
        result.documents.append(doc)
        return True


def _absolute(base: str, href: str) -> str:
    try:
        return urljoin(base, href)
    except ValueError:
        return ""
