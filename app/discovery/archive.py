"""Historical-snapshot discovery through the Wayback Machine CDX index.

Only original URLs are reported; nothing is fetched from the archive itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import requests

from app.discovery.base import DiscoveredUrl, DiscovererBase, DiscoveryOutcome
from app.discovery.classify import classify_file_type, title_from_url
from app.discovery.normalize import normalize_url

logger = logging.getLogger(__name__)

CDX_ENDPOINT = "https://web.archive.org/cdx/search/cdx"
CDX_FIELDS = "original,timestamp,mimetype,statuscode,digest"
CDX_QUERIES = (
    "justice.gov/epstein/*",
    "justice.gov/usao-sdny/*epstein*",
    "justice.gov/opa/*epstein*",
)
RELEVANT_MIME_TYPES = frozenset({"application/pdf", "text/html", "application/xhtml+xml"})


@dataclass(slots=True)
class ArchiveResult(DiscoveryOutcome):
    total_records: int = 0
    unique_urls: int = 0


@dataclass(slots=True)
class CdxRecord:
    original: str
    timestamp: str
    mimetype: str
    statuscode: str
    digest: str


def parse_cdx_rows(payload) -> list[CdxRecord]:
    """Rows of a JSON CDX response; the first row is the field header."""
    if not isinstance(payload, list) or len(payload) < 2:
        return []
    header = [str(h) for h in payload[0]]
    records: list[CdxRecord] = []
    for row in payload[1:]:
        if not isinstance(row, list):
            continue
        values = dict(zip(header, row))
        original = str(values.get("original") or "").strip()
        if not original:
            continue
        records.append(
            CdxRecord(
                original=original,
                timestamp=str(values.get("timestamp") or ""),
                mimetype=str(values.get("mimetype") or "").split(";", 1)[0].strip().lower(),
                statuscode=str(values.get("statuscode") or ""),
                digest=str(values.get("digest") or ""),
            )
        )
    return records


class ArchiveDiscoverer(DiscovererBase):
    name = "ia-cdx"
    job_type = "DISCOVERY-IA-CDX"

    def __init__(
        self,
        *,
        queries: tuple[str, ...] | list[str] = CDX_QUERIES,
        limit: int | None = None,
        endpoint: str = CDX_ENDPOINT,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.queries = tuple(queries)
        self.limit = limit if limit is not None else self.settings.archive_limit_per_query
        self.endpoint = endpoint
        self.timeout = self.settings.archive_timeout_seconds

    def query(self, pattern: str) -> list[CdxRecord] | None:
        """One CDX query; None when the request itself failed."""
        params = {
            "url": pattern,
            "output": "json",
            "fl": CDX_FIELDS,
            "filter": "statuscode:200",
            "collapse": "urlkey",
            "limit": str(self.limit),
        }
        self.limiter.wait()
        try:
            res = self.session.get(self.endpoint, params=params, headers=self._headers(), timeout=self.timeout)
            res.raise_for_status()
            payload = res.json()
        except (requests.RequestException, ValueError) as exc:
            self.job_log.error(self.job_type, f"CDX query failed for {pattern}: {exc.__class__.__name__}: {exc}")
            return None
        return parse_cdx_rows(payload)

    def run(self) -> ArchiveResult:
        result = ArchiveResult()
        seen: set[str] = set()

        self.job_log.info(self.job_type, f"Starting CDX discovery with {len(self.queries)} queries")

        for pattern in self.queries:
            records = self.query(pattern)
            if not records:
                # A failed call and a genuinely empty answer both count.
                reason = "request failed" if records is None else "no rows"
                self.job_log.error(self.job_type, f"CDX query {pattern}: {reason}")
                result.errors += 1
                continue

            result.total_records += len(records)
            kept = 0
            for record in records:
                if record.mimetype not in RELEVANT_MIME_TYPES:
                    continue
                key = normalize_url(record.original)
                if key in seen:
                    continue
                seen.add(key)
                kept += 1
                file_type = "pdf" if record.mimetype == "application/pdf" else classify_file_type(record.original)
                result.documents.append(
                    DiscoveredUrl(
                        url=record.original,
                        title=title_from_url(record.original, "Untitled Page"),
                        source_id=f"ia-cdx:{pattern}",
                        file_type=file_type,
                    )
                )
            logger.debug("CDX %s: %s records, %s kept", pattern, len(records), kept)

        result.unique_urls = len(result.documents)
        self.job_log.info(
            self.job_type,
            f"CDX discovery complete. {result.total_records} records, {result.unique_urls} unique URLs, "
            f"{result.errors} errors",
        )
        return result
