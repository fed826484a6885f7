"""Fetch/extract stage: turn a catalogued URL into searchable text.

Content is fetched into memory only. Bytes are hashed, text is extracted and
the buffer is dropped; nothing binary reaches durable storage.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from datetime import datetime

import requests
from bs4 import BeautifulSoup
from pypdf import PdfReader
from pypdf.errors import PyPdfError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.db import SessionLocal
from app.discovery.base import RateLimiter, build_http_session
from app.discovery.classify import classify_file_type
from app.discovery.normalize import hash_bytes, hash_text, normalize_url
from app.models import DocumentRecord
from app.services.catalog import CatalogStore
from app.services.job_log import JobLogger

logger = logging.getLogger(__name__)

JOB_TYPE = "EXTRACT-PROCESS"
BATCH_JOB_TYPE = "EXTRACT-BATCH"

BOILERPLATE_SELECTORS = "script, style, nav, footer, header, .menu, .sidebar, .breadcrumb, .pager, #skip-link, .usa-banner"
CONTENT_SELECTORS = (
    "article",
    ".field--name-body",
    ".node__content",
    ".field-content",
    ".node-content",
    '[role="main"]',
    "main",
    "#content",
    ".content",
)
MIN_CONTENT_BLOCK_CHARS = 100
RATE_LIMIT_STATUSES = {403, 429}


class FetchError(Exception):
    def __init__(self, url: str, status_code: int | None = None, message: str = "") -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message or f"HTTP {status_code} fetching {url}")


class RateLimitedError(FetchError):
    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(url, status_code, f"Rate limited ({status_code}) fetching {url}")


@dataclass(slots=True)
class FetchResult:
    final_url: str
    status_code: int
    content_type: str
    content: bytes
    etag: str | None = None
    last_modified: str | None = None


@dataclass(slots=True)
class ExtractedText:
    text: str
    page_count: int
    title: str = ""


@dataclass(slots=True)
class Quality:
    score: float
    needs_ocr: bool


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def extract_pdf_text(data: bytes) -> ExtractedText:
    """Page-wise text of a PDF. Unreadable files yield no text and no pages."""
    try:
        reader = PdfReader(io.BytesIO(data))
        pages: list[str] = []
        for page in reader.pages:
            value = (page.extract_text() or "").strip()
            if value:
                pages.append(value)
        page_count = len(reader.pages)
    except (PyPdfError, ValueError, KeyError, TypeError, OSError) as exc:
        logger.info("PDF extraction failed: %s: %s", exc.__class__.__name__, exc)
        return ExtractedText(text="", page_count=0)
    return ExtractedText(text="\n\n".join(pages), page_count=page_count)


def extract_html_text(html: str | bytes) -> ExtractedText:
    soup = BeautifulSoup(html, "html.parser")
    for node in soup.select(BOILERPLATE_SELECTORS):
        node.decompose()

    main_text = ""
    for selector in CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is not None:
            candidate = node.get_text(" ")
            if len(candidate.strip()) > MIN_CONTENT_BLOCK_CHARS:
                main_text = candidate
                break
    if not main_text:
        body = soup.body or soup
        main_text = body.get_text(" ")

    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string.strip()
    if not title:
        h1 = soup.find("h1")
        title = h1.get_text(" ", strip=True) if h1 else ""
    return ExtractedText(text=_collapse(main_text), page_count=1, title=title)


def compute_quality(text: str, page_count: int, file_type: str, min_chars_per_page: int = 50) -> Quality:
    if file_type != "pdf" or page_count <= 0:
        return Quality(score=100.0 if text else 0.0, needs_ocr=False)
    chars_per_page = len(text) / page_count
    return Quality(score=round(chars_per_page, 2), needs_ocr=chars_per_page < min_chars_per_page)


def decide_status(quality: Quality, text: str, min_text_chars: int = 50) -> str:
    if quality.needs_ocr:
        return "needs_ocr"
    if text and len(text) > min_text_chars:
        return "indexed"
    return "error"


def detect_kind(content_type: str, url: str) -> str:
    low = (content_type or "").lower()
    if "pdf" in low:
        return "pdf"
    if "html" in low:
        return "html"
    return classify_file_type(url)


class ExtractionPipeline:
    def __init__(
        self,
        store: CatalogStore,
        session: requests.Session | None = None,
        settings: Settings | None = None,
        job_log: JobLogger | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.session = session or build_http_session(self.settings)
        self.job_log = job_log or JobLogger()
        self.limiter = limiter or RateLimiter.from_ms(self.settings.extract_batch_delay_ms)
        self.headers = {"User-Agent": self.settings.user_agent, "Accept": "*/*"}

    def _fetch(self, url: str, existing: DocumentRecord | None, limiter: RateLimiter) -> FetchResult | None:
        """Conditional GET into memory. None means 304 Not Modified."""
        headers = dict(self.headers)
        if existing is not None and existing.http_etag:
            headers["If-None-Match"] = existing.http_etag
        if existing is not None and existing.http_last_modified:
            headers["If-Modified-Since"] = existing.http_last_modified

        max_bytes = self.settings.extract_max_bytes
        limiter.wait()
        with self.session.get(
            url,
            headers=headers,
            timeout=self.settings.extract_timeout_seconds,
            allow_redirects=True,
            stream=True,
        ) as res:
            if res.status_code == 304:
                return None
            if res.status_code in RATE_LIMIT_STATUSES:
                raise RateLimitedError(url, res.status_code)
            if res.status_code != 200:
                raise FetchError(url, res.status_code)

            declared = res.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise FetchError(url, res.status_code, f"max size exceeded ({max_bytes} bytes) for {url}")
            chunks: list[bytes] = []
            byte_count = 0
            for chunk in res.iter_content(8192):
                if not chunk:
                    continue
                byte_count += len(chunk)
                if byte_count > max_bytes:
                    raise FetchError(url, res.status_code, f"max size exceeded ({max_bytes} bytes) for {url}")
                chunks.append(chunk)

            return FetchResult(
                final_url=res.url or url,
                status_code=res.status_code,
                content_type=res.headers.get("Content-Type", ""),
                content=b"".join(chunks),
                etag=res.headers.get("ETag") or None,
                last_modified=res.headers.get("Last-Modified") or None,
            )

    def process_document(self, url: str, title: str) -> None:
        """Fetch, extract and persist one document. Safe to re-run."""
        self._process(url, title, self.limiter)

    def _process(self, url: str, title: str, limiter: RateLimiter) -> None:
        self.job_log.info(JOB_TYPE, f"Processing: {title}")
        try:
            self._process_unchecked(url, title, limiter)
        except Exception as exc:
            self.store.db.rollback()
            record = self.store.find_by_source_url(url)
            if isinstance(exc, RateLimitedError):
                self.job_log.error(JOB_TYPE, {"message": f"Rate limited: {title}", "status": exc.status_code})
            elif isinstance(exc, FetchError) and exc.status_code == 404 and record is not None and record.inferred:
                self.job_log.info(JOB_TYPE, {"message": f"Inferred URL not found: {title}", "status": 404})
            else:
                logger.exception("Extraction failed for %s", url)
                self.job_log.error(JOB_TYPE, {"message": f"Failed: {title}", "error": str(exc)})
            fields = {"status": "error"}
            if record is None:
                fields["title"] = (title or "")[:512]
            self.store.upsert_by_source_url(url, **fields)

    def _process_unchecked(self, url: str, title: str, limiter: RateLimiter) -> None:
        existing = self.store.find_by_source_url(url)
        prior_status = existing.status if existing is not None else None
        prior_etag = existing.http_etag if existing is not None else None
        prior_last_modified = existing.http_last_modified if existing is not None else None
        prior_byte_hash = existing.byte_hash if existing is not None else None

        if existing is not None:
            doc = self.store.update_document(existing, status="processing")
        else:
            canonical = normalize_url(url)
            doc = self.store.upsert_by_source_url(
                url,
                title=(title or "")[:512],
                canonical_url=canonical if self.store.find_by_canonical_url(canonical) is None else None,
                file_type=classify_file_type(url),
                status="processing",
            )

        fetched = self._fetch(url, existing, limiter)
        now = datetime.utcnow()

        if fetched is None:
            restored = prior_status if prior_status not in {None, "processing"} else "pending"
            self.store.update_document(doc, status=restored, last_fetched_at=now)
            self.job_log.info(JOB_TYPE, f"Unchanged (304): {title}")
            return

        byte_hash = hash_bytes(fetched.content)
        if prior_byte_hash == byte_hash and prior_status == "indexed":
            self.store.update_document(
                doc,
                status="indexed",
                last_fetched_at=now,
                final_url=fetched.final_url,
                http_etag=fetched.etag or prior_etag,
                http_last_modified=fetched.last_modified or prior_last_modified,
            )
            self.job_log.info(JOB_TYPE, f"Content unchanged (hash match): {title}")
            return

        kind = detect_kind(fetched.content_type, fetched.final_url or url)
        if kind == "pdf":
            extracted = extract_pdf_text(fetched.content)
        elif kind == "html":
            extracted = extract_html_text(fetched.content)
        else:
            extracted = ExtractedText(text="", page_count=0)
            self.job_log.info(JOB_TYPE, f"Unsupported content type {fetched.content_type or 'unknown'} for: {title}")
        fetched.content = b""

        text = extracted.text
        quality = compute_quality(text, extracted.page_count, kind, self.settings.extract_min_chars_per_page)
        status = decide_status(quality, text, self.settings.extract_min_text_chars)

        self.store.update_document(
            doc,
            title=(title or extracted.title or doc.title or "")[:512],
            final_url=fetched.final_url,
            file_type=kind,
            content_type=(fetched.content_type or "")[:128] or None,
            raw_text=text or None,
            page_count=extracted.page_count,
            length_chars=len(text),
            byte_hash=byte_hash,
            text_hash=hash_text(text) if text else None,
            http_etag=fetched.etag,
            http_last_modified=fetched.last_modified,
            last_fetched_at=now,
            extraction_quality=quality.score,
            ocr_required=quality.needs_ocr,
            status=status,
        )
        self.job_log.success(
            JOB_TYPE,
            f"{status}: {title} ({extracted.page_count} pages, {len(text)} chars, quality {quality.score}"
            f"{', NEEDS OCR' if quality.needs_ocr else ''})",
        )

    def process_all_pending(
        self,
        batch_size: int = 10,
        delay_ms: int | None = None,
        max_documents: int = 500,
    ) -> dict[str, int]:
        """Serially process the oldest pending/needs_ocr records."""
        limiter = self.limiter if delay_ms is None else RateLimiter.from_ms(delay_ms)
        pending = [(row.source_url, row.title) for row in self.store.pending_documents(max_documents)]
        self.job_log.info(BATCH_JOB_TYPE, f"Processing {len(pending)} pending documents")

        processed = 0
        errors = 0
        for index, (url, title) in enumerate(pending, start=1):
            try:
                self._process(url, title, limiter)
            except Exception:
                logger.exception("Batch item failed for %s", url)
                self.store.db.rollback()
                errors += 1
            else:
                row = self.store.find_by_source_url(url)
                if row is None or row.status == "error":
                    errors += 1
                else:
                    processed += 1

            if batch_size > 0 and index % batch_size == 0:
                self.job_log.info(BATCH_JOB_TYPE, f"Progress: {index}/{len(pending)} ({errors} errors)")

        self.job_log.success(BATCH_JOB_TYPE, f"Batch complete: {processed} processed, {errors} errors")
        return {"processed": processed, "errors": errors}


def process_document(url: str, title: str, *, db: Session | None = None) -> None:
    if db is None:
        with SessionLocal() as local_db:
            return process_document(url, title, db=local_db)
    ExtractionPipeline(CatalogStore(db)).process_document(url, title)


def process_all_pending(
    batch_size: int = 10,
    delay_ms: int | None = None,
    max_documents: int = 500,
    *,
    db: Session | None = None,
) -> dict[str, int]:
    if db is None:
        with SessionLocal() as local_db:
            return process_all_pending(batch_size, delay_ms, max_documents, db=local_db)
    return ExtractionPipeline(CatalogStore(db)).process_all_pending(batch_size, delay_ms, max_documents)
