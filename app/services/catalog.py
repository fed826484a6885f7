"""Catalog store: the single storage client handed to discovery and extraction.

Every public write commits on its own; there are no cross-record transactions.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import DiscoveryLineageEntry, DiscoveryRun, DocumentRecord, UrlAlias
from app.utils.jsonx import to_json

logger = logging.getLogger(__name__)

PENDING_STATUSES = ("pending", "needs_ocr")

# Columns callers may set through update_document / upsert_by_source_url.
_WRITABLE_FIELDS = frozenset(
    {
        "title",
        "canonical_url",
        "final_url",
        "file_type",
        "document_type",
        "content_type",
        "raw_text",
        "page_count",
        "length_chars",
        "summary",
        "byte_hash",
        "text_hash",
        "http_etag",
        "http_last_modified",
        "last_fetched_at",
        "extraction_quality",
        "ocr_required",
        "inferred",
        "status",
    }
)


class CatalogStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    # Documents

    def find_by_canonical_url(self, canonical_url: str) -> DocumentRecord | None:
        return self.db.execute(
            select(DocumentRecord).where(DocumentRecord.canonical_url == canonical_url).limit(1)
        ).scalars().first()

    def find_by_source_url(self, source_url: str) -> DocumentRecord | None:
        return self.db.execute(
            select(DocumentRecord).where(DocumentRecord.source_url == source_url).limit(1)
        ).scalars().first()

    def find_by_canonical_or_source(self, canonical_url: str, source_url: str) -> DocumentRecord | None:
        return self.find_by_canonical_url(canonical_url) or self.find_by_source_url(source_url)

    def create_document(
        self,
        *,
        source_url: str,
        canonical_url: str | None,
        title: str,
        file_type: str,
        document_type: str | None,
        discovery_source: str,
        source_id: str,
        inferred: bool = False,
    ) -> DocumentRecord:
        """Insert a pending record with a single lineage entry.

        An `IntegrityError` (a concurrent run created the same URL) is rolled
        back and re-raised.
        """
        today = date.today()
        row = DocumentRecord(
            source_url=source_url,
            canonical_url=canonical_url or None,
            title=(title or "")[:512],
            file_type=file_type or "unknown",
            document_type=document_type,
            status="pending",
            inferred=inferred,
        )
        row.lineage.append(
            DiscoveryLineageEntry(
                source=discovery_source[:32],
                source_id=source_id or "",
                first_seen=today,
                last_seen=today,
            )
        )
        self.db.add(row)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(row)
        return row

    def touch_lineage(self, doc: DocumentRecord, discovery_source: str, source_id: str) -> bool:
        """Append a lineage entry, or refresh `last_seen` on the matching one.

        Returns True when a new entry was appended.
        """
        today = date.today()
        source_id = source_id or ""
        for entry in doc.lineage:
            if entry.source == discovery_source and entry.source_id == source_id:
                entry.last_seen = today
                self.db.commit()
                return False
        doc.lineage.append(
            DiscoveryLineageEntry(source=discovery_source[:32], source_id=source_id, first_seen=today, last_seen=today)
        )
        self.db.commit()
        return True

    def backfill_canonical_url(self, doc: DocumentRecord, canonical_url: str) -> bool:
        if doc.canonical_url:
            return False
        doc.canonical_url = canonical_url
        self.db.commit()
        return True

    def mark_observed(self, doc: DocumentRecord) -> bool:
        """Clear the inferred flag once a discoverer has actually seen the URL."""
        if not doc.inferred:
            return False
        doc.inferred = False
        self.db.commit()
        return True

    def rollback(self) -> None:
        self.db.rollback()

    def update_document(self, doc: DocumentRecord, **fields: Any) -> DocumentRecord:
        unknown = set(fields) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown document fields: {', '.join(sorted(unknown))}")
        for key, value in fields.items():
            setattr(doc, key, value)
        doc.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(doc)
        return doc

    def upsert_by_source_url(self, source_url: str, **fields: Any) -> DocumentRecord:
        existing = self.find_by_source_url(source_url)
        if existing is not None:
            return self.update_document(existing, **fields)
        unknown = set(fields) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown document fields: {', '.join(sorted(unknown))}")
        row = DocumentRecord(source_url=source_url, **fields)
        self.db.add(row)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(row)
        return row

    def pending_documents(self, limit: int) -> list[DocumentRecord]:
        rows = self.db.execute(
            select(DocumentRecord)
            .where(DocumentRecord.status.in_(PENDING_STATUSES))
            .order_by(DocumentRecord.created_at.asc(), DocumentRecord.id.asc())
            .limit(max(0, limit))
        ).scalars()
        return list(rows)

    # Aliases

    def find_alias(self, alias_url: str) -> UrlAlias | None:
        return self.db.execute(select(UrlAlias).where(UrlAlias.alias_url == alias_url).limit(1)).scalars().first()

    def upsert_alias(self, alias_url: str, document_id: int, discovery_source: str) -> bool:
        """Point `alias_url` at a document. Returns True when the alias is new."""
        now = datetime.utcnow()
        existing = self.find_alias(alias_url)
        if existing is not None:
            existing.document_id = document_id
            existing.last_seen = now
            self.db.commit()
            return False
        self.db.add(
            UrlAlias(
                alias_url=alias_url,
                document_id=document_id,
                discovery_source=discovery_source[:32],
                first_seen=now,
                last_seen=now,
            )
        )
        self.db.commit()
        return True

    def aliases_for(self, document_id: int) -> list[UrlAlias]:
        return list(
            self.db.execute(
                select(UrlAlias).where(UrlAlias.document_id == document_id).order_by(UrlAlias.id.asc())
            ).scalars()
        )

    # Runs

    def create_run(self, sources: list[str], config: dict[str, Any]) -> DiscoveryRun:
        run = DiscoveryRun(source=",".join(sources)[:128], config_json=to_json(config), started_at=datetime.utcnow())
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        return run

    def finish_run(self, run: DiscoveryRun, *, urls_found: int, urls_new: int, urls_changed: int, errors: int) -> None:
        if run.completed_at is not None:
            logger.warning("Discovery run %s already finished; ignoring second completion", run.id)
            return
        run.urls_found = urls_found
        run.urls_new = urls_new
        run.urls_changed = urls_changed
        run.errors = errors
        run.completed_at = datetime.utcnow()
        self.db.commit()
