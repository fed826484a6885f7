from datetime import date, datetime

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from app.db import Base

DOCUMENT_STATUSES = ("pending", "processing", "indexed", "needs_ocr", "error")
FILE_TYPES = ("pdf", "html", "unknown")
JOB_LOG_STATUSES = ("INFO", "SUCCESS", "ERROR")


class DocumentRecord(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("ux_documents_canonical_url", "canonical_url", unique=True),
        Index("ix_documents_byte_hash", "byte_hash"),
        Index("ix_documents_text_hash", "text_hash"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(512), default="", nullable=False)
    # First-seen URL as returned by a discoverer; never rewritten.
    source_url = Column(Text, unique=True, nullable=False, index=True)
    canonical_url = Column(Text, nullable=True)
    final_url = Column(Text, nullable=True)

    file_type = Column(String(16), default="unknown", nullable=False)
    document_type = Column(String(64), nullable=True, index=True)
    content_type = Column(String(128), nullable=True)

    raw_text = Column(Text, nullable=True)
    page_count = Column(Integer, nullable=True)
    length_chars = Column(Integer, nullable=True)
    summary = Column(Text, nullable=True)

    byte_hash = Column(String(64), nullable=True)
    text_hash = Column(String(64), nullable=True)

    http_etag = Column(String(255), nullable=True)
    http_last_modified = Column(String(64), nullable=True)
    last_fetched_at = Column(DateTime, nullable=True)

    extraction_quality = Column(Float, nullable=True)
    ocr_required = Column(Boolean, default=False, nullable=False)
    # Set while the only sightings are numbered-listing guesses.
    inferred = Column(Boolean, default=False, nullable=False)

    status = Column(String(16), default="pending", nullable=False, index=True)  # see DOCUMENT_STATUSES
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    lineage = relationship(
        "DiscoveryLineageEntry",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DiscoveryLineageEntry.id",
    )


class DiscoveryLineageEntry(Base):
    __tablename__ = "discovery_lineage"
    __table_args__ = (UniqueConstraint("document_id", "source", "source_id", name="ux_discovery_lineage_origin"),)

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, index=True)
    source = Column(String(32), nullable=False)  # hub-scrape / sitemap-parse / ia-cdx
    source_id = Column(Text, default="", nullable=False)  # origin hub, sitemap or archive query
    first_seen = Column(Date, default=date.today, nullable=False)
    last_seen = Column(Date, default=date.today, nullable=False)

    document = relationship("DocumentRecord", back_populates="lineage")


class UrlAlias(Base):
    __tablename__ = "url_aliases"

    id = Column(Integer, primary_key=True, index=True)
    alias_url = Column(Text, unique=True, nullable=False, index=True)
    # Weak reference: the document does not own its aliases.
    document_id = Column(Integer, nullable=False, index=True)
    discovery_source = Column(String(32), default="", nullable=False)
    first_seen = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_seen = Column(DateTime, default=datetime.utcnow, nullable=False)


class DiscoveryRun(Base):
    __tablename__ = "discovery_runs"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String(128), default="", nullable=False)
    config_json = Column(Text, default="{}", nullable=False)
    urls_found = Column(Integer, default=0, nullable=False)
    urls_new = Column(Integer, default=0, nullable=False)
    urls_changed = Column(Integer, default=0, nullable=False)
    errors = Column(Integer, default=0, nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)


class JobLog(Base):
    __tablename__ = "job_logs"

    id = Column(Integer, primary_key=True, index=True)
    job_type = Column(String(64), nullable=False, index=True)
    status = Column(String(16), default="INFO", nullable=False, index=True)
    details_json = Column(Text, default="{}", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
