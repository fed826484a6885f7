"""Discovery run: invoke discoverers, merge, dedup and persist into the catalog."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.discovery.base import DiscovererBase, TaggedUrl
from app.discovery.classify import infer_document_type
from app.discovery.normalize import normalize_url
from app.discovery.registry import build_discoverers, select_sources
from app.services.catalog import CatalogStore
from app.services.job_log import JobLogger

logger = logging.getLogger(__name__)

JOB_TYPE = "DISCOVERY"


@dataclass(slots=True)
class DiscoveryOptions:
    sources: list[str] = field(default_factory=lambda: ["all"])
    max_hubs: int | None = None
    delay_ms: int | None = None


@dataclass(slots=True)
class DiscoveryResult:
    run_id: int
    total_discovered: int = 0
    new_documents: int = 0
    existing_updated: int = 0
    aliases_created: int = 0
    errors: int = 0
    by_source: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "runId": self.run_id,
            "totalDiscovered": self.total_discovered,
            "newDocuments": self.new_documents,
            "existingUpdated": self.existing_updated,
            "aliasesCreated": self.aliases_created,
            "errors": self.errors,
            "bySource": dict(self.by_source),
        }


@dataclass(slots=True)
class _MergedItem:
    primary: TaggedUrl
    canonical_url: str
    # Later (source, source_id) pairs that surfaced the same canonical URL.
    other_origins: list[tuple[str, str]] = field(default_factory=list)
    # True only while every sighting is a numbered-listing guess.
    speculative: bool = False


def merge_and_dedup(tagged: list[TaggedUrl]) -> list[_MergedItem]:
    """Keep the first raw item per canonical URL, in merged-sequence order."""
    merged: dict[str, _MergedItem] = {}
    for item in tagged:
        canonical = normalize_url(item.item.url)
        existing = merged.get(canonical)
        if existing is None:
            merged[canonical] = _MergedItem(primary=item, canonical_url=canonical, speculative=item.item.speculative)
            continue
        if not item.item.speculative:
            existing.speculative = False
        origin = (item.discovery_source, item.item.source_id)
        first = (existing.primary.discovery_source, existing.primary.item.source_id)
        if origin != first and origin not in existing.other_origins:
            existing.other_origins.append(origin)
    return list(merged.values())


class DiscoveryOrchestrator:
    def __init__(
        self,
        store: CatalogStore,
        discoverers: list[DiscovererBase] | None = None,
        job_log: JobLogger | None = None,
    ) -> None:
        self.store = store
        self.discoverers = discoverers
        self.job_log = job_log or JobLogger()

    def run(self, options: DiscoveryOptions | None = None) -> DiscoveryResult:
        options = options or DiscoveryOptions()
        discoverers = self.discoverers
        if discoverers is None:
            discoverers = build_discoverers(
                options.sources,
                max_hubs=options.max_hubs,
                delay_ms=options.delay_ms,
                job_log=self.job_log,
            )
            source_names = select_sources(options.sources)
        else:
            source_names = [d.name for d in discoverers]

        run = self.store.create_run(source_names, asdict(options))
        result = DiscoveryResult(run_id=run.id)
        self.job_log.info(JOB_TYPE, f"Discovery run {run.id} started: sources={','.join(source_names)}")

        tagged: list[TaggedUrl] = []
        for discoverer in discoverers:
            try:
                outcome = discoverer.run()
            except Exception as exc:
                logger.exception("Discoverer %s failed", discoverer.name)
                self.job_log.error(JOB_TYPE, f"{discoverer.name} failed: {exc.__class__.__name__}: {exc}")
                result.errors += 1
                result.by_source[discoverer.name] = 0
                continue
            result.errors += outcome.errors
            result.by_source[discoverer.name] = len(outcome.documents)
            tagged.extend(TaggedUrl(item=doc, discovery_source=discoverer.name) for doc in outcome.documents)

        merged = merge_and_dedup(tagged)
        result.total_discovered = len(merged)

        for entry in merged:
            try:
                self._persist(entry, result)
            except SQLAlchemyError as exc:
                self.store.rollback()
                logger.exception("Persisting %s failed", entry.canonical_url)
                self.job_log.error(JOB_TYPE, f"Persist failed for {entry.primary.item.url}: {exc.__class__.__name__}")
                result.errors += 1

        self.store.finish_run(
            run,
            urls_found=result.total_discovered,
            urls_new=result.new_documents,
            urls_changed=result.existing_updated,
            errors=result.errors,
        )
        self.job_log.success(JOB_TYPE, result.as_dict())
        return result

    def _persist(self, entry: _MergedItem, result: DiscoveryResult) -> None:
        item = entry.primary.item
        source = entry.primary.discovery_source
        existing = self.store.find_by_canonical_or_source(entry.canonical_url, item.url)

        if existing is None:
            try:
                doc = self.store.create_document(
                    source_url=item.url,
                    canonical_url=entry.canonical_url,
                    title=item.title,
                    file_type=item.file_type,
                    document_type=infer_document_type(item.url, item.file_type),
                    discovery_source=source,
                    source_id=item.source_id,
                    inferred=entry.speculative,
                )
            except IntegrityError:
                # Another run created it between lookup and insert.
                logger.info("Concurrent create for %s; counted as updated", entry.canonical_url)
                result.existing_updated += 1
                return
            result.new_documents += 1
            for other_source, other_id in entry.other_origins:
                self.store.touch_lineage(doc, other_source, other_id)
            return

        self.store.touch_lineage(existing, source, item.source_id)
        for other_source, other_id in entry.other_origins:
            self.store.touch_lineage(existing, other_source, other_id)
        self.store.backfill_canonical_url(existing, entry.canonical_url)
        if not entry.speculative:
            self.store.mark_observed(existing)
        if item.url not in {existing.source_url, existing.canonical_url}:
            if self.store.upsert_alias(item.url, existing.id, source):
                result.aliases_created += 1
        result.existing_updated += 1


def run_discovery(
    options: DiscoveryOptions | None = None,
    *,
    db: Session | None = None,
    discoverers: list[DiscovererBase] | None = None,
) -> DiscoveryResult:
    """Run one discovery pass against the catalog.

    Discoverer and per-item persistence failures are counted in the result;
    failures recording the run itself raise.
    """
    if db is None:
        with SessionLocal() as local_db:
            return run_discovery(options, db=local_db, discoverers=discoverers)
    return DiscoveryOrchestrator(CatalogStore(db), discoverers=discoverers).run(options)
