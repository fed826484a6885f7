from __future__ import annotations

import requests

from app.config import Settings, get_settings
from app.discovery.archive import ArchiveDiscoverer
from app.discovery.base import DiscovererBase, RateLimiter, build_http_session
from app.discovery.hub_crawler import HubCrawler
from app.discovery.sitemap import SitemapDiscoverer
from app.services.job_log import JobLogger

ALL_SOURCES = "all"

# Priority order: earlier sources win the dedup tie-break.
DISCOVERERS: dict[str, type[DiscovererBase]] = {
    HubCrawler.name: HubCrawler,
    SitemapDiscoverer.name: SitemapDiscoverer,
    ArchiveDiscoverer.name: ArchiveDiscoverer,
}
SOURCE_ORDER: tuple[str, ...] = tuple(DISCOVERERS)


def select_sources(sources: list[str] | tuple[str, ...] | None) -> list[str]:
    """Requested source names in priority order; `all` (or nothing) selects every source."""
    requested = {str(s).strip() for s in (sources or [ALL_SOURCES]) if str(s).strip()}
    unknown = requested - set(SOURCE_ORDER) - {ALL_SOURCES}
    if unknown:
        raise ValueError(f"Unknown discovery source(s): {', '.join(sorted(unknown))}")
    if not requested or ALL_SOURCES in requested:
        return list(SOURCE_ORDER)
    return [name for name in SOURCE_ORDER if name in requested]


def build_discoverers(
    sources: list[str] | None = None,
    *,
    max_hubs: int | None = None,
    delay_ms: int | None = None,
    settings: Settings | None = None,
    session: requests.Session | None = None,
    job_log: JobLogger | None = None,
) -> list[DiscovererBase]:
    settings = settings or get_settings()
    session = session or build_http_session(settings)
    limiter = RateLimiter.from_ms(delay_ms if delay_ms is not None else settings.discovery_delay_ms)
    common = {"session": session, "limiter": limiter, "job_log": job_log, "settings": settings}

    discoverers: list[DiscovererBase] = []
    for name in select_sources(sources):
        if name == HubCrawler.name:
            discoverers.append(HubCrawler(max_hubs=max_hubs, **common))
        else:
            discoverers.append(DISCOVERERS[name](**common))
    return discoverers
