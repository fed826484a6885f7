from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

import requests

from app.config import Settings, get_settings
from app.services.job_log import JobLogger

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DiscoveredUrl:
    url: str
    title: str
    source_id: str  # hub page, sitemap or archive query that surfaced the URL
    file_type: str = "unknown"
    speculative: bool = False


@dataclass(slots=True)
class TaggedUrl:
    item: DiscoveredUrl
    discovery_source: str


@dataclass(slots=True)
class DiscoveryOutcome:
    documents: list[DiscoveredUrl] = field(default_factory=list)
    errors: int = 0


class RateLimiter:
    """Minimum interval between outbound requests to one origin."""

    def __init__(
        self,
        min_interval_seconds: float,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_interval_seconds = max(0.0, min_interval_seconds)
        self._sleep = sleep
        self._clock = clock
        self._last_request_at: float | None = None

    @classmethod
    def from_ms(cls, delay_ms: int | float | None, **kwargs) -> "RateLimiter":
        return cls((delay_ms or 0) / 1000.0, **kwargs)

    def wait(self) -> None:
        if self._last_request_at is not None and self.min_interval_seconds > 0:
            elapsed = self._clock() - self._last_request_at
            if elapsed < self.min_interval_seconds:
                self._sleep(self.min_interval_seconds - elapsed)
        self._last_request_at = self._clock()


def build_http_session(settings: Settings | None = None) -> requests.Session:
    settings = settings or get_settings()
    session = requests.Session()
    session.headers.update({"User-Agent": settings.user_agent})
    return session


class DiscovererBase:
    name: str = "base"
    job_type: str = "DISCOVERY"
    request_headers: dict[str, str] = {}

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        limiter: RateLimiter | None = None,
        job_log: JobLogger | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session = session or build_http_session(self.settings)
        self.limiter = limiter or RateLimiter.from_ms(self.settings.discovery_delay_ms)
        self.job_log = job_log or JobLogger(session_factory=None)
        self.timeout = self.settings.request_timeout_seconds

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self.settings.user_agent, **self.request_headers}

    def _fetch_text(self, url: str, *, timeout: float | None = None, failure_status: str = "ERROR") -> str | None:
        """GET `url` through the rate limiter; None on any network or HTTP error."""
        self.limiter.wait()
        try:
            res = self.session.get(
                url,
                headers=self._headers(),
                timeout=timeout or self.timeout,
                allow_redirects=True,
            )
            res.raise_for_status()
            return res.text
        except requests.RequestException as exc:
            self.job_log.log(self.job_type, failure_status, f"Failed to fetch {url}: {exc.__class__.__name__}: {exc}")
            return None

    def run(self) -> DiscoveryOutcome:
        raise NotImplementedError
