"""URL canonicalization and content fingerprints.

`normalize_url` produces the dedup key used across every discovery source;
the hash helpers fingerprint fetched bytes and extracted text so that a
re-fetch of unchanged content can be recognized without storing the content.
"""

from __future__ import annotations

import hashlib
import logging
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

import requests

logger = logging.getLogger(__name__)

TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "msclkid",
        "ref",
        "source",
        "mc_cid",
        "mc_eid",
    }
)
CANONICAL_SCHEME = "https"
REDIRECT_STATUSES = {301, 302, 303, 307, 308}
DEFAULT_PROBE_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
}


def normalize_url(raw_url: str) -> str:
    """Return the canonical dedup form of `raw_url`.

    Forces https, lowercases the host, drops tracking parameters and the
    fragment, sorts the remaining query parameters by key and removes a
    trailing slash unless the path is the root. Input that cannot be parsed as
    an absolute http(s) URL is returned unchanged.
    """
    if not isinstance(raw_url, str):
        return raw_url
    try:
        parts = urlsplit(raw_url.strip())
        if parts.scheme.lower() not in {"http", "https"} or not parts.netloc:
            return raw_url
        host = parts.hostname or ""
        if not host:
            return raw_url
        port = parts.port
    except ValueError:
        return raw_url

    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and port != 443:
        netloc = f"{host}:{port}"
    if "@" in parts.netloc:
        userinfo = parts.netloc.rsplit("@", 1)[0]
        netloc = f"{userinfo}@{netloc}"

    # surrogateescape keeps undecodable percent-escapes byte-exact.
    pairs = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True, errors="surrogateescape")
        if k not in TRACKING_PARAMS
    ]
    pairs.sort(key=lambda kv: kv[0])
    query = urlencode(pairs, errors="surrogateescape")

    path = parts.path.rstrip("/") or "/"
    return urlunsplit((CANONICAL_SCHEME, netloc, path, query, ""))


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def resolve_redirects(
    url: str,
    session: requests.Session | None = None,
    *,
    timeout: float = 15,
    max_redirects: int = 10,
    headers: dict[str, str] | None = None,
) -> str:
    """Follow a HEAD redirect chain of at most `max_redirects` hops.

    Any failure returns the original URL; the full fetch resolves it again.
    """
    http = session or requests.Session()
    current = url
    try:
        for _ in range(max_redirects + 1):
            res = http.head(
                current,
                allow_redirects=False,
                timeout=timeout,
                headers=headers or DEFAULT_PROBE_HEADERS,
            )
            location = res.headers.get("Location") or res.headers.get("location")
            if res.status_code in REDIRECT_STATUSES and location:
                current = urljoin(current, location)
                continue
            if res.status_code >= 400:
                return url
            return current
    except requests.RequestException as exc:
        logger.debug("redirect probe failed for %s: %s", url, exc)
        return url
    finally:
        if session is None:
            http.close()
    logger.debug("redirect chain longer than %s hops for %s", max_redirects, url)
    return url
