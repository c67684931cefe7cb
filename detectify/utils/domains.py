"""URL and domain normalization utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
from urllib.parse import urlparse

import tldextract

# Bundled public suffix snapshot only; never fetch the list over the network.
_extract = tldextract.TLDExtract(suffix_list_urls=())


class InvalidURLError(ValueError):
    """Raised when a string cannot be turned into a fetchable http(s) URL."""

    def __init__(self, message: str, *, empty: bool = False):
        super().__init__(message)
        self.empty = empty


def ensure_url(value: str) -> str:
    """Return value with a scheme, defaulting to https."""
    raw = (value or "").strip()
    if not raw:
        return ""
    if "://" not in raw:
        return f"https://{raw}"
    return raw


def normalize_url(value: str, *, strip_www: bool = False) -> str:
    """
    Normalize a user-supplied URL for fetching and cache keys.

    - Trim whitespace, add https:// when no scheme is present
    - Lowercase the host, drop trailing colons and slashes
    - Optionally strip a leading "www."
    """
    raw = (value or "").strip()
    if not raw:
        raise InvalidURLError("Empty URL", empty=True)

    candidate = ensure_url(raw).rstrip(":/")
    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https"):
        raise InvalidURLError(f"Unsupported scheme: {parsed.scheme}")

    try:
        host = (parsed.hostname or "").strip(".")
        port = parsed.port
    except ValueError as exc:
        raise InvalidURLError(f"Invalid URL: {raw}") from exc
    if not host or " " in host:
        raise InvalidURLError(f"Invalid URL: {raw}")

    if strip_www and host.startswith("www.") and len(host) > 4:
        host = host[4:]

    netloc = f"{host}:{port}" if port else host
    path = parsed.path.rstrip(":/")
    url = f"{parsed.scheme}://{netloc}{path}"
    if parsed.query:
        url = f"{url}?{parsed.query}"
    return url


def extract_hostname(value: str) -> str:
    """Return the lowercase hostname for a URL or bare domain."""
    raw = (value or "").strip()
    if not raw:
        return ""
    try:
        return (urlparse(ensure_url(raw)).hostname or "").strip(".").lower()
    except ValueError:
        return ""


def canonicalize_domain(value: str) -> str:
    """
    Normalize a domain/URL to a canonical host key.

    - Lowercase
    - Strip leading "www."
    - Preserve port (if present)
    - Ignore path/query/fragment
    """
    raw = (value or "").strip()
    if not raw:
        return ""

    parsed = urlparse(ensure_url(raw))
    host = (parsed.hostname or raw.split("/")[0]).strip().lower().strip(".")
    if not host:
        return ""

    if host.startswith("www.") and len(host) > 4:
        host = host[4:]

    try:
        port = parsed.port
    except ValueError:
        port = None
    if port:
        host = f"{host}:{port}"

    return host


def _strip_port(host: str) -> str:
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host


def registered_domain(value: str) -> str:
    """Return the registrable domain for a host or URL (best-effort)."""
    host = _strip_port(canonicalize_domain(value))
    if not host:
        return ""
    extracted = _extract(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}".lower()
    return host


def is_false_positive_domain(value: str, domains: Iterable[str]) -> bool:
    """Check a URL/host against the false-positive deny-list.

    An entry matches the registrable domain exactly or appears inside the host.
    """
    host = extract_hostname(value)
    if not host:
        return False
    registered = registered_domain(host)
    for entry in domains:
        entry = (entry or "").strip().lower()
        if not entry:
            continue
        if entry == host or entry == registered or entry in host:
            return True
    return False


@dataclass(frozen=True)
class DetectionTarget:
    """A validated URL ready for detection."""

    url: str
    original: str
    host: str

    @classmethod
    def parse(cls, value: str) -> "DetectionTarget":
        url = normalize_url(value)
        return cls(url=url, original=value, host=extract_hostname(url))
