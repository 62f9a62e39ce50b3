"""Tokenisation and URL normalisation used for near-duplicate detection."""

import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_NON_WORD_RE = re.compile(r"[^\w\s]")
_TRACKING_PREFIX = "utm_"
_TRACKING_PARAMS = {"fbclid", "gclid", "ref"}
# Second-level labels under which registrations happen one level deeper (example.co.uk)
_SECOND_LEVEL_LABELS = {"ac", "co", "com", "edu", "gov", "net", "org"}

MAX_TOKENS = 50


def tokenize(text: str, limit: int = MAX_TOKENS) -> list[str]:
    """Lowercase word tokens longer than two characters, at most ``limit`` of them."""
    words = _NON_WORD_RE.sub(" ", text.lower()).split()
    return [w for w in words if len(w) > 2][:limit]


def jaccard(a: str, b: str) -> float:
    ta, tb = set(tokenize(a)), set(tokenize(b))
    if not ta and not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def url_host(url: str) -> str:
    """Lowercased host without a leading ``www.``; empty when unparseable."""
    try:
        host = urlsplit(url.strip()).hostname or ""
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def is_valid_url(url: str) -> bool:
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme in {"http", "https"} and bool(parts.hostname)


def registrable_domain(host: str) -> str:
    labels = [label for label in host.split(".") if label]
    if len(labels) <= 2:
        return ".".join(labels)
    if len(labels[-1]) == 2 and labels[-2] in _SECOND_LEVEL_LABELS:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def domain_similarity(url_a: str, url_b: str) -> float:
    """1.0 for the same host, 0.7 for the same registrable domain, else 0.0."""
    host_a, host_b = url_host(url_a), url_host(url_b)
    if not host_a or not host_b:
        return 0.0
    if host_a == host_b:
        return 1.0
    if registrable_domain(host_a) == registrable_domain(host_b):
        return 0.7
    return 0.0


def normalize_url(url: str) -> str:
    """Canonical form used for identity: no scheme case, www, fragment, tracking or trailing slash."""
    raw = url.strip()
    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw.lower()
    if not parts.hostname:
        return raw.lower()
    query = urlencode(
        sorted(
            (k, v)
            for k, v in parse_qsl(parts.query, keep_blank_values=True)
            if not (k.lower().startswith(_TRACKING_PREFIX) or k.lower() in _TRACKING_PARAMS)
        )
    )
    path = parts.path.rstrip("/")
    return urlunsplit(("https", url_host(raw), path, query, ""))


def normalize_title(title: str) -> str:
    return " ".join(_NON_WORD_RE.sub(" ", title.lower()).split())


__all__ = [
    "domain_similarity",
    "is_valid_url",
    "jaccard",
    "normalize_title",
    "normalize_url",
    "registrable_domain",
    "tokenize",
    "url_host",
]
