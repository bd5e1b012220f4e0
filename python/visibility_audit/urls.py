from __future__ import annotations

import hashlib
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "gclid",
        "fbclid",
        "gclsrc",
        "dclid",
        "msclkid",
        "_ga",
        "mc_cid",
        "mc_eid",
    }
)

SKIP_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".ico",
    ".css", ".js", ".json", ".xml", ".zip", ".tar", ".gz", ".mp3", ".mp4",
    ".woff", ".woff2", ".ttf", ".eot", ".doc", ".docx", ".xls", ".xlsx",
)

DEFAULT_PORTS = {"http": 80, "https": 443}

# co.uk, com.au のような 2 階層のサフィックス
_SECOND_LEVEL_LABELS = frozenset({"co", "com", "org", "net", "edu", "gov"})


def normalize_url(url: str) -> Optional[str]:
    """クロール対象として扱える URL に正規化する。対象外なら None を返す。"""
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        return None
    host = (parts.hostname or "").lower()
    if not host:
        return None

    path = parts.path or "/"
    if path.lower().endswith(SKIP_EXTENSIONS):
        return None
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    netloc = host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() not in TRACKING_PARAMS
    ]
    return urlunsplit((scheme, netloc, path, urlencode(query_pairs), ""))


def strip_www(host: str) -> str:
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def url_fingerprint(url: str) -> Optional[str]:
    """スキームと www の差異を無視した重複判定用のハッシュ。"""
    normalized = normalize_url(url)
    if normalized is None:
        return None
    parts = urlsplit(normalized)
    host = strip_www(parts.hostname or "")
    port = parts.port
    if port is not None and port in DEFAULT_PORTS.values():
        port = None
    key = host if port is None else f"{host}:{port}"
    key = f"{key}{parts.path}"
    if parts.query:
        key = f"{key}?{parts.query}"
    return hashlib.sha1(key.lower().encode("utf-8")).hexdigest()


def registrable_domain(hostname: str) -> str:
    labels = hostname.lower().split(".")
    if len(labels) <= 2:
        return hostname.lower()
    if labels[-2] in _SECOND_LEVEL_LABELS:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def is_allowed_host(hostname: str, base_hostname: str, allow_subdomains: bool) -> bool:
    if not hostname:
        return False
    if allow_subdomains:
        return registrable_domain(strip_www(hostname)) == registrable_domain(strip_www(base_hostname))
    return strip_www(hostname) == strip_www(base_hostname)


def hostname_of(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def path_with_query(url: str) -> str:
    parts = urlsplit(url)
    path = parts.path or "/"
    if parts.query:
        return f"{path}?{parts.query}"
    return path
