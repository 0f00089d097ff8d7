"""URL and domain allow-list matching."""

from __future__ import annotations

from urllib.parse import urlsplit

_WEB_SCHEMES = frozenset({"http", "https"})


def host_matches(host: str, allowed_domains: list[str] | tuple[str, ...]) -> bool:
    """Exact, case-insensitive host match; ``*.example.com`` also matches subdomains."""
    host = host.lower().rstrip(".")
    for entry in allowed_domains:
        domain = entry.strip().lower().rstrip(".")
        if not domain:
            continue
        if domain.startswith("*."):
            suffix = domain[1:]
            if host.endswith(suffix) or host == domain[2:]:
                return True
        elif host == domain:
            return True
    return False


def is_url_allowed(url: str, allowed_domains: list[str] | tuple[str, ...]) -> bool:
    """Relative URLs are allowed; absolute ones need a web scheme and an allowed host."""
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    if not parts.scheme and not parts.netloc:
        return not url.strip().startswith("//")
    if parts.scheme.lower() not in _WEB_SCHEMES:
        return False
    try:
        host = parts.hostname
    except ValueError:
        return False
    if not host or parts.username or parts.password:
        return False
    return host_matches(host, allowed_domains)
