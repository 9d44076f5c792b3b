"""Referrer domain extraction and source categorization."""
from __future__ import annotations

from urllib.parse import urlsplit

CATEGORY_DIRECT = "Direct"
CATEGORY_SEARCH = "Search"
CATEGORY_SOCIAL = "Social"
CATEGORY_EXTERNAL = "External"

SEARCH_ENGINES = (
    "google.com",
    "bing.com",
    "duckduckgo.com",
    "yahoo.com",
    "baidu.com",
    "yandex.com",
)

SOCIAL_NETWORKS = (
    "facebook.com",
    "twitter.com",
    "x.com",
    "t.co",
    "linkedin.com",
    "instagram.com",
    "pinterest.com",
    "reddit.com",
    "tiktok.com",
    "youtube.com",
)


def _strip_www(host: str) -> str:
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def _matches(domain: str, known: str) -> bool:
    """Exact domain or any of its subdomains (`news.google.com` matches `google.com`)."""
    return domain == known or domain.endswith("." + known)


def extract_domain_from_url(url: str | None) -> str | None:
    """
    Host of an absolute URL, lower-cased and without a `www.` prefix.
    Returns `None` for empty, relative or malformed URLs.
    """
    if not url or not url.strip():
        return None
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    return _strip_www(host)


def category_from_domain(domain: str | None, site_hostname: str | None = None) -> str:
    """
    Categorize a referrer domain as Direct, Search, Social or External.

    A referrer on the site's own hostname is an internal navigation, so it counts as Direct.
    """
    if not domain:
        return CATEGORY_DIRECT
    if site_hostname and _strip_www(site_hostname) == domain:
        return CATEGORY_DIRECT

    if any(_matches(domain, s) for s in SEARCH_ENGINES):
        return CATEGORY_SEARCH
    if any(_matches(domain, s) for s in SOCIAL_NETWORKS):
        return CATEGORY_SOCIAL
    return CATEGORY_EXTERNAL


def derive_referrer(document_referrer: str | None, site_hostname: str | None) -> tuple[str | None, str]:
    """
    Returns `(referrer_domain, referrer_category)` for a pageview.

    Same-hostname referrers are "no external referrer": domain `None`, category Direct.
    """
    domain = extract_domain_from_url(document_referrer)
    category = category_from_domain(domain, site_hostname)
    if category == CATEGORY_DIRECT:
        return None, category
    return domain, category
