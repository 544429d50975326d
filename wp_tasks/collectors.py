"""
Release information collection from wordpress.org.

Fetches the latest stable version from the version-check API, scrapes the
release archive page into a catalog of release identifiers, and downloads
fresh salts.
"""

import json
import logging
import re
import socket
import urllib.error
import urllib.request

from .common import TaskError
from .config import Config

logger = logging.getLogger(__name__)

USER_AGENT = "wp-tasks/1.0"

# Reasons carried by FetchError
NETWORK = "network"
TIMEOUT = "timeout"
PARSE = "parse"

# Anchors pointing at a release zip, e.g. href='https://wordpress.org/wordpress-4.9.8.zip'
RELEASE_LINK_RE = re.compile(
    r"""<a\s[^>]*href=["'](?:https?:)?//wordpress\.org/wordpress-([^"'>]+?)\.zip["']""",
    re.IGNORECASE,
)

# Builds that are not plain core releases
EXCLUDED_BUILD_MARKERS = ("IIS", "mu")

# Release catalogs keyed by archive URL, kept for the process lifetime
_catalog_cache: dict[str, tuple[str, ...]] = {}


class FetchError(TaskError):
    """Raised when remote release data cannot be retrieved or parsed."""

    def __init__(self, message: str, reason: str = NETWORK, remediation: str | None = None):
        super().__init__(message, reason=reason, remediation=remediation)


def _is_timeout(error: BaseException) -> bool:
    if isinstance(error, (socket.timeout, TimeoutError)):
        return True
    if isinstance(error, urllib.error.URLError):
        return isinstance(error.reason, (socket.timeout, TimeoutError))
    return False


def http_get(url: str, timeout: int = 30, headers: dict[str, str] | None = None) -> bytes:
    """Perform HTTP GET request.

    Args:
        url: URL to fetch
        timeout: Timeout in seconds
        headers: Optional HTTP headers

    Returns:
        Response body as bytes

    Raises:
        FetchError: If the request fails or times out
    """
    default_headers = {"User-Agent": USER_AGENT}
    if headers:
        default_headers.update(headers)

    logger.debug(f"GET {url} (timeout {timeout}s)")
    try:
        req = urllib.request.Request(url, headers=default_headers)
        with urllib.request.urlopen(req, timeout=timeout) as response:
            return response.read()
    except Exception as e:
        if _is_timeout(e):
            raise FetchError(f"Timed out after {timeout}s fetching {url}", reason=TIMEOUT) from e
        raise FetchError(
            f"Failed to fetch {url}: {e}",
            reason=NETWORK,
            remediation="Check network connectivity or the configured endpoint",
        ) from e


def fetch_latest_version(config: Config | None = None) -> str:
    """Return the latest stable version advertised by the version-check API.

    Raises:
        FetchError: On network failure or when the response has no offers
    """
    config = config or Config()
    url = config.endpoints.version_check
    body = http_get(url, timeout=config.preferences.timeout_seconds)

    try:
        data = json.loads(body)
        version = data["offers"][0]["version"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise FetchError(f"Unexpected response from {url}: {e}", reason=PARSE) from e

    if not isinstance(version, str) or not version:
        raise FetchError(f"Unexpected response from {url}: empty version", reason=PARSE)

    logger.debug(f"Latest WordPress release: {version}")
    return version


def parse_release_links(html: str) -> tuple[str, ...]:
    """Extract release identifiers from the release archive page.

    Identifiers keep page order, duplicates are dropped, and IIS or
    multi-user builds are excluded.

    Args:
        html: Release archive page

    Returns:
        Tuple of version tokens (e.g. ("6.4.3", "6.4.2", "5.0-beta1"))
    """
    versions: list[str] = []
    seen: set[str] = set()

    for match in RELEASE_LINK_RE.finditer(html):
        token = match.group(1).strip()
        if any(marker in token for marker in EXCLUDED_BUILD_MARKERS):
            continue
        if token and token not in seen:
            seen.add(token)
            versions.append(token)

    return tuple(versions)


def fetch_release_catalog(config: Config | None = None) -> tuple[str, ...]:
    """Fetch every published release identifier from the release archive.

    Raises:
        FetchError: On network failure, or when the page lists no releases
    """
    config = config or Config()
    url = config.endpoints.release_archive

    if config.preferences.cache_catalog and url in _catalog_cache:
        logger.debug(f"Using cached release catalog for {url}")
        return _catalog_cache[url]

    html = http_get(url, timeout=config.preferences.timeout_seconds).decode("utf-8", "ignore")
    catalog = parse_release_links(html)

    if not catalog:
        raise FetchError(f"No release links found at {url}", reason=PARSE)

    logger.debug(f"Release catalog: {len(catalog)} entries from {url}")
    if config.preferences.cache_catalog:
        _catalog_cache[url] = catalog
    return catalog


def clear_catalog_cache() -> None:
    """Clear the release catalog cache."""
    _catalog_cache.clear()


def fetch_salts(config: Config | None = None) -> bytes:
    """Fetch a fresh set of salt definitions, returned verbatim."""
    config = config or Config()
    body = http_get(config.endpoints.salts, timeout=config.preferences.timeout_seconds)
    if not body.strip():
        raise FetchError(f"Empty response from {config.endpoints.salts}", reason=PARSE)
    return body
