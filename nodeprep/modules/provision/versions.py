"""Release version resolution and downloads.

Network calls use a bounded timeout and a small number of retries with
exponential backoff. Persistent failure is raised as a typed error, never
ignored.
"""

import json
import logging
import re
from typing import Optional

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import DownloadError, VersionResolutionError

logger = logging.getLogger("nodeprep.versions")

VERSION_RE = re.compile(r'^v?(\d+)\.(\d+)\.(\d+)(?:[-+.].*)?$')
USER_AGENT = 'nodeprep'


def normalize_version(raw: str) -> str:
    """Reduce a release tag to its numeric ``MAJOR.MINOR.PATCH`` portion.

    >>> normalize_version('v1.31.2')
    '1.31.2'
    >>> normalize_version('v1.32.0-rc.1')
    '1.32.0'
    """
    match = VERSION_RE.match((raw or '').strip())
    if not match:
        raise VersionResolutionError(f"Malformed version string: {raw!r}")
    return '.'.join(match.groups())


def version_line(version: str) -> str:
    """Repository line for a version, e.g. ``v1.31`` for ``1.31.2``."""
    major, minor, _ = normalize_version(version).split('.')
    return f"v{major}.{minor}"


def parse_release_response(body: str) -> str:
    """Extract the version from a plain-text tag or a JSON ``tag_name`` document."""
    text = (body or '').strip()
    if text.startswith('{'):
        try:
            data = json.loads(text)
        except ValueError as e:
            raise VersionResolutionError(f"Malformed release response: {e}") from e
        tag = data.get('tag_name') if isinstance(data, dict) else None
        if not tag:
            raise VersionResolutionError("Release response has no tag_name")
        text = str(tag)
    return normalize_version(text)


def _retrying(network) -> Retrying:
    return Retrying(
        stop=stop_after_attempt(network.retries),
        wait=wait_exponential(multiplier=network.backoff, max=network.max_backoff),
        retry=retry_if_exception_type(requests.RequestException),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def http_get(url: str, network) -> requests.Response:
    """GET ``url`` with retries; raise the last ``requests`` error on exhaustion."""
    for attempt in _retrying(network):
        with attempt:
            logger.debug("GET %s (attempt %d)", url, attempt.retry_state.attempt_number)
            response = requests.get(
                url,
                timeout=network.timeout,
                headers={'User-Agent': USER_AGENT},
            )
            response.raise_for_status()
    return response


def latest_stable_version(url: str, network) -> str:
    """Look up the latest stable release published at ``url``."""
    try:
        with http_get(url, network) as response:
            body = response.text
    except requests.RequestException as e:
        raise VersionResolutionError(f"Failed to look up the latest release from {url}: {e}") from e
    version = parse_release_response(body)
    logger.info("🔎 Latest stable release at %s is %s", url, version)
    return version


def resolve_version(explicit: Optional[str], url: str, network) -> str:
    """Return the pinned version if given, the latest stable release otherwise."""
    if explicit:
        version = normalize_version(explicit)
        logger.info("Using pinned version %s", version)
        return version
    return latest_stable_version(url, network)


def fetch_bytes(url: str, network) -> bytes:
    """Download ``url`` into memory."""
    try:
        with http_get(url, network) as response:
            return response.content
    except requests.RequestException as e:
        raise DownloadError(f"Failed to download {url}: {e}") from e


def download(url: str, dest: str, network, host, mode: int = 0o644) -> str:
    """Download ``url`` and write it to ``dest`` on ``host``."""
    logger.info("⬇️  Downloading %s", url)
    data = fetch_bytes(url, network)
    host.write_file(dest, data, mode)
    logger.debug("Saved %d bytes to %s", len(data), dest)
    return dest
