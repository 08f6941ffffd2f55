"""
Changelog fetching with bounded exponential-backoff retries.
"""

import logging
import time
from typing import Optional

import requests


logger = logging.getLogger(__name__)


REQUEST_HEADERS = {
    "User-Agent": "ChangelogBot/1.0 (+https://github.com)",
    "Accept": "text/markdown, text/plain, */*",
}

DEFAULT_RETRIES = 3


class FetchError(Exception):
    """Raised when a changelog cannot be fetched after all retries."""
    pass


def fetch_changelog(
    url: str,
    retries: int = DEFAULT_RETRIES,
    timeout: Optional[float] = None,
) -> str:
    """
    Fetch raw changelog text from a URL.

    Makes up to ``retries`` attempts. Between attempt i and i+1 (i starting
    at 0) it sleeps 2**i seconds; there is no sleep after the final attempt.
    No per-attempt timeout is applied unless ``timeout`` is given.

    Args:
        url: URL of the raw changelog (usually a Markdown file).
        retries: Maximum number of attempts.
        timeout: Optional request timeout in seconds.

    Returns:
        The response body as text.

    Raises:
        FetchError: If the last attempt fails with a non-2xx status
            or a transport error.
    """
    last_error: Optional[Exception] = None

    for attempt in range(retries):
        try:
            response = requests.get(url, headers=REQUEST_HEADERS, timeout=timeout)
            response.raise_for_status()
            return response.text
        except requests.RequestException as e:
            last_error = e
            logger.warning(f"Fetch attempt {attempt + 1}/{retries} failed for {url}: {e}")
            if attempt < retries - 1:
                time.sleep(2 ** attempt)

    if last_error is None:
        raise FetchError(f"Failed to fetch after retries: {url}")
    raise FetchError(f"Failed to fetch changelog {url}: {last_error}") from last_error
