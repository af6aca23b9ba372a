import logging
import threading
import time
from typing import Callable

import httpx
from selectolax.parser import HTMLParser

from .config import (
    LETTERBOXD_BASE_URL,
    USER_AGENT,
    HTTP_TIMEOUT,
    SCRAPER_HTTP2,
    MAX_HTTP_RETRIES,
    RETRY_INITIAL_DELAY,
    RETRY_BACKOFF_FACTOR,
    POLITENESS_INTERVAL_SECONDS,
)
from .errors import FetchError, NetworkBlocked, NetworkTransient, PageNotFound
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)

SOFT_BLOCK_PHRASES = (
    "please wait",
    "too many requests",
    "try again later",
    "access denied",
)


def listing_url(username: str, page: int) -> str:
    return f"{LETTERBOXD_BASE_URL}/{username}/films/page/{page}/"


class RateGate:
    """
    Politeness gate shared by every request of a run.

    wait() returns only once `interval` seconds have passed since the previous
    dispatch. The lock is held while sleeping, so concurrent callers are
    released one at a time.
    """

    def __init__(
        self,
        interval: float = POLITENESS_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_dispatch: float | None = None

    def wait(self) -> None:
        with self._lock:
            if self._last_dispatch is not None and self.interval > 0:
                remaining = self._last_dispatch + self.interval - self._clock()
                if remaining > 0:
                    self._sleep(remaining)
            self._last_dispatch = self._clock()


def detect_soft_block(markup: str) -> bool:
    """
    Detect a soft block: the page loads with 200 but is a CAPTCHA or a
    'please wait' notice instead of content.
    """
    tree = HTMLParser(markup)
    if tree.css_first("form[action*='captcha'], .captcha-container"):
        return True

    body_el = tree.css_first("body")
    body_text = body_el.text() if body_el else ""
    # Real pages are large; only short bodies are worth checking for phrases
    if len(body_text) > 2000:
        return False
    return any(phrase in body_text.lower() for phrase in SOFT_BLOCK_PHRASES)


class LetterboxdFetcher:
    """
    Fetches Letterboxd pages through a shared politeness gate.

    fetch() returns markup or raises PageNotFound, NetworkBlocked,
    NetworkTransient (after retries are exhausted) or FetchError.
    """

    def __init__(
        self,
        gate: RateGate | None = None,
        client: httpx.Client | None = None,
        max_retries: int = MAX_HTTP_RETRIES,
        retry_delay: float = RETRY_INITIAL_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.gate = gate or RateGate()
        self.client = client or httpx.Client(
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
            timeout=HTTP_TIMEOUT,
            http2=SCRAPER_HTTP2,
        )
        self._owns_client = client is None
        self._fetch_with_retry = retry_with_backoff(
            max_attempts=max_retries,
            initial_delay=retry_delay,
            backoff_factor=RETRY_BACKOFF_FACTOR,
            exceptions=(NetworkTransient,),
            sleep=sleep,
        )(self._fetch_once)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self):
        if self._owns_client:
            self.client.close()

    def fetch(self, url: str) -> str:
        return self._fetch_with_retry(url)

    def _fetch_once(self, url: str) -> str:
        self.gate.wait()
        logger.debug(f"GET {url}")

        try:
            resp = self.client.get(url)
        except httpx.TimeoutException as e:
            raise NetworkTransient(f"Timeout on {url}: {e}", url=url) from e
        except httpx.TransportError as e:
            raise NetworkTransient(f"Request error on {url}: {type(e).__name__}: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Request error on {url}: {type(e).__name__}: {e}", url=url) from e

        status = resp.status_code
        if status in (404, 410):
            raise PageNotFound(f"Page not found: {url}", url=url, status_code=status)

        if status in (403, 429):
            retry_after = resp.headers.get("Retry-After")
            hint = f" (Retry-After: {retry_after}s)" if retry_after else ""
            raise NetworkBlocked(f"HTTP {status} from {url}{hint}", url=url, status_code=status)

        if status >= 500:
            raise NetworkTransient(f"HTTP {status} from {url}", url=url, status_code=status)

        if not resp.is_success:
            raise FetchError(f"HTTP {status} from {url}", url=url, status_code=status)

        markup = resp.text
        if detect_soft_block(markup):
            raise NetworkBlocked(f"Soft block detected on {url}", url=url, status_code=status)
        return markup
