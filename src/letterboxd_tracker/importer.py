"""
Import orchestration: walk a user's film pages, fetch details for new films
and reconcile every entry against the store.
"""
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator

from . import database, dedup
from .config import DEFAULT_MAX_WORKERS
from .dedup import Decision
from .errors import (
    ImportInProgress,
    InvalidUsername,
    NetworkBlocked,
    NetworkTransient,
    PageNotFound,
    TrackerError,
)
from .models import Movie
from .parser import ListingEntry, ListingPage, parse_film_page, parse_listing_page
from .scraper import LetterboxdFetcher, listing_url

logger = logging.getLogger(__name__)

_USERNAME_RE = re.compile(r'^[a-z0-9_-]+$')

# Store keys with an import in flight (one per database file)
_active_imports: set[str] = set()
_active_imports_lock = threading.Lock()


class RunStatus(Enum):
    DONE = "done"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass
class RunSummary:
    username: str
    refresh: bool = False
    status: RunStatus = RunStatus.DONE
    pages_visited: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    error: TrackerError | None = None
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    finished_at: str | None = None

    @property
    def aborted(self) -> bool:
        return self.status is RunStatus.ABORTED

    def raise_for_error(self) -> None:
        """Re-raise the error that aborted the run, if any."""
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict:
        return {
            'username': self.username,
            'refresh': self.refresh,
            'status': self.status.value,
            'pages_visited': self.pages_visited,
            'inserted': self.inserted,
            'updated': self.updated,
            'skipped': self.skipped,
            'errored': self.errored,
            'error': self.error.to_dict() if self.error else None,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
        }


def validate_username(username: str | None) -> str:
    """
    Normalize a Letterboxd username.

    Raises InvalidUsername for empty names or names with characters that
    cannot appear in a profile URL.
    """
    cleaned = (username or "").strip().lower()
    if not cleaned:
        raise InvalidUsername("Username must not be empty")
    if not _USERNAME_RE.match(cleaned):
        raise InvalidUsername(f"Invalid Letterboxd username: '{username}'")
    return cleaned


@contextmanager
def exclusive_import(store_key: str):
    """Allow a single active import per store; a second one is rejected."""
    with _active_imports_lock:
        if store_key in _active_imports:
            raise ImportInProgress(f"An import is already running against {store_key}")
        _active_imports.add(store_key)
    try:
        yield
    finally:
        with _active_imports_lock:
            _active_imports.discard(store_key)


def iter_listing_pages(fetcher: LetterboxdFetcher, username: str, start_page: int = 1) -> Iterator[tuple[int, ListingPage]]:
    """
    Lazily yield (page_number, page) for a user's films listing.

    Stops on a missing page, an empty page, or a page whose pagination shows
    no next link. Blocked and exhausted transient errors propagate.
    """
    page_number = start_page
    while True:
        try:
            markup = fetcher.fetch(listing_url(username, page_number))
        except PageNotFound:
            logger.debug(f"  Page {page_number} not found, listing exhausted")
            return

        page = parse_listing_page(markup)
        if page.is_empty:
            logger.debug(f"  Page {page_number} is empty, listing exhausted")
            return

        yield page_number, page

        if page.has_next is False:
            return
        page_number += 1


class Importer:
    """Drives one import run: pagination, detail fetches, reconciliation."""

    def __init__(self, fetcher: LetterboxdFetcher, max_workers: int = DEFAULT_MAX_WORKERS):
        self.fetcher = fetcher
        self.max_workers = max(1, max_workers)

    def run(
        self,
        username: str,
        refresh: bool = False,
        cancel_event: threading.Event | None = None,
        progress: Callable[[int, RunSummary], None] | None = None,
    ) -> RunSummary:
        """
        Import a user's films into the store.

        Args:
            username: Letterboxd username
            refresh: Overwrite already-stored films instead of skipping them
            cancel_event: Checked between pages; when set the run stops cleanly
            progress: Called with (page_number, summary) after each page

        Raises InvalidUsername or ImportInProgress before any network call.
        Every other failure is recorded on the returned summary.
        """
        username = validate_username(username)
        summary = RunSummary(username=username, refresh=refresh)

        with exclusive_import(database.store_key()):
            logger.info(f"Importing {username}'s films{' (refresh)' if refresh else ''}...")
            try:
                database.init_db()
                if cancel_event is not None and cancel_event.is_set():
                    summary.status = RunStatus.CANCELLED
                else:
                    for page_number, page in iter_listing_pages(self.fetcher, username):
                        summary.pages_visited += 1
                        summary.errored += page.malformed
                        self._import_page(page, summary)
                        logger.debug(f"  Page {page_number}: {len(page.entries)} films")

                        if progress is not None:
                            progress(page_number, summary)
                        if cancel_event is not None and cancel_event.is_set():
                            logger.info(f"Import cancelled after page {page_number}")
                            summary.status = RunStatus.CANCELLED
                            break
            except TrackerError as exc:
                logger.error(f"Import aborted: {exc.kind}: {exc}")
                summary.status = RunStatus.ABORTED
                summary.error = exc
            finally:
                summary.finished_at = datetime.now().isoformat()

        logger.info(
            f"Import {summary.status.value}: {summary.inserted} inserted, {summary.updated} updated, "
            f"{summary.skipped} skipped, {summary.errored} failed over {summary.pages_visited} pages"
        )
        return summary

    def _import_page(self, page: ListingPage, summary: RunSummary) -> None:
        seen: set[str] = set()
        pending: list[tuple[ListingEntry, Decision]] = []

        for entry in page.entries:
            if entry.external_id in seen:
                summary.skipped += 1
                continue
            seen.add(entry.external_id)

            decision = dedup.reconcile(entry, refresh=summary.refresh)
            if decision is Decision.SKIP:
                logger.debug(f"Skipping existing movie: {entry.title}")
                summary.skipped += 1
                continue
            pending.append((entry, decision))

        if not pending:
            return

        fatal: TrackerError | None = None
        results = self._fetch_details([entry for entry, _ in pending])

        for (entry, decision), result in zip(pending, results):
            if result is None:
                continue
            if isinstance(result, (NetworkBlocked, NetworkTransient)):
                fatal = fatal or result
                continue
            if isinstance(result, Exception):
                logger.warning(f"Error scraping details for {entry.title}: {result}")
                summary.errored += 1
                continue

            outcome = dedup.apply(result, decision)
            if outcome is Decision.INSERT:
                summary.inserted += 1
            elif outcome is Decision.UPDATE:
                summary.updated += 1
            else:
                summary.skipped += 1

        if fatal is not None:
            raise fatal

    def _fetch_details(self, entries: list[ListingEntry]) -> list[Movie | Exception | None]:
        """
        Fetch and parse detail pages with a bounded worker pool.

        Results keep the order of `entries`. After a blocked or exhausted
        transient error, entries not yet started are left as None.
        """
        halt = threading.Event()

        def work(entry: ListingEntry) -> Movie | None:
            if halt.is_set():
                return None
            try:
                return parse_film_page(self.fetcher.fetch(entry.source_url), entry)
            except (NetworkBlocked, NetworkTransient):
                halt.set()
                raise

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(entries))) as pool:
            futures = [pool.submit(work, entry) for entry in entries]

        return [f.exception() or f.result() for f in futures]
