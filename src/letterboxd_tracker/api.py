"""
Boundary operations consumed by the presentation layer.

Each call opens (and if needed creates) the store configured in
config.DB_PATH. Errors leave as TrackerError subclasses carrying a `kind`
and a human-readable message.
"""
import logging
import threading
from typing import Callable

from . import database, queries
from .config import DEFAULT_MAX_WORKERS
from .importer import Importer, RunSummary, validate_username
from .models import Movie
from .scraper import LetterboxdFetcher
from .stats import StatsSnapshot, compute_stats

logger = logging.getLogger(__name__)


def scrape_user_data(
    username: str,
    refresh: bool = False,
    fetcher: LetterboxdFetcher | None = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
    cancel_event: threading.Event | None = None,
    progress: Callable[[int, RunSummary], None] | None = None,
) -> RunSummary:
    """
    Import a user's public film diary.

    Raises InvalidUsername before any network activity and ImportInProgress
    if another import holds the store. Network and storage failures abort the
    run and are reported on the summary (see RunSummary.raise_for_error).
    """
    username = validate_username(username)

    owns_fetcher = fetcher is None
    fetcher = fetcher or LetterboxdFetcher()
    try:
        return Importer(fetcher, max_workers=max_workers).run(
            username, refresh=refresh, cancel_event=cancel_event, progress=progress,
        )
    finally:
        if owns_fetcher:
            fetcher.close()


def get_all_movies() -> list[Movie]:
    database.init_db()
    return queries.list_all()


def search_movies(query: str) -> list[Movie]:
    database.init_db()
    return queries.search(query)


def get_movies_by_rating(threshold: float) -> list[Movie]:
    database.init_db()
    return queries.filter_by_rating(threshold)


def get_movies_by_year(year: int) -> list[Movie]:
    database.init_db()
    return queries.by_year(year)


def get_movie_count() -> int:
    database.init_db()
    return queries.count()


def get_stats() -> StatsSnapshot:
    database.init_db()
    return compute_stats()


def delete_database() -> None:
    """Irreversibly remove every stored movie and compact the file."""
    database.init_db()
    deleted = database.delete_all_movies()
    database.run_maintenance(vacuum=True)
    logger.info(f"Database cleared ({deleted} movies removed)")
