import argparse
import atexit
import json
import logging
import signal
import sys
import threading

from tqdm import tqdm

from . import api
from .config import DEFAULT_MAX_WORKERS
from .database import close_pool
from .errors import TrackerError
from .importer import RunSummary
from .models import Movie
from .parser import rating_to_stars

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)


def _format_movie(movie: Movie) -> str:
    year = movie.year or "?"
    stars = rating_to_stars(movie.personal_rating) if movie.personal_rating is not None else "-"
    avg = f"{movie.external_rating:.2f}" if movie.external_rating is not None else "N/A"
    return f"{movie.title} ({year})  {stars}  avg {avg}"


def _print_movies(movies: list[Movie], as_json: bool = False) -> None:
    if as_json:
        print(json.dumps([m.to_dict() for m in movies], indent=2))
        return
    if not movies:
        logger.info("No movies found")
        return
    for i, movie in enumerate(movies, 1):
        logger.info(f"  {i:3}. {_format_movie(movie)}")


def cmd_scrape(args: argparse.Namespace) -> None:
    """Import a user's films."""
    cancel_event = threading.Event()

    def _request_stop(signum, frame):
        logger.warning("Stopping after the current page...")
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, _request_stop)
    bar = tqdm(desc="Pages", unit="page")

    def _progress(page_number: int, summary: RunSummary) -> None:
        bar.update(1)
        bar.set_postfix(inserted=summary.inserted, skipped=summary.skipped, failed=summary.errored)

    try:
        summary = api.scrape_user_data(
            args.username,
            refresh=args.refresh,
            max_workers=args.workers,
            cancel_event=cancel_event,
            progress=_progress,
        )
    finally:
        bar.close()
        signal.signal(signal.SIGINT, previous_handler)

    if args.json:
        print(json.dumps(summary.to_dict(), indent=2))
    else:
        logger.info(f"\nImport {summary.status.value} for {summary.username}:")
        logger.info(f"  Pages:    {summary.pages_visited}")
        logger.info(f"  Inserted: {summary.inserted}")
        logger.info(f"  Updated:  {summary.updated}")
        logger.info(f"  Skipped:  {summary.skipped}")
        logger.info(f"  Failed:   {summary.errored}")
    summary.raise_for_error()


def cmd_list(args: argparse.Namespace) -> None:
    _print_movies(api.get_all_movies(), args.json)


def cmd_search(args: argparse.Namespace) -> None:
    _print_movies(api.search_movies(args.term), args.json)


def cmd_rated(args: argparse.Namespace) -> None:
    _print_movies(api.get_movies_by_rating(args.min_rating), args.json)


def cmd_year(args: argparse.Namespace) -> None:
    _print_movies(api.get_movies_by_year(args.year), args.json)


def cmd_stats(args: argparse.Namespace) -> None:
    """Show collection statistics."""
    stats = api.get_stats()

    if args.json:
        print(json.dumps(stats.to_dict(), indent=2))
        return

    logger.info("\nCollection Statistics:")
    logger.info(f"  Movies watched: {stats.total_movies}")
    logger.info(f"  Average rating: {stats.average_rating:.2f} / 5.00")
    logger.info(f"  Average Letterboxd rating: {stats.average_external_rating:.2f} / 5.00")
    logger.info(f"  Time watched: {stats.total_runtime_formatted} ({stats.total_runtime_minutes} minutes)")

    if stats.movies_by_year:
        logger.info("\nMovies by year:")
        for year, count in stats.movies_by_year.items():
            logger.info(f"  {year}: {count}")

    if stats.top_movies:
        logger.info("\nTop movies:")
        for i, movie in enumerate(stats.top_movies, 1):
            logger.info(f"  {i:2}. {_format_movie(movie)}")

    for label, people in (
        ("directors", stats.top_directors),
        ("actors", stats.top_actors),
        ("writers", stats.top_writers),
    ):
        if people:
            logger.info(f"\nTop {label}:")
            for person in people:
                logger.info(f"  {person.name}: {person.movie_count} films")


def cmd_delete_db(args: argparse.Namespace) -> None:
    if not args.yes:
        logger.error("Refusing to delete all movies without --yes")
        raise SystemExit(2)
    api.delete_database()
    logger.info("All movies deleted")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(description="Letterboxd Tracker")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scrape_parser = subparsers.add_parser("scrape", help="Import a user's public film diary")
    scrape_parser.add_argument("username", help="Letterboxd username")
    scrape_parser.add_argument("--refresh", action="store_true",
                               help="Update films already in the database with fresh data")
    scrape_parser.add_argument("--workers", type=int, default=DEFAULT_MAX_WORKERS,
                               help="Parallel detail-page fetches per listing page")
    scrape_parser.add_argument("--json", action="store_true", help="Print the run summary as JSON")
    scrape_parser.set_defaults(func=cmd_scrape)

    list_parser = subparsers.add_parser("list", help="List all stored movies")
    list_parser.add_argument("--json", action="store_true")
    list_parser.set_defaults(func=cmd_list)

    search_parser = subparsers.add_parser("search", help="Search movies by title")
    search_parser.add_argument("term", nargs="?", default="", help="Case-insensitive title substring")
    search_parser.add_argument("--json", action="store_true")
    search_parser.set_defaults(func=cmd_search)

    rated_parser = subparsers.add_parser("rated", help="Movies rated at least MIN_RATING")
    rated_parser.add_argument("min_rating", type=float, help="Minimum personal rating (0-5)")
    rated_parser.add_argument("--json", action="store_true")
    rated_parser.set_defaults(func=cmd_rated)

    year_parser = subparsers.add_parser("year", help="Movies released in YEAR")
    year_parser.add_argument("year", type=int)
    year_parser.add_argument("--json", action="store_true")
    year_parser.set_defaults(func=cmd_year)

    stats_parser = subparsers.add_parser("stats", help="Show collection statistics")
    stats_parser.add_argument("--json", action="store_true")
    stats_parser.set_defaults(func=cmd_stats)

    delete_parser = subparsers.add_parser("delete-db", help="Delete every stored movie")
    delete_parser.add_argument("--yes", action="store_true", help="Confirm the deletion")
    delete_parser.set_defaults(func=cmd_delete_db)

    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        args.func(args)
    except TrackerError as exc:
        logger.error(f"{exc.kind}: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
