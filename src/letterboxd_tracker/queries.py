"""Read-only queries over stored movies. Never touches the network."""
from . import database
from .models import Movie


def list_all() -> list[Movie]:
    """Every stored movie, newest first (ties by external id)."""
    return database.load_movies()


def search(term: str | None) -> list[Movie]:
    """
    Movies whose title contains `term`, case-insensitively.

    A blank term returns everything. Matching is done in Python with
    casefold() so non-ASCII titles compare correctly.
    """
    needle = (term or "").strip().casefold()
    movies = list_all()
    if not needle:
        return movies
    return [m for m in movies if needle in m.title.casefold()]


def filter_by_rating(threshold: float) -> list[Movie]:
    """Movies rated at least `threshold`, best first, ties by title."""
    return database.load_movies(
        where="personal_rating >= ?",
        params=(threshold,),
        order_by="personal_rating DESC, title ASC, external_id ASC",
    )


def by_year(year: int) -> list[Movie]:
    return database.load_movies(where="year = ?", params=(year,))


def count() -> int:
    return database.count_movies()
