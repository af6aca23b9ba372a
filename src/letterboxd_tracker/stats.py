"""
Aggregate statistics over the stored movies.

Everything is recomputed from the full record set on each call; nothing is
cached. Output only depends on the records themselves: every collection is
sorted before it is emitted and sums use math.fsum, so repeated calls over the
same records give identical results.
"""
import logging
import math
from collections import Counter
from dataclasses import asdict, dataclass, field

from . import queries
from .config import TOP_MOVIES_LIMIT, TOP_PEOPLE_LIMIT
from .models import Movie, PersonCount

logger = logging.getLogger(__name__)


@dataclass
class StatsSnapshot:
    total_movies: int = 0
    average_rating: float = 0.0
    average_external_rating: float = 0.0
    total_runtime_minutes: int = 0
    total_runtime_formatted: str = "0d 0h 0m"
    movies_by_year: dict[int, int] = field(default_factory=dict)
    top_movies: list[Movie] = field(default_factory=list)
    top_directors: list[PersonCount] = field(default_factory=list)
    top_actors: list[PersonCount] = field(default_factory=list)
    top_writers: list[PersonCount] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'total_movies': self.total_movies,
            'average_rating': self.average_rating,
            'average_external_rating': self.average_external_rating,
            'total_runtime_minutes': self.total_runtime_minutes,
            'total_runtime_formatted': self.total_runtime_formatted,
            'movies_by_year': dict(self.movies_by_year),
            'top_movies': [m.to_dict() for m in self.top_movies],
            'top_directors': [asdict(p) for p in self.top_directors],
            'top_actors': [asdict(p) for p in self.top_actors],
            'top_writers': [asdict(p) for p in self.top_writers],
        }


def mean_of_present(values) -> float:
    """Mean of the non-None values; 0.0 when there are none."""
    present = [v for v in values if v is not None]
    if not present:
        return 0.0
    return math.fsum(present) / len(present)


def format_duration(total_minutes: int) -> str:
    """1 day 2 hours 5 minutes -> '1d 2h 5m'."""
    days, remainder = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)
    return f"{days}d {hours}h {minutes}m"


def movies_by_year(movies: list[Movie]) -> dict[int, int]:
    counts = Counter(m.year for m in movies if m.year)
    return {year: counts[year] for year in sorted(counts)}


def _top_movie_key(movie: Movie):
    # Missing ratings sort after every present rating
    return (
        movie.personal_rating is None,
        -(movie.personal_rating or 0.0),
        movie.external_rating is None,
        -(movie.external_rating or 0.0),
        movie.title,
        movie.external_id,
    )


def top_movies(movies: list[Movie], limit: int = TOP_MOVIES_LIMIT) -> list[Movie]:
    return sorted(movies, key=_top_movie_key)[:limit]


def top_people(movies: list[Movie], attribute: str, limit: int = TOP_PEOPLE_LIMIT) -> list[PersonCount]:
    """
    Rank people credited in `attribute` ('directors', 'cast' or 'writers')
    by the number of distinct movies they appear in, then by name.
    """
    counts = Counter()
    for movie in movies:
        counts.update({name.strip() for name in getattr(movie, attribute) if name and name.strip()})

    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [PersonCount(name=name, movie_count=count) for name, count in ranked[:limit]]


def compute_stats(movies: list[Movie] | None = None) -> StatsSnapshot:
    """Compute a fresh snapshot from `movies`, or from the whole store."""
    if movies is None:
        movies = queries.list_all()

    total_runtime = sum(m.runtime_minutes for m in movies if m.runtime_minutes)

    snapshot = StatsSnapshot(
        total_movies=len(movies),
        average_rating=mean_of_present(m.personal_rating for m in movies),
        average_external_rating=mean_of_present(m.external_rating for m in movies),
        total_runtime_minutes=total_runtime,
        total_runtime_formatted=format_duration(total_runtime),
        movies_by_year=movies_by_year(movies),
        top_movies=top_movies(movies),
        top_directors=top_people(movies, 'directors'),
        top_actors=top_people(movies, 'cast'),
        top_writers=top_people(movies, 'writers'),
    )
    logger.debug(f"Computed stats over {snapshot.total_movies} movies")
    return snapshot
