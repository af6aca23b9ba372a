import logging
from dataclasses import dataclass, field, asdict
from datetime import date

logger = logging.getLogger(__name__)

MIN_RATING = 0.0
MAX_RATING = 5.0


@dataclass
class Movie:
    """One film entry from a user's diary, keyed by its Letterboxd slug."""
    external_id: str
    title: str
    source_url: str
    year: int | None = None
    personal_rating: float | None = None
    external_rating: float | None = None
    runtime_minutes: int | None = None
    directors: list[str] = field(default_factory=list)
    cast: list[str] = field(default_factory=list)
    writers: list[str] = field(default_factory=list)
    poster_url: str | None = None
    date_added: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PersonCount:
    name: str
    movie_count: int


def normalize_rating(value: float | None, label: str = "rating") -> float | None:
    """Return the rating if it lies in [0.0, 5.0], else None (logged)."""
    if value is None:
        return None
    if MIN_RATING <= value <= MAX_RATING:
        return float(value)
    logger.warning(f"{label} value outside range [{MIN_RATING}-{MAX_RATING}]: {value}")
    return None


def normalize_year(value: int | None) -> int | None:
    """
    Accept 4-digit years up to next year (films dated for pending release).

    0 and None both mean unknown.
    """
    if not value:
        return None
    if 1000 <= value <= date.today().year + 1:
        return value
    logger.warning(f"Discarding implausible release year: {value}")
    return None


def normalize_runtime(value: int | None) -> int | None:
    if value is None or value < 0:
        return None
    return value
