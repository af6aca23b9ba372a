"""Insert/skip/update decisions keyed by a film's external id."""
import logging
from enum import Enum

from . import database
from .models import Movie

logger = logging.getLogger(__name__)


class Decision(Enum):
    INSERT = "insert"
    SKIP = "skip"
    UPDATE = "update"


def reconcile(record, refresh: bool = False) -> Decision:
    """
    Decide what to do with a parsed record.

    `record` is anything with an `external_id` (a listing entry or a Movie).
    New ids are inserted; known ids are skipped on a plain import and
    updated on an explicit refresh.
    """
    if not database.movie_exists(record.external_id):
        return Decision.INSERT
    return Decision.UPDATE if refresh else Decision.SKIP


def apply(movie: Movie, decision: Decision) -> Decision:
    """
    Persist a movie according to `decision` and return what actually happened.

    Each write is a single statement in its own transaction. An insert that
    finds the id already present reports SKIP; an update whose row vanished
    falls back to an insert.
    """
    if decision is Decision.SKIP:
        return Decision.SKIP

    if decision is Decision.INSERT:
        if database.insert_movie(movie):
            logger.debug(f"Inserted {movie.external_id}")
            return Decision.INSERT
        logger.debug(f"{movie.external_id} already stored, skipping")
        return Decision.SKIP

    if database.update_movie(movie):
        logger.debug(f"Updated {movie.external_id}")
        return Decision.UPDATE
    logger.debug(f"{movie.external_id} disappeared before update, inserting instead")
    return Decision.INSERT if database.insert_movie(movie) else Decision.SKIP
