import sqlite3
import json
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from .config import DB_PATH
from .errors import StorageError
from .models import Movie

logger = logging.getLogger(__name__)

MOVIE_COLUMNS = (
    "external_id", "title", "year", "source_url", "personal_rating", "external_rating",
    "runtime_minutes", "date_added", "poster_url", "directors", "cast", "writers",
)
# Columns an explicit refresh may overwrite; external_id and date_added never change
MUTABLE_COLUMNS = tuple(c for c in MOVIE_COLUMNS if c not in ("external_id", "date_added"))

_SELECT_MOVIES = "SELECT " + ", ".join(f'"{c}"' for c in MOVIE_COLUMNS) + " FROM movies"


class ConnectionPool:
    """
    Thread-safe SQLite connection pool.

    - One connection per thread (SQLite threading requirement)
    - Automatic cleanup of dead thread connections
    - Explicit transaction nesting tracking
    """

    def __init__(self, db_path, max_size: int = 50):
        self._db_path = db_path
        self._max_size = max_size

        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._transaction_depth: dict[int, int] = {}
        self._last_cleanup = time.time()
        self._cleanup_interval = 60

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")  # readers don't block the importer
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _maybe_cleanup(self):
        """Periodically close connections owned by threads that have exited."""
        now = time.time()
        if now - self._last_cleanup < self._cleanup_interval:
            return

        self._last_cleanup = now
        alive_threads = {t.ident for t in threading.enumerate()}
        dead_threads = set(self._connections.keys()) - alive_threads

        for thread_id in dead_threads:
            conn = self._connections.pop(thread_id, None)
            self._transaction_depth.pop(thread_id, None)
            if conn:
                try:
                    conn.close()
                    logger.debug(f"Cleaned up connection for dead thread {thread_id}")
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection for the current thread, creating if necessary."""
        thread_id = threading.get_ident()

        with self._lock:
            self._maybe_cleanup()

            conn = self._connections.get(thread_id)
            if conn is None:
                if len(self._connections) >= self._max_size:
                    self._last_cleanup = 0
                    self._maybe_cleanup()
                    if len(self._connections) >= self._max_size:
                        raise StorageError(
                            f"Connection pool exhausted ({self._max_size} connections)"
                        )

                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")

            return conn

    def get_transaction_depth(self) -> int:
        return self._transaction_depth.get(threading.get_ident(), 0)

    def increment_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = self._transaction_depth.get(thread_id, 0) + 1

    def decrement_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 1)
            self._transaction_depth[thread_id] = max(0, depth - 1)

    def close_all(self):
        """Close all connections (call on application shutdown)."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")

            self._connections.clear()
            self._transaction_depth.clear()
            logger.debug("Connection pool closed")


# Global pool instance
_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    """Get or create the global connection pool."""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                try:
                    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                except OSError as e:
                    raise StorageError(f"Cannot create database directory {DB_PATH.parent}: {e}") from e
                _pool = ConnectionPool(DB_PATH)
    return _pool


def store_key() -> str:
    """Stable identity of the current store, used to serialize imports."""
    return str(DB_PATH.resolve())


@contextmanager
def get_db(read_only: bool = False):
    """
    Get database connection with proper transaction handling.

    Args:
        read_only: If True, skip commit on exit

    Only the outermost context commits or rolls back; inner contexts are
    no-ops for transaction control. sqlite3 errors leave as StorageError.
    """
    pool = _get_pool()
    try:
        conn = pool.get_connection()
    except sqlite3.Error as e:
        raise StorageError(f"Cannot open database {DB_PATH}: {e}") from e

    is_outermost = pool.get_transaction_depth() == 0
    pool.increment_transaction_depth()

    try:
        yield conn

        if is_outermost and not read_only:
            conn.commit()

    except sqlite3.Error as e:
        if is_outermost:
            conn.rollback()
        raise StorageError(f"Database operation failed: {e}") from e

    except Exception:
        if is_outermost:
            conn.rollback()
        raise

    finally:
        pool.decrement_transaction_depth()


def close_pool():
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def init_db() -> None:
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS movies (
                external_id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                year INTEGER,
                source_url TEXT NOT NULL,
                personal_rating REAL CHECK (personal_rating IS NULL OR personal_rating BETWEEN 0 AND 5),
                external_rating REAL CHECK (external_rating IS NULL OR external_rating BETWEEN 0 AND 5),
                runtime_minutes INTEGER CHECK (runtime_minutes IS NULL OR runtime_minutes >= 0),
                date_added TEXT NOT NULL,
                poster_url TEXT,
                directors TEXT,     -- JSON list, credit order
                "cast" TEXT,        -- JSON list, credit order
                writers TEXT        -- JSON list, credit order
            );

            CREATE INDEX IF NOT EXISTS idx_movies_title ON movies(title);
            CREATE INDEX IF NOT EXISTS idx_movies_rating ON movies(personal_rating);
            CREATE INDEX IF NOT EXISTS idx_movies_year ON movies(year);
            CREATE INDEX IF NOT EXISTS idx_movies_date_added ON movies(date_added);
        """)


def load_json(val):
    """Safely load a JSON list from a db field."""
    if not val:
        return []
    if isinstance(val, list):
        return val
    try:
        return json.loads(val)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse JSON '{str(val)[:50]}...': {e}")
        return []


def _row_to_movie(row) -> Movie:
    return Movie(
        external_id=row['external_id'],
        title=row['title'],
        source_url=row['source_url'],
        year=row['year'] or None,
        personal_rating=row['personal_rating'],
        external_rating=row['external_rating'],
        runtime_minutes=row['runtime_minutes'],
        directors=load_json(row['directors']),
        cast=load_json(row['cast']),
        writers=load_json(row['writers']),
        poster_url=row['poster_url'],
        date_added=row['date_added'],
    )


def _movie_params(movie: Movie) -> dict:
    return {
        'external_id': movie.external_id,
        'title': movie.title,
        'year': movie.year,
        'source_url': movie.source_url,
        'personal_rating': movie.personal_rating,
        'external_rating': movie.external_rating,
        'runtime_minutes': movie.runtime_minutes,
        'date_added': movie.date_added,
        'poster_url': movie.poster_url,
        'directors': json.dumps(movie.directors),
        'cast': json.dumps(movie.cast),
        'writers': json.dumps(movie.writers),
    }


def movie_exists(external_id: str) -> bool:
    with get_db(read_only=True) as conn:
        row = conn.execute("SELECT 1 FROM movies WHERE external_id = ?", (external_id,)).fetchone()
        return row is not None


def get_movie(external_id: str) -> Movie | None:
    with get_db(read_only=True) as conn:
        row = conn.execute(f"{_SELECT_MOVIES} WHERE external_id = ?", (external_id,)).fetchone()
        return _row_to_movie(row) if row else None


def insert_movie(movie: Movie) -> bool:
    """
    Insert a movie, stamping date_added now.

    Returns False (and writes nothing) if the external_id is already stored.
    """
    params = _movie_params(movie)
    params['date_added'] = datetime.now().isoformat()
    columns = ", ".join(f'"{c}"' for c in MOVIE_COLUMNS)
    placeholders = ", ".join(f":{c}" for c in MOVIE_COLUMNS)

    with get_db() as conn:
        cursor = conn.execute(
            f"INSERT INTO movies ({columns}) VALUES ({placeholders}) ON CONFLICT(external_id) DO NOTHING",
            params,
        )
        inserted = cursor.rowcount == 1

    if inserted:
        movie.date_added = params['date_added']
    return inserted


def update_movie(movie: Movie) -> bool:
    """Overwrite mutable fields of a stored movie. Returns False if it is absent."""
    params = _movie_params(movie)
    assignments = ", ".join(f'"{c}" = :{c}' for c in MUTABLE_COLUMNS)

    with get_db() as conn:
        cursor = conn.execute(
            f"UPDATE movies SET {assignments} WHERE external_id = :external_id",
            params,
        )
        return cursor.rowcount == 1


def load_movies(where: str = "", params: tuple = (), order_by: str = "date_added DESC, external_id ASC") -> list[Movie]:
    query = _SELECT_MOVIES
    if where:
        query += f" WHERE {where}"
    query += f" ORDER BY {order_by}"

    with get_db(read_only=True) as conn:
        return [_row_to_movie(r) for r in conn.execute(query, params).fetchall()]


def count_movies() -> int:
    with get_db(read_only=True) as conn:
        return conn.execute("SELECT COUNT(*) FROM movies").fetchone()[0]


def delete_all_movies() -> int:
    """Delete every movie record. Returns the number of rows removed."""
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM movies")
        deleted = cursor.rowcount
    logger.info(f"Deleted {deleted} movies")
    return deleted


def run_maintenance(vacuum: bool = True, analyze: bool = False) -> None:
    """
    Run VACUUM/ANALYZE after bulk deletes.
    Uses a dedicated connection to avoid interfering with pooled transactions.
    """
    if not vacuum and not analyze:
        return

    try:
        conn = sqlite3.connect(DB_PATH)
        try:
            if vacuum:
                conn.execute("VACUUM")
            if analyze:
                conn.execute("ANALYZE")
            conn.commit()
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise StorageError(f"Database maintenance failed: {e}") from e
