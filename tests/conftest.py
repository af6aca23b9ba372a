import importlib
import sys
import threading
from pathlib import Path

import httpx
import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


def listing_html(films, has_next=None):
    """
    Render a films grid page.

    `films` holds (slug, title, stars) tuples; has_next None omits the
    pagination block entirely.
    """
    items = []
    for slug, title, stars in films:
        rating = f'<span class="rating">{stars}</span>' if stars is not None else ""
        items.append(
            f'<li class="griditem">'
            f'<div class="react-component" data-item-name="{title}" data-item-slug="{slug}" '
            f'data-item-link="/film/{slug}/"><img alt="{title}" /></div>'
            f'<p class="poster-viewingdata">{rating}</p>'
            f'</li>'
        )

    pagination = ""
    if has_next is True:
        pagination = '<div class="pagination"><a class="next" href="#">Older</a></div>'
    elif has_next is False:
        pagination = '<div class="pagination"><a class="previous" href="#">Newer</a></div>'

    return f'<html><body><ul class="poster-list">{"".join(items)}</ul>{pagination}</body></html>'


def film_html(title, year=2000, directors=(), cast=(), writers=(), runtime="120 mins", avg="3.90"):
    director_links = "".join(f'<a class="text-slug" href="/director/x/">{d}</a>' for d in directors)
    writer_links = "".join(f'<a class="text-slug" href="/writer/x/">{w}</a>' for w in writers)
    cast_links = "".join(f'<a class="text-slug" href="/actor/x/">{c}</a>' for c in cast)
    return (
        '<html><head>'
        f'<meta property="og:title" content="{title} ({year})" />'
        f'<meta name="twitter:data2" content="{avg} out of 5" />'
        '</head><body>'
        f'<h1 class="headline-1">{title}</h1>'
        f'<div class="releaseyear"><a href="/films/year/{year}/">{year}</a></div>'
        f'<div class="cast-list">{cast_links}</div>'
        '<div id="tab-crew">'
        f'<h3><span>Director</span></h3><div class="text-sluglist">{director_links}</div>'
        f'<h3><span>Writer</span></h3><div class="text-sluglist">{writer_links}</div>'
        '</div>'
        f'<p class="text-link text-footer">{runtime}</p>'
        '</body></html>'
    )


class FakeSite:
    """
    Canned Letterboxd served through httpx.MockTransport.

    Paths map to (status, body) pairs or to callables taking the request.
    Unknown paths answer 404.
    """

    def __init__(self):
        self.pages = {}
        self.requests: list[str] = []
        self._lock = threading.Lock()

    def add(self, path, body="", status=200):
        self.pages[path] = (status, body)

    def add_listing(self, username, page, films, has_next=None):
        self.add(f"/{username}/films/page/{page}/", listing_html(films, has_next))

    def add_film(self, slug, title, **kwargs):
        self.add(f"/film/{slug}/", film_html(title, **kwargs))

    def count(self, path) -> int:
        return self.requests.count(path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        with self._lock:
            self.requests.append(path)
        page = self.pages.get(path)
        if page is None:
            return httpx.Response(404, text="<html><body>Not here</body></html>")
        if callable(page):
            return page(request)
        status, body = page
        return httpx.Response(status, text=body)

    def fetcher(self, max_retries=3):
        from letterboxd_tracker.scraper import LetterboxdFetcher, RateGate

        client = httpx.Client(transport=httpx.MockTransport(self.handler))
        return LetterboxdFetcher(
            gate=RateGate(interval=0),
            client=client,
            max_retries=max_retries,
            retry_delay=0,
            sleep=lambda _seconds: None,
        )


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("LETTERBOXD_DB", str(db_path))
    import letterboxd_tracker.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("LETTERBOXD_DB", str(db_path))

    import letterboxd_tracker.config as config
    import letterboxd_tracker.database as database

    database.close_pool()
    importlib.reload(config)
    importlib.reload(database)

    yield database
    database.close_pool()
