from datetime import date

import pytest

from conftest import film_html, listing_html
from letterboxd_tracker import parser
from letterboxd_tracker.errors import MalformedPage
from letterboxd_tracker.parser import ListingEntry, PageKind


def _entry(slug="test-film", title="Test Film", rating=None):
    return ListingEntry(external_id=slug, title=title, source_url=parser.film_url(slug), personal_rating=rating)


def test_validate_slug_and_extract_external_id():
    assert parser.validate_slug("the-matrix") == "the-matrix"
    assert parser.validate_slug("Film:482919") == "film:482919"
    assert parser.validate_slug("The Matrix") is None
    assert parser.validate_slug("x" * 300) is None

    assert parser.extract_external_id("/film/the-matrix/") == "the-matrix"
    assert parser.extract_external_id("https://letterboxd.com/film/heat-1995/") == "heat-1995"
    assert parser.extract_external_id("/alice/film/heat-1995/") == "heat-1995"
    assert parser.extract_external_id("/alice/films/") is None
    assert parser.extract_external_id(None) is None


@pytest.mark.parametrize("full", range(6))
@pytest.mark.parametrize("half", [False, True])
def test_star_glyphs_round_trip(full, half):
    text = "★" * full + ("½" if half else "")
    rating = parser.stars_to_rating(text)

    assert rating == full + (0.5 if half else 0.0)
    assert parser.rating_to_stars(rating) == text


def test_stars_to_rating_edge_cases():
    assert parser.stars_to_rating("") == 0.0
    assert parser.stars_to_rating(" ★★ ½ ") == 2.5

    with pytest.raises(ValueError):
        parser.stars_to_rating("★½★")
    with pytest.raises(ValueError):
        parser.stars_to_rating("4/5")
    with pytest.raises(ValueError):
        parser.rating_to_stars(3.3)


@pytest.mark.parametrize("text,expected", [
    ("148 mins   More at IMDb TMDB", 148),
    ("1 min", 1),
    ("2h 28m", 148),
    ("1 hr 5 min", 65),
    ("3h", 180),
    ("123 minutos", 123),
    ("95 Min.", 95),
    ("  97 ", 97),
    ("", None),
    (None, None),
    ("More at IMDb", None),
])
def test_parse_runtime(text, expected):
    assert parser.parse_runtime(text) == expected


def test_parse_listing_page_reads_entries_and_ratings():
    html = listing_html([
        ("parasite-2019", "Parasite", "★★★★½"),
        ("heat-1995", "Heat", None),
        ("cats-2019", "Cats", ""),
    ], has_next=True)

    page = parser.parse_listing_page(html)

    assert [e.external_id for e in page.entries] == ["parasite-2019", "heat-1995", "cats-2019"]
    assert page.entries[0].title == "Parasite"
    assert page.entries[0].personal_rating == 4.5
    assert page.entries[0].source_url == "https://letterboxd.com/film/parasite-2019/"
    assert page.entries[1].personal_rating is None
    # An empty rating span falls back to the class, which is absent here
    assert page.entries[2].personal_rating is None
    assert page.malformed == 0
    assert page.has_next is True


def test_parse_listing_page_rating_class_fallback_and_legacy_attributes():
    html = """
    <ul>
      <li class="griditem" data-film-name="Alien" data-film-link="/film/alien/">
        <p class="poster-viewingdata"><span class="rating rated-7"></span></p>
      </li>
    </ul>
    <div class="paginate-pages"></div>
    """
    page = parser.parse_listing_page(html)

    assert page.entries == [ListingEntry("alien", "Alien", "https://letterboxd.com/film/alien/", 3.5)]
    assert page.has_next is False


def test_parse_listing_page_counts_malformed_entries():
    html = """
    <ul>
      <li class="griditem"><div class="react-component" data-item-name="No Link"></div></li>
      <li class="griditem"><div class="react-component" data-item-link="/film/untitled/"></div></li>
      <li class="griditem"><div class="react-component" data-item-name="Good" data-item-link="/film/good/"></div></li>
    </ul>
    """
    page = parser.parse_listing_page(html)

    assert [e.external_id for e in page.entries] == ["good"]
    assert page.malformed == 2
    assert page.has_next is None
    assert not page.is_empty


def test_parse_listing_page_empty():
    page = parser.parse_listing_page("<html><body><p>No films yet</p></body></html>")
    assert page.is_empty
    assert page.has_next is None


def test_parse_listing_page_drops_out_of_range_rating():
    html = listing_html([("odd", "Odd", "★★★★★★")])
    page = parser.parse_listing_page(html)

    assert page.entries[0].personal_rating is None


def test_parse_film_page_extracts_metadata():
    html = film_html(
        "Test Film",
        year=2019,
        directors=["Bong Joon-ho"],
        cast=["Song Kang-ho", "Lee Sun-kyun"],
        writers=["Bong Joon-ho", "Han Jin-won"],
        runtime="132 mins   More at IMDb",
        avg="4.55",
    )
    movie = parser.parse_film_page(html, _entry(rating=4.0))

    assert movie.external_id == "test-film"
    assert movie.title == "Test Film"
    assert movie.year == 2019
    assert movie.directors == ["Bong Joon-ho"]
    assert movie.cast == ["Song Kang-ho", "Lee Sun-kyun"]
    assert movie.writers == ["Bong Joon-ho", "Han Jin-won"]
    assert movie.runtime_minutes == 132
    assert movie.external_rating == 4.55
    assert movie.personal_rating == 4.0
    assert movie.source_url == "https://letterboxd.com/film/test-film/"
    assert movie.date_added is None


def test_parse_film_page_crew_tab_skips_assistant_roles():
    html = """
    <html><body>
      <h1 class="headline-1">Crew Test</h1>
      <div id="tab-crew">
        <h3><span>Assistant Director</span></h3><div class="text-sluglist"><a class="text-slug">Helper</a></div>
        <h3><span>Directors</span></h3><div class="text-sluglist"><a class="text-slug">Lana</a><a class="text-slug">Lilly</a></div>
        <h3><span>Original Writer</span></h3><div class="text-sluglist"><a class="text-slug">Novelist</a></div>
        <h3><span>Writers</span></h3><div class="text-sluglist"><a class="text-slug">Lana</a></div>
      </div>
    </body></html>
    """
    movie = parser.parse_film_page(html, _entry())

    assert movie.directors == ["Lana", "Lilly"]
    assert movie.writers == ["Lana"]


def test_parse_film_page_cast_overflow_and_limits():
    cast = "".join(f'<a class="text-slug" href="/actor/a{i}/">Actor {i}</a>' for i in range(40))
    html = f"""
    <html><body>
      <h1 class="headline-1">Big Cast</h1>
      <div class="cast-list">{cast}<a class="text-slug" id="has-cast-overflow" href="#">Show All…</a></div>
    </body></html>
    """
    movie = parser.parse_film_page(html, _entry())

    assert len(movie.cast) == 30
    assert movie.cast[0] == "Actor 0"
    assert all("Show All" not in name for name in movie.cast)


def test_parse_film_page_uses_ldjson_and_fallbacks():
    html = """
    <html><head>
      <meta property="og:title" content="Fallback Title (1984)" />
      <meta property="og:image" content="https://a.ltrbxd.com/og.jpg" />
      <script type="application/ld+json">
        /* <![CDATA[ */
        {"image": "https://a.ltrbxd.com/poster.jpg", "aggregateRating": {"ratingValue": 3.87}}
        /* ]]> */
      </script>
    </head><body>
      <span class="directorlist"><a href="/director/jc/">James Cameron</a></span>
      <a href="/writer/gh/">Gale Anne Hurd</a>
      <a href="/actor/arnold/">Arnold Schwarzenegger</a>
      <p class="text-link text-footer">1h 47m</p>
    </body></html>
    """
    movie = parser.parse_film_page(html, _entry(slug="the-terminator", title="The Terminator"))

    assert movie.title == "Fallback Title"
    assert movie.year == 1984
    assert movie.external_rating == 3.87
    assert movie.poster_url == "https://a.ltrbxd.com/poster.jpg"
    assert movie.directors == ["James Cameron"]
    assert movie.writers == ["Gale Anne Hurd"]
    assert movie.cast == ["Arnold Schwarzenegger"]
    assert movie.runtime_minutes == 107


def test_parse_film_page_missing_optional_fields():
    movie = parser.parse_film_page('<html><body><h1 class="headline-1">Bare</h1></body></html>', _entry())

    assert movie.title == "Bare"
    assert movie.year is None
    assert movie.external_rating is None
    assert movie.runtime_minutes is None
    assert movie.directors == [] and movie.cast == [] and movie.writers == []
    assert movie.poster_url is None


def test_parse_film_page_without_anchors_is_malformed():
    with pytest.raises(MalformedPage):
        parser.parse_film_page("<html><body><p>Nothing useful</p></body></html>", _entry())


def test_parse_dispatches_on_page_kind():
    listing = parser.parse(listing_html([("heat-1995", "Heat", "★★★")]), PageKind.LISTING)
    assert listing.entries[0].personal_rating == 3.0

    movie = parser.parse(film_html("Heat", year=1995), PageKind.DETAIL, entry=_entry("heat-1995", "Heat"))
    assert movie.year == 1995

    with pytest.raises(ValueError):
        parser.parse(film_html("Heat"), PageKind.DETAIL)


def test_og_title_year_comes_from_trailing_parentheses():
    movie = parser.parse_film_page('<meta property="og:title" content="1917 (2019)" />', _entry("1917", "1917"))

    assert movie.title == "1917"
    assert movie.year == 2019


def test_og_title_without_trailing_year_leaves_year_unknown():
    movie = parser.parse_film_page('<meta property="og:title" content="Blade Runner 2049" />', _entry())

    assert movie.title == "Blade Runner 2049"
    assert movie.year is None


def test_detail_page_year_beyond_next_year_is_dropped():
    far_future = date.today().year + 5
    movie = parser.parse_film_page(film_html("Upcoming", year=far_future), _entry())

    assert movie.year is None


def test_detail_page_year_next_year_is_kept():
    next_year = date.today().year + 1
    movie = parser.parse_film_page(film_html("Announced", year=next_year), _entry())

    assert movie.year == next_year


def test_detail_page_out_of_range_average_is_dropped():
    movie = parser.parse_film_page(film_html("Inflated", avg="7.2"), _entry())

    assert movie.external_rating is None
    assert movie.title == "Inflated"
