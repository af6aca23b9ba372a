"""
Markup parsing for Letterboxd listing and film pages.

Everything here is pure: functions take markup and return dataclasses.
All knowledge of the site's page structure lives in this module.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from selectolax.parser import HTMLParser, Node

from .config import LETTERBOXD_BASE_URL, MAX_CAST, MAX_CREW_PER_ROLE, MAX_SLUG_LENGTH
from .errors import MalformedPage
from .models import Movie, normalize_rating, normalize_runtime, normalize_year

logger = logging.getLogger(__name__)

FULL_STAR = "★"
HALF_STAR = "½"

_STARS_RE = re.compile(rf"^({FULL_STAR}*)({HALF_STAR}?)$")
_HOURS_MINUTES_RE = re.compile(
    r"(\d+)\s*h(?:ours?|rs?)?\b\.?(?:\s*(\d+)\s*m(?:in(?:ute)?s?)?\b)?", re.IGNORECASE
)
_MINUTES_RE = re.compile(r"(\d+)\s*(?:min\w*|m)\b", re.IGNORECASE)
_YEAR_RE = re.compile(r"\b(1[89]|2[01])\d{2}\b")
# og:title reads "Title (YYYY)"
_OG_TITLE_YEAR_RE = re.compile(r"\s*\((\d{4})\)\s*$")
_FILM_LINK_RE = re.compile(r"/film/([^/?#]+)")


class PageKind(Enum):
    LISTING = "listing"
    DETAIL = "detail"


@dataclass(frozen=True)
class ListingEntry:
    external_id: str
    title: str
    source_url: str
    personal_rating: float | None = None


@dataclass
class ListingPage:
    entries: list[ListingEntry] = field(default_factory=list)
    malformed: int = 0
    # None when the page carries no pagination block at all
    has_next: bool | None = None

    @property
    def is_empty(self) -> bool:
        return not self.entries and self.malformed == 0


def validate_slug(slug: str | None) -> str | None:
    """
    Validate film slug format to prevent injection or malformed data.

    Returns cleaned slug or None if invalid.
    Letterboxd slugs are lowercase alphanumeric with hyphens; some endpoints
    emit a namespaced form like 'film:482919', which is accepted too.
    """
    if not slug:
        return None

    cleaned = slug.strip().lower()

    prefix = ""
    core = cleaned
    if core.startswith("film:"):
        prefix = "film:"
        core = core.split(":", 1)[1]

    if not core or not re.match(r'^[a-z0-9-]+$', core):
        logger.warning(f"Invalid slug format (contains disallowed characters): '{slug}'")
        return None

    full_slug = prefix + core
    if len(full_slug) > MAX_SLUG_LENGTH:
        logger.warning(f"Slug exceeds maximum length: '{slug[:50]}...'")
        return None

    return full_slug


def extract_external_id(link: str | None) -> str | None:
    """
    Extract the film slug from a film link.

    '/film/the-shawshank-redemption/', 'https://letterboxd.com/film/x/' and
    diary-style '/alice/film/x/' links all yield the slug.
    """
    if not link:
        return None
    match = _FILM_LINK_RE.search(link)
    if not match:
        return None
    return validate_slug(match.group(1))


def film_url(external_id: str) -> str:
    """Canonical detail page URL for a film slug."""
    return f"{LETTERBOXD_BASE_URL}/film/{external_id}/"


def stars_to_rating(text: str) -> float:
    """
    Convert star glyphs to a numeric rating.

    Each full star counts 1.0 and a trailing half-star 0.5, so '★★★½' is 3.5
    and '' is 0.0. Raises ValueError for anything else.
    """
    cleaned = re.sub(r"\s+", "", text or "")
    match = _STARS_RE.match(cleaned)
    if not match:
        raise ValueError(f"Unknown rating symbol: {text!r}")
    full, half = match.groups()
    return len(full) + (0.5 if half else 0.0)


def rating_to_stars(rating: float) -> str:
    """Inverse of stars_to_rating: 3.5 -> '★★★½'."""
    if rating < 0 or (rating * 2) != int(rating * 2):
        raise ValueError(f"Rating must be a non-negative multiple of 0.5: {rating}")
    full = int(rating)
    return FULL_STAR * full + (HALF_STAR if rating - full else "")


def parse_runtime(text: str | None) -> int | None:
    """
    Parse runtime text into minutes.

    Handles '148 mins More', '1 min', '2h 28m' and locale variants such as
    '123 minutos' or '95 Min.'. Returns None when nothing parses.
    """
    if not text:
        return None

    match = _HOURS_MINUTES_RE.search(text)
    if match:
        hours, minutes = match.groups()
        return int(hours) * 60 + int(minutes or 0)

    match = _MINUTES_RE.search(text)
    if match:
        return int(match.group(1))

    stripped = text.strip()
    if stripped.isdigit():
        return int(stripped)
    return None


def _parse_rating_class(classes: str) -> float | None:
    """Parse a class like 'rated-8' (8 half-stars, i.e. 4.0)."""
    for cls in classes.split():
        if cls.startswith("rated-"):
            try:
                return int(cls.replace("rated-", "")) / 2
            except ValueError as exc:
                logger.warning(f"Unexpected rating format in class '{cls}': {exc}")
                return None
    return None


def _parse_entry_rating(item: Node) -> float | None:
    span = item.css_first("p.poster-viewingdata span.rating") or item.css_first("span.rating")
    if span is None:
        return None

    rating = None
    text = span.text(strip=True)
    if text:
        try:
            rating = stars_to_rating(text)
        except ValueError as exc:
            logger.warning(f"Ignoring unparsable rating: {exc}")
    if rating is None:
        rating = _parse_rating_class(span.attributes.get("class") or "")
    return normalize_rating(rating, "personal_rating")


def _parse_listing_entry(item: Node) -> ListingEntry:
    attrs = item.attributes
    title = attrs.get("data-film-name")
    link = attrs.get("data-film-link")
    slug = attrs.get("data-film-slug")

    component = item.css_first("div.react-component") or item.css_first("div[data-film-slug]")
    if component is not None:
        comp_attrs = component.attributes
        title = title or comp_attrs.get("data-item-name") or comp_attrs.get("data-film-name")
        link = link or comp_attrs.get("data-item-link") or comp_attrs.get("data-film-link")
        slug = slug or comp_attrs.get("data-item-slug") or comp_attrs.get("data-film-slug")

    if not title:
        img = item.css_first("img")
        if img is not None:
            title = img.attributes.get("alt")

    external_id = extract_external_id(link) or validate_slug(slug)
    title = (title or "").strip()
    if not external_id or not title:
        raise MalformedPage(f"Listing entry without film id or title (link={link!r}, slug={slug!r})")

    return ListingEntry(
        external_id=external_id,
        title=title,
        source_url=film_url(external_id),
        personal_rating=_parse_entry_rating(item),
    )


def parse_listing_page(markup: str) -> ListingPage:
    """
    Parse one page of a user's films grid.

    Broken entries are counted in `malformed` and skipped; they never fail the
    whole page.
    """
    tree = HTMLParser(markup or "")
    page = ListingPage()

    for item in tree.css("li.griditem"):
        try:
            page.entries.append(_parse_listing_entry(item))
        except MalformedPage as exc:
            logger.warning(f"Skipping malformed listing entry: {exc}")
            page.malformed += 1

    next_link = tree.css_first("a.next")
    if next_link is not None:
        page.has_next = True
    elif tree.css_first("div.pagination, div.paginate-pages") is not None:
        page.has_next = False

    return page


def _load_ldjson(tree: HTMLParser, slug: str) -> dict:
    """Return the first ld+json object on the page, or {}."""
    node = tree.css_first("script[type='application/ld+json']")
    if node is None:
        return {}
    raw = node.text()
    # Letterboxd wraps the JSON in /* <![CDATA[ */ ... /* ]]> */
    cleaned = re.sub(r"/\*.*?\*/", "", raw, flags=re.S).strip()

    for candidate in (raw.strip(), cleaned):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as exc:
            logger.debug(f"Failed to parse ld+json for {slug}: {exc}")
            continue
        if isinstance(parsed, list):
            parsed = parsed[0] if parsed else {}
        if isinstance(parsed, dict):
            return parsed
    return {}


def _meta_content(tree: HTMLParser, selector: str) -> str:
    node = tree.css_first(selector)
    if node is None:
        return ""
    return (node.attributes.get("content") or "").strip()


def _unique_texts(nodes, limit: int | None = None) -> list[str]:
    names = list(dict.fromkeys(n.text(strip=True) for n in nodes if n.text(strip=True)))
    return names[:limit] if limit is not None else names


def _next_element(node: Node) -> Node | None:
    sibling = node.next
    while sibling is not None and sibling.tag.startswith(("-", "_")):
        sibling = sibling.next
    return sibling


def _crew_names(tree: HTMLParser, role: str, excluded: tuple[str, ...]) -> list[str]:
    """
    Names listed under a crew heading such as 'Directors' or 'Writers'.

    Headings mentioning any of `excluded` (e.g. 'Assistant Director') are ignored.
    """
    crew = tree.css_first("div#tab-crew")
    if crew is None:
        return []

    for heading in crew.css("h3"):
        label = heading.text(strip=True)
        if role not in label or any(word in label for word in excluded):
            continue
        block = _next_element(heading)
        if block is None:
            continue
        names = _unique_texts(block.css("a.text-slug"), MAX_CREW_PER_ROLE)
        if names:
            return names
    return []


def _parse_year(tree: HTMLParser) -> int | None:
    # Letterboxd markup drifts; try several anchors in order
    for selector in ("span.releasedate", "small.number a", "div.releaseyear a", "a[href*='/films/year/']"):
        node = tree.css_first(selector)
        if node is None:
            continue
        match = _YEAR_RE.search(node.text(strip=True))
        if match:
            return int(match.group(0))

    match = _OG_TITLE_YEAR_RE.search(_meta_content(tree, "meta[property='og:title']"))
    if match:
        return int(match.group(1))
    return None


def _parse_external_rating(tree: HTMLParser, ldjson: dict) -> float | None:
    # twitter:data2 reads like "4.55 out of 5"
    content = _meta_content(tree, "meta[name='twitter:data2']")
    if content:
        try:
            return float(content.split()[0])
        except (ValueError, IndexError):
            pass

    aggregate = ldjson.get("aggregateRating") or {}
    try:
        return float(aggregate.get("ratingValue"))
    except (TypeError, ValueError):
        return None


def _parse_cast(tree: HTMLParser) -> list[str]:
    links = [
        a for a in tree.css("div.cast-list a.text-slug")
        if a.attributes.get("id") != "has-cast-overflow" and "show all" not in a.text().lower()
    ]
    if not links:
        links = tree.css("a[href*='/actor/']")
    return _unique_texts(links, MAX_CAST)


def parse_film_page(markup: str, entry: ListingEntry) -> Movie:
    """
    Build a full Movie from a film detail page and its listing entry.

    Raises MalformedPage if the page has none of the anchors every film page
    carries (headline, og:title or ld+json block).
    """
    tree = HTMLParser(markup or "")
    ldjson = _load_ldjson(tree, entry.external_id)
    headline = tree.css_first("h1.headline-1")
    og_title = _meta_content(tree, "meta[property='og:title']")

    if headline is None and not og_title and not ldjson:
        raise MalformedPage(f"Film page for '{entry.external_id}' has no title anchors")

    title = headline.text(strip=True) if headline is not None else ""
    if not title and og_title:
        title = _OG_TITLE_YEAR_RE.sub("", og_title)
    title = title or entry.title

    directors = _crew_names(tree, "Director", ("Assistant", "Original"))
    if not directors:
        directors = _unique_texts(tree.css("span.directorlist a"), MAX_CREW_PER_ROLE)
    if not directors:
        directors = _unique_texts(tree.css("a[href*='/director/']"), MAX_CREW_PER_ROLE)

    writers = _crew_names(tree, "Writer", ("Original", "Story", "Screenplay"))
    if not writers:
        writers = _unique_texts(tree.css("a[href*='/writer/']"), MAX_CREW_PER_ROLE)

    runtime_el = tree.css_first("p.text-link.text-footer")
    runtime = parse_runtime(runtime_el.text()) if runtime_el is not None else None

    poster_url = ldjson.get("image") if isinstance(ldjson.get("image"), str) else None
    poster_url = poster_url or _meta_content(tree, "meta[property='og:image']") or None

    return Movie(
        external_id=entry.external_id,
        title=title,
        source_url=entry.source_url,
        year=normalize_year(_parse_year(tree)),
        personal_rating=entry.personal_rating,
        external_rating=normalize_rating(_parse_external_rating(tree, ldjson), "external_rating"),
        runtime_minutes=normalize_runtime(runtime),
        directors=directors,
        cast=_parse_cast(tree),
        writers=writers,
        poster_url=poster_url,
    )


def parse(markup: str, kind: PageKind, entry: ListingEntry | None = None) -> ListingPage | Movie:
    """Parse markup of the given page kind. Detail pages need their listing entry."""
    if kind is PageKind.LISTING:
        return parse_listing_page(markup)
    if entry is None:
        raise ValueError("Parsing a detail page requires its listing entry")
    return parse_film_page(markup, entry)
