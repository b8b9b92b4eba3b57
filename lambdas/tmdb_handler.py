"""TMDB discovery for room candidates.

Candidates are drawn from random TMDB discover pages so that each room gets
a different selection, filtered down to Western-language titles written in
Latin script, then shuffled.
"""
import os
import random
import unicodedata
from typing import Any, Optional

import httpx
from attrs import define, field
from aws_lambda_powertools.utilities.typing import LambdaContext

from trinity_common import (
    TrinityRequestError,
    build_logger,
    error_response,
    ok,
    validate_genres,
    validate_media_type,
)

logger = build_logger("trinity-tmdb")

DEFAULT_BASE_URL = "https://api.themoviedb.org/3"
POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
ALLOWED_LANGUAGES = ("en", "es", "fr", "it", "de", "pt")
MIN_VOTE_COUNT = 50
TARGET_COUNT = 50
# Below this many AND results, multi-genre discovery falls back to OR
MIN_RESULTS_THRESHOLD = 50
MAX_TMDB_PAGES = 500
RANDOM_PAGE_CEILING = 50
PAGES_PER_STRATEGY = 3
TOP_UP_ATTEMPTS = 3

LATIN_RANGES = (
    (0x0000, 0x007F),
    (0x00A0, 0x00FF),
    (0x0100, 0x017F),
    (0x0180, 0x024F),
    (0x1E00, 0x1EFF),
)


def _is_latin_char(char: str) -> bool:
    code_point = ord(char)
    if any(low <= code_point <= high for low, high in LATIN_RANGES):
        return True
    if char.isspace():
        return True
    return unicodedata.category(char)[0] in ("P", "N")


def is_latin_script(text: Optional[str]) -> bool:
    if not text or not text.strip():
        return False
    return all(_is_latin_char(char) for char in text)


@define(slots=True, kw_only=True, frozen=True)
class MovieCandidate:
    id: int
    title: str
    overview: str
    poster_path: Optional[str]
    release_date: str
    media_type: str
    genre_ids: list[int] = field(factory=list)

    def matches_all(self, genre_ids: list[int]) -> bool:
        return all(genre_id in self.genre_ids for genre_id in genre_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "overview": self.overview,
            "posterPath": self.poster_path,
            "releaseDate": self.release_date,
            "mediaType": self.media_type,
            "genreIds": self.genre_ids,
        }


@define(slots=True, frozen=True)
class DiscoverPage:
    results: list[dict[str, Any]]
    total_results: int
    total_pages: int


def to_candidate(item: dict[str, Any], media_type: str) -> Optional[MovieCandidate]:
    """Apply the quality filters to a raw TMDB result.

    Returns ``None`` for results without a poster or overview, with too few
    votes, in a non-Western original language, or not written in Latin script.
    """
    title = item.get("title") or item.get("name") or ""
    overview = item.get("overview") or ""

    if not item.get("poster_path"):
        logger.debug("Filtered out item without poster", title=title)
        return None
    if not overview.strip():
        logger.debug("Filtered out item without overview", title=title)
        return None
    vote_count = item.get("vote_count")
    if vote_count and vote_count < MIN_VOTE_COUNT:
        logger.debug("Filtered out low-vote item", title=title, vote_count=vote_count)
        return None
    if item.get("original_language") not in ALLOWED_LANGUAGES:
        logger.debug("Filtered out non-Western language", title=title)
        return None
    if not (is_latin_script(title) and is_latin_script(overview)):
        logger.debug("Filtered out non-Latin content", title=title)
        return None

    return MovieCandidate(
        id=item["id"],
        title=title,
        overview=overview,
        poster_path=f"{POSTER_BASE_URL}{item['poster_path']}",
        release_date=item.get("release_date") or item.get("first_air_date") or "",
        media_type=media_type,
        genre_ids=list(item.get("genre_ids") or []),
    )


class TmdbClient:
    TIMEOUT = 10.0

    def __init__(
        self,
        read_token: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: Optional[httpx.Client] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        if not read_token:
            raise TrinityRequestError("TMDB_READ_TOKEN or TMDB_API_KEY environment variable is required")
        self.base_url = base_url
        self.rng = rng or random.Random()
        self._client = http_client or httpx.Client(
            base_url=base_url,
            headers={
                "accept": "application/json",
                "Authorization": f"Bearer {read_token}",
            },
            timeout=self.TIMEOUT,
        )

    @classmethod
    def from_environment(cls) -> "TmdbClient":
        read_token = os.environ.get("TMDB_READ_TOKEN") or os.environ.get("TMDB_API_KEY") or ""
        return cls(
            read_token=read_token,
            base_url=os.environ.get("TMDB_BASE_URL") or DEFAULT_BASE_URL,
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def fetch_page(
        self,
        media_type: str,
        genre_ids: Optional[list[int]] = None,
        logic: Optional[str] = None,
        page: int = 1,
    ) -> DiscoverPage:
        endpoint = "/discover/movie" if media_type == "MOVIE" else "/discover/tv"
        params: dict[str, Any] = {
            "page": page,
            "language": "es-ES",
            "sort_by": "popularity.desc",
            "include_adult": "false",
            "with_original_language": "|".join(ALLOWED_LANGUAGES),
            "vote_count.gte": MIN_VOTE_COUNT,
        }
        if genre_ids:
            separator = "|" if logic == "OR" else ","
            params["with_genres"] = separator.join(str(genre_id) for genre_id in genre_ids)

        logger.debug("Fetching from TMDB", endpoint=endpoint, params=params)
        response = self._client.get(endpoint, params=params)
        response.raise_for_status()
        data = response.json()
        return DiscoverPage(
            results=data.get("results") or [],
            total_results=data.get("total_results") or 0,
            total_pages=data.get("total_pages") or 1,
        )

    def discover(self, media_type: str, genre_ids: Optional[list[int]] = None) -> list[dict[str, Any]]:
        genre_ids = list(genre_ids or [])
        candidates: dict[int, MovieCandidate] = {}

        try:
            logic = self._collect(media_type, genre_ids, candidates)
            self._top_up(media_type, genre_ids, logic, candidates)
        except (httpx.HTTPError, ValueError):
            logger.exception("TMDB discovery failed, returning partial results", count=len(candidates))
            return [candidate.to_dict() for candidate in candidates.values()]

        shuffled = list(candidates.values())
        self.rng.shuffle(shuffled)
        logger.info("TMDB discovery complete", count=min(len(shuffled), TARGET_COUNT), logic=logic)
        return [candidate.to_dict() for candidate in shuffled[:TARGET_COUNT]]

    def _collect(
        self, media_type: str, genre_ids: list[int], candidates: dict[int, MovieCandidate]
    ) -> Optional[str]:
        """Fill ``candidates`` from random pages and return the genre logic used."""
        if len(genre_ids) <= 1:
            page = self.fetch_page(
                media_type, genre_ids, page=self.rng.randint(1, RANDOM_PAGE_CEILING)
            )
            for candidate in self._filter(page.results, media_type):
                candidates[candidate.id] = candidate
            return None

        # probe the strict intersection first
        probe = self.fetch_page(media_type, genre_ids, logic="AND", page=1)
        logic = "AND" if probe.total_results >= MIN_RESULTS_THRESHOLD else "OR"
        logger.info("Multi-genre strategy chosen", logic=logic, strict_results=probe.total_results)

        first_page = probe if logic == "AND" else self.fetch_page(
            media_type, genre_ids, logic="OR", page=1
        )
        total_pages = min(first_page.total_pages, MAX_TMDB_PAGES)

        for _ in range(min(PAGES_PER_STRATEGY, total_pages)):
            if len(candidates) >= TARGET_COUNT:
                break
            page = self.fetch_page(
                media_type, genre_ids, logic=logic, page=self.rng.randint(1, total_pages)
            )
            filtered = self._filter(page.results, media_type)
            if logic == "OR":
                # stable sort keeps TMDB order within each group
                filtered.sort(key=lambda candidate: not candidate.matches_all(genre_ids))
            for candidate in filtered:
                if len(candidates) >= TARGET_COUNT:
                    break
                candidates[candidate.id] = candidate
        return logic

    def _top_up(
        self,
        media_type: str,
        genre_ids: list[int],
        logic: Optional[str],
        candidates: dict[int, MovieCandidate],
    ) -> None:
        for attempt in range(1, TOP_UP_ATTEMPTS + 1):
            if len(candidates) >= TARGET_COUNT:
                return
            page = self.fetch_page(
                media_type,
                genre_ids or None,
                logic=logic if len(genre_ids) > 1 else None,
                page=self.rng.randint(1, RANDOM_PAGE_CEILING),
            )
            added = 0
            for candidate in self._filter(page.results, media_type):
                if len(candidates) >= TARGET_COUNT:
                    break
                if candidate.id not in candidates:
                    candidates[candidate.id] = candidate
                    added += 1
            logger.info("Top-up fetch", attempt=attempt, added=added, total=len(candidates))
            if added == 0:
                return

    @staticmethod
    def _filter(results: list[dict[str, Any]], media_type: str) -> list[MovieCandidate]:
        candidates = []
        for item in results:
            candidate = to_candidate(item, media_type)
            if candidate is not None:
                candidates.append(candidate)
        return candidates


# reused across warm invocations
_tmdb_client: Optional[TmdbClient] = None


def get_tmdb_client() -> TmdbClient:
    global _tmdb_client
    if _tmdb_client is None:
        _tmdb_client = TmdbClient.from_environment()
    return _tmdb_client


@logger.inject_lambda_context
def handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    return handle_event(event)


def handle_event(event: dict[str, Any], client: Optional[TmdbClient] = None) -> dict[str, Any]:
    logger.info("TMDB event received", media_type=event.get("mediaType"))
    try:
        media_type = validate_media_type(event.get("mediaType"))
        genre_ids = validate_genres(event.get("genreIds"))
        client = client or get_tmdb_client()
        candidates = client.discover(media_type, genre_ids)
    except ValueError as e:
        logger.exception("TMDB request failed")
        return error_response(500, str(e), candidates=[], totalResults=0, page=1)

    return ok({"candidates": candidates, "totalResults": len(candidates), "page": 1})
