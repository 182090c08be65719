"""Shared test fixtures for malScrobbler."""

import threading
from typing import Any, Optional

import pytest
import requests

from malScrobbler.animeRelations import AnimeRelations
from malScrobbler.config import Config
from malScrobbler.malClient import AnimeObject, MediaType, MyListStatus, RelatedAnime


def make_anime(
    anime_id: int,
    title: str,
    num_episodes: int = 12,
    media_type: MediaType = MediaType.TV,
    popularity: int = 100,
    watched: Optional[int] = None,
    sequel: Optional[int] = None,
) -> AnimeObject:
    """Build an AnimeObject. ``watched`` set means it's in the user's list."""
    related = (RelatedAnime(sequel, "sequel"),) if sequel is not None else ()
    return AnimeObject(
        id=anime_id,
        title=title,
        num_episodes=num_episodes,
        picture=f"https://cdn.myanimelist.net/images/anime/{anime_id}.jpg",
        media_type=media_type,
        popularity=popularity,
        my_list_status=MyListStatus("watching", watched) if watched is not None else None,
        related_anime=related,
    )


class FakeMalClient:
    """In-memory stand-in for MalClient."""

    def __init__(self) -> None:
        self.search_results: dict[str, list[AnimeObject]] = {}
        self.entries: dict[int, AnimeObject] = {}
        self.searches: list[str] = []
        self.fetches: list[int] = []
        self.writes: list[tuple[int, int]] = []
        self.errors: dict[str, Exception] = {}
        self.authenticator: Any = None
        self._lock = threading.Lock()

    def add(self, anime_object: AnimeObject, searchable_as: Optional[str] = None) -> AnimeObject:
        self.entries[anime_object.id] = anime_object
        if searchable_as is not None:
            self.search_results.setdefault(searchable_as, []).append(anime_object)
        return anime_object

    def search(self, query: str) -> list[AnimeObject]:
        with self._lock:
            self.searches.append(query)
        if "search" in self.errors:
            raise self.errors["search"]
        return list(self.search_results.get(query, []))

    def get_by_id(self, anime_id: int) -> AnimeObject:
        with self._lock:
            self.fetches.append(anime_id)
        if "get_by_id" in self.errors:
            raise self.errors["get_by_id"]
        return self.entries[anime_id]

    def set_title_watched(self, anime_id: int, episode: int) -> bool:
        entry = self.entries[anime_id]
        if entry.my_list_status is None or entry.my_list_status.num_episodes_watched >= episode:
            return False
        self.writes.append((anime_id, episode))
        return True


class FakeResponse:
    """Enough of requests.Response for the client."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("No JSON")
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)  # type: ignore[arg-type]


class FakeSession:
    """Records requests and replays queued responses."""

    def __init__(self, responses: Optional[list[Any]] = None) -> None:
        self.headers: dict[str, str] = {}
        self.responses = list(responses or [])
        self.requests: list[dict[str, Any]] = []
        self.posts: list[dict[str, Any]] = []
        self.post_responses: list[Any] = []

    def _next(self, queue: list[Any]) -> Any:
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def request(self, method: str, url: str, **kwargs: Any) -> Any:
        self.requests.append({"method": method, "url": url, **kwargs})
        return self._next(self.responses)

    def post(self, url: str, **kwargs: Any) -> Any:
        self.posts.append({"url": url, **kwargs})
        return self._next(self.post_responses)


RELATIONS_TEXT = """\
::meta
- version: 1.3.0

::rules
# Some Show: continuous numbering
- 10|110|210:13-24 -> 11|111|211:1-12
# Flagged
- 20|?|220:1-12 -> 21|~|221:1-12!
"""


@pytest.fixture
def relations() -> AnimeRelations:
    return AnimeRelations.build(RELATIONS_TEXT)


@pytest.fixture
def fake_client() -> FakeMalClient:
    return FakeMalClient()


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(access_token="access", refresh_token="refresh", path=str(tmp_path / "config.json"))
