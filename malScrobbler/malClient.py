"""
MyAnimeList API client: search, fetch by ID and list progress updates.

All requests go through a single-permit gate, so a token refresh triggered by one request
can't race another request still using the old token.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import requests

from malScrobbler import __version__
from malScrobbler.config import Config
from malScrobbler.oauth2Helper import OAuth2CodeReceiver, OAuth2FlowError, OAuth2Helper, OAuth2Token

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════

MAL_API_URL: str = "https://api.myanimelist.net/v2"
MAL_AUTH_URL: str = "https://myanimelist.net/v1/oauth2/authorize"
MAL_TOKEN_URL: str = "https://myanimelist.net/v1/oauth2/token"
MAL_CLIENT_ID: str = "6114d00ca681b7701d1e15fe11a4987e"
CLIENT_ID_HEADER: str = "X-MAL-Client-ID"
USER_AGENT: str = f"malScrobbler/{__version__}"

REQUEST_TIMEOUT: int = 10
# MAL rejects longer search queries
MAX_QUERY_LENGTH: int = 64

SEARCH_FIELDS: str = "title,main_picture,alternative_titles,num_episodes,my_list_status,media_type,popularity"
DETAIL_FIELDS: str = (
    "title,main_picture,alternative_titles,average_episode_duration,num_episodes,"
    "my_list_status,media_type,related_anime,popularity"
)

RELATION_TYPE_SEQUEL: str = "sequel"
STATUS_WATCHING: str = "watching"
STATUS_COMPLETED: str = "completed"


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


class MalClientError(Exception):
    """Base class for MyAnimeList client errors."""


class MalHttpError(MalClientError):
    """Network failure or unexpected HTTP status."""

    def __str__(self) -> str:
        return f"Could not communicate with MyAnimeList: {self.args[0] if self.args else ''}"


class MalAuthenticationError(MalClientError):
    """Credentials are invalid, expired, or couldn't be refreshed."""

    def __str__(self) -> str:
        return f"Could not authenticate to MyAnimeList: {self.args[0] if self.args else ''}"


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


class MediaType(Enum):
    TV = "tv"
    OVA = "ova"
    MOVIE = "movie"
    SPECIAL = "special"
    ONA = "ona"
    MUSIC = "music"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "MediaType":
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.UNKNOWN


# Media types that aren't a season of their own
NON_SEASON_TYPES: frozenset[MediaType] = frozenset({MediaType.OVA, MediaType.MUSIC, MediaType.SPECIAL})


@dataclass(frozen=True)
class RelatedAnime:
    id: int
    relation_type: str


@dataclass(frozen=True)
class MyListStatus:
    status: Optional[str]
    num_episodes_watched: int

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "MyListStatus":
        return cls(data.get("status"), int(data.get("num_episodes_watched") or 0))


@dataclass(frozen=True)
class AnimeObject:
    """An anime entry as returned by the API."""

    id: int
    title: str
    num_episodes: int = 0
    picture: Optional[str] = None
    media_type: MediaType = MediaType.UNKNOWN
    popularity: int = 0
    my_list_status: Optional[MyListStatus] = None
    related_anime: tuple[RelatedAnime, ...] = field(default_factory=tuple)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "AnimeObject":
        """
        Build an AnimeObject from an API anime object.

        Args:
            data (dict[str, Any]): The anime object ("node" of search results, or the detail response).

        Returns:
            AnimeObject: Parsed entry.
        """
        picture = data.get("main_picture") or {}
        list_status = data.get("my_list_status")
        related = tuple(
            RelatedAnime(int(rel["node"]["id"]), rel.get("relation_type", ""))
            for rel in data.get("related_anime") or []
        )
        return cls(
            id=int(data["id"]),
            title=data.get("title", ""),
            num_episodes=int(data.get("num_episodes") or 0),
            picture=picture.get("large") or picture.get("medium"),
            media_type=MediaType.parse(data.get("media_type")),
            popularity=int(data.get("popularity") or 0),
            my_list_status=MyListStatus.from_json(list_status) if list_status else None,
            related_anime=related,
        )

    def is_in_my_list(self) -> bool:
        return self.my_list_status is not None

    def counts_as_season(self) -> bool:
        return self.media_type not in NON_SEASON_TYPES

    def sequel_id(self) -> Optional[int]:
        return next((rel.id for rel in self.related_anime if rel.relation_type == RELATION_TYPE_SEQUEL), None)


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# AUTHENTICATION
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


class MalAuthenticator:
    """Signs in to MyAnimeList and keeps the tokens in the config."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.helper = OAuth2Helper(MAL_CLIENT_ID, MAL_AUTH_URL, MAL_TOKEN_URL, session)

    def start_authentication(self) -> OAuth2CodeReceiver:
        try:
            return self.helper.start_auth()
        except OAuth2FlowError as e:
            raise MalAuthenticationError(str(e)) from e

    def wait_for_auth(self, receiver: OAuth2CodeReceiver) -> None:
        try:
            token = receiver.wait_for_code()
        except OAuth2FlowError as e:
            raise MalAuthenticationError(str(e)) from e
        self.store_token(token)

    def refresh_token(self) -> None:
        logger.info("Refreshing MAL authentication token")
        try:
            token = self.helper.refresh_token(self.config.refresh_token)
        except OAuth2FlowError as e:
            raise MalAuthenticationError(str(e)) from e
        self.store_token(token)

    def store_token(self, token: OAuth2Token) -> None:
        if not token.refresh_token:
            raise MalAuthenticationError("Refresh token not provided by the MAL server")
        self.config.set_tokens(token.access_token, token.refresh_token)
        self.config.save()


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# CLIENT
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


class MalClient:
    """MyAnimeList API v2 client."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({CLIENT_ID_HEADER: MAL_CLIENT_ID, "User-Agent": USER_AGENT})
        self.authenticator = MalAuthenticator(config, self.session)
        self.request_permit = threading.BoundedSemaphore(1)

    # ──────────────────────────────────────────────────────────────────────────────────────────────────
    # REQUESTS
    # ──────────────────────────────────────────────────────────────────────────────────────────────────

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        headers = {"Authorization": f"Bearer {self.config.access_token}"}
        try:
            return self.session.request(method, url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            raise MalHttpError(e) from e

    def make_request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """
        Make an authenticated request, refreshing the token once on 401.

        Args:
            method (str): HTTP method.
            path (str): Path relative to the API URL.
            **kwargs: Passed to requests (params, data...).

        Returns:
            requests.Response: Successful response.

        Raises:
            MalAuthenticationError: If the token can't be refreshed or is still rejected after refreshing.
            MalHttpError: On network failure or any other error status.
        """
        url = f"{MAL_API_URL}{path}"
        with self.request_permit:
            response = self._send(method, url, **kwargs)

            if response.status_code == 401:
                self.authenticator.refresh_token()
                response = self._send(method, url, **kwargs)
                if response.status_code == 401:
                    raise MalAuthenticationError(f"Request rejected after refreshing the token: {method} {path}")

            try:
                response.raise_for_status()
            except requests.HTTPError as e:
                raise MalHttpError(e) from e
            return response

    @staticmethod
    def _json(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise MalHttpError(f"Invalid JSON response: {e}") from e

    # ──────────────────────────────────────────────────────────────────────────────────────────────────
    # CATALOG
    # ──────────────────────────────────────────────────────────────────────────────────────────────────

    def search(self, query: str) -> list[AnimeObject]:
        """
        Search anime by title, in the order MAL ranks them.

        Args:
            query (str): Title to search for.

        Returns:
            list[AnimeObject]: Search results, possibly empty.
        """
        logger.debug("Searching for %s", query)
        params = {"q": query[:MAX_QUERY_LENGTH], "fields": SEARCH_FIELDS}
        data = self._json(self.make_request("GET", "/anime", params=params))
        return [AnimeObject.from_json(item["node"]) for item in data.get("data", [])]

    def get_by_id(self, anime_id: int) -> AnimeObject:
        """Fetch an anime entry, including its related anime."""
        logger.debug("Getting by ID %s", anime_id)
        data = self._json(self.make_request("GET", f"/anime/{anime_id}", params={"fields": DETAIL_FIELDS}))
        return AnimeObject.from_json(data)

    # ──────────────────────────────────────────────────────────────────────────────────────────────────
    # LIST UPDATES
    # ──────────────────────────────────────────────────────────────────────────────────────────────────

    def set_status(self, anime_id: int, status: str, num_episodes_watched: int) -> MyListStatus:
        logger.info("Setting status to %s (%d episodes) for anime %s", status, num_episodes_watched, anime_id)
        data = {"status": status, "num_watched_episodes": str(num_episodes_watched)}
        response = self.make_request("PATCH", f"/anime/{anime_id}/my_list_status", data=data)
        return MyListStatus.from_json(self._json(response))

    def mark_watched(self, anime_id: int, num_episodes_watched: int) -> bool:
        """
        Set the watched episode count, completing the anime on its last episode.

        Args:
            anime_id (int): MAL anime ID.
            num_episodes_watched (int): New watched episode count.

        Returns:
            bool: False if the anime isn't in the user's list, True once updated.
        """
        return self.update_list_entry(self.get_by_id(anime_id), num_episodes_watched)

    def update_list_entry(self, anime_object: AnimeObject, num_episodes_watched: int) -> bool:
        if not anime_object.is_in_my_list():
            return False

        new_status = STATUS_COMPLETED if num_episodes_watched == anime_object.num_episodes else STATUS_WATCHING
        self.set_status(anime_object.id, new_status, num_episodes_watched)
        return True

    def set_title_watched(self, anime_id: int, episode: int) -> bool:
        """
        Mark an episode watched unless the list already has it.

        Args:
            anime_id (int): MAL anime ID.
            episode (int): Episode that was watched.

        Returns:
            bool: True if the list was updated.
        """
        anime_object = self.get_by_id(anime_id)
        if anime_object.my_list_status is None:
            logger.info("Anime %s is not in your list. Not updating.", anime_id)
            return False

        watched = anime_object.my_list_status.num_episodes_watched
        if watched >= episode:
            logger.info("Episode was not new. Not updating (%d <= %d)", episode, watched)
            return False

        return self.update_list_entry(anime_object, episode)
