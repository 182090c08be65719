"""
Title resolution: find the MyAnimeList entry and episode number for a recognized title.

Two candidates are looked up at the same time: MAL's own top search hit, and the best re-ranked
hit followed along its sequel chain to the wanted season. Each candidate is then corrected with the
anime relations rules, and the first one that is in the user's list wins.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from rapidfuzz.distance import Levenshtein

from malScrobbler.animeRelations import AnimeDb, AnimeRelations
from malScrobbler.malClient import AnimeObject, MalClient
from malScrobbler.titleRecognizer import Title

logger = logging.getLogger(__name__)

MAL_ANIME_URL: str = "https://myanimelist.net/anime/{}"

# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class AnimeInfo:
    """Resolved anime. Two infos are equal when they are the same episode of the same anime."""

    id: int
    episode_watched: int
    title: str = field(default="", compare=False)
    picture: Optional[str] = field(default=None, compare=False)
    website_url: str = field(default="", compare=False)
    total_episodes: int = field(default=0, compare=False)

    @classmethod
    def from_anime_object(cls, anime_object: AnimeObject, episode: int) -> "AnimeInfo":
        return cls(
            id=anime_object.id,
            episode_watched=episode,
            title=anime_object.title,
            picture=anime_object.picture,
            website_url=MAL_ANIME_URL.format(anime_object.id),
            total_episodes=anime_object.num_episodes,
        )


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# RANKING
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


def search_relevance(query: str, anime_object: AnimeObject) -> float:
    """
    Score a search result. Closer titles and more popular anime (lower popularity rank) score higher.

    Args:
        query (str): Searched title.
        anime_object (AnimeObject): Search result.

    Returns:
        float: Relevance, higher is better.
    """
    dist = Levenshtein.distance(anime_object.title.lower(), query.lower())
    edit_distance_relevance = 1.0 / (dist + 1)
    popularity_relevance = 1.0 / max(anime_object.popularity, 1)

    return edit_distance_relevance * 0.5 + popularity_relevance * 0.5


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# RESOLVER
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


class TitleResolver:
    """Resolves titles against MAL. Stateless apart from its collaborators, caching is up to the caller."""

    def __init__(self, client: MalClient, relations: AnimeRelations) -> None:
        self.client = client
        self.relations = relations

    def resolve(self, title: Title) -> Optional[AnimeInfo]:
        """
        Resolve a title to an anime in the user's list.

        Args:
            title (Title): Recognized title.

        Returns:
            Optional[AnimeInfo]: Resolved anime, or None if nothing in the user's list matches.

        Raises:
            MalClientError: If a request fails. Not found is never an error.
        """
        for anime_object, episode in self.find_candidates(title):
            if anime_object.is_in_my_list():
                anime_info = AnimeInfo.from_anime_object(anime_object, episode)
                logger.info("Resolved %s to %s (%s), episode %d", title, anime_info.title, anime_info.id, episode)
                return anime_info

        logger.info("Couldn't find %s in your list", title)
        return None

    def find_candidates(self, title: Title) -> list[tuple[AnimeObject, int]]:
        """Candidates with relations applied, MAL's top hit first, then the season walk result."""
        # Both searches have to finish before going on. Leaving the executor waits for both.
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="resolver") as executor:
            plain_future = executor.submit(self.find_anime, title)
            season_future = executor.submit(self.find_anime_with_season, title)
            found = [plain_future.result(), season_future.result()]

        candidates: list[tuple[AnimeObject, int]] = []
        tried: set[int] = set()
        for anime_object in found:
            if anime_object is None or anime_object.id in tried:
                continue
            tried.add(anime_object.id)
            candidates.append(self.apply_anime_relation(title, anime_object))
        return candidates

    def find_anime(self, title: Title) -> Optional[AnimeObject]:
        """MAL's first search result, as it is."""
        results = self.client.search(title.title)
        return results[0] if results else None

    def find_anime_with_season(self, title: Title) -> Optional[AnimeObject]:
        """Best result by search_relevance, followed along its sequels to the title's season."""
        results = self.client.search(title.title)
        if not results:
            return None

        # sorted() is stable, so ties keep MAL's order
        ranked = sorted(results, key=lambda anime_object: search_relevance(title.title, anime_object), reverse=True)
        return self.get_nth_season(ranked[0].id, title.season_number)

    def get_nth_season(self, anime_id: int, season_number: int) -> Optional[AnimeObject]:
        """
        Walk the sequel chain starting at ``anime_id`` to the given season.

        OVAs, specials and music entries in the chain don't count as seasons.

        Args:
            anime_id (int): First season's MAL ID.
            season_number (int): Season to find, starting at 1.

        Returns:
            Optional[AnimeObject]: The season's entry, or None if the chain ends before it.
        """
        if season_number < 1:
            return None

        current_season = 0
        current_id: Optional[int] = anime_id
        visited: set[int] = set()

        while current_id is not None and current_id not in visited:
            visited.add(current_id)
            anime_object = self.client.get_by_id(current_id)
            if anime_object.counts_as_season():
                current_season += 1
            if current_season == season_number:
                return anime_object
            current_id = anime_object.sequel_id()

        logger.debug("Season %d not found starting from %s", season_number, anime_id)
        return None

    def apply_anime_relation(self, title: Title, anime_object: AnimeObject) -> tuple[AnimeObject, int]:
        """
        Correct the episode number with the relations rules.

        The first rule that changes the ID or episode is used, and the new entry is fetched.

        Args:
            title (Title): Recognized title.
            anime_object (AnimeObject): Candidate entry.

        Returns:
            tuple[AnimeObject, int]: Entry and episode number, corrected or as they were.
        """
        episode = title.episode_number
        for rule in self.relations.get_rules(AnimeDb.MAL, anime_object.id):
            new_id, new_episode = rule.convert_episode_number(AnimeDb.MAL, anime_object.id, episode)
            if (new_id, new_episode) != (anime_object.id, episode):
                logger.debug("Relation rule maps %s ep %d to %s ep %d", anime_object.id, episode, new_id, new_episode)
                if new_id == anime_object.id:
                    return anime_object, new_episode
                return self.client.get_by_id(new_id), new_episode

        return anime_object, episode
