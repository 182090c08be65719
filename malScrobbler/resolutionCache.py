"""
In-memory caches for a signed-in session: resolved titles, and episodes already scrobbled.
"""

from typing import Optional

from malScrobbler.titleRecognizer import Title
from malScrobbler.titleResolver import AnimeInfo


class ResolutionCache:
    """
    Title resolutions and scrobbled episodes for the current session.

    Both are cleared together whenever the user signs in again, since the account may have changed.
    """

    def __init__(self) -> None:
        self._titles: dict[Title, Optional[AnimeInfo]] = {}
        self._scrobbled: set[AnimeInfo] = set()

    def __len__(self) -> int:
        return len(self._titles)

    def lookup(self, title: Title) -> tuple[bool, Optional[AnimeInfo]]:
        """
        Look up a title's resolution.

        Args:
            title (Title): Recognized title.

        Returns:
            tuple[bool, Optional[AnimeInfo]]: Whether the title is cached, and its resolution.
            A cached None means the title was resolved and not found.
        """
        if title in self._titles:
            return True, self._titles[title]
        return False, None

    def store(self, title: Title, anime_info: Optional[AnimeInfo]) -> None:
        self._titles[title] = anime_info

    def is_scrobbled(self, anime_info: AnimeInfo) -> bool:
        return anime_info in self._scrobbled

    def mark_scrobbled(self, anime_info: AnimeInfo) -> None:
        self._scrobbled.add(anime_info)

    def clear(self) -> None:
        self._titles.clear()
        self._scrobbled.clear()
