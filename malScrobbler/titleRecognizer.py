"""
Title recognition: turn a player's displayed title or a filename into a series name, season and episode.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

from guessit import guessit  # type: ignore

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Title:
    """Recognized title. Used as a cache key, so it's immutable."""

    title: str
    season_number: int = 1
    episode_number: int = 1


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# RECOGNITION STRATEGIES
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════

# ani-cli sets the mpv window title to "ani-cli: <title> ep <episode>"
ANI_CLI_PREFIX: str = "ani-cli: "
ANI_CLI_RE = re.compile(r"^(?P<title>.+?) ep (?P<episode>\d+)$")

GUESSIT_OPTIONS: str = "--excludes country --excludes language --type episode"


def recognize_ani_cli_title(displayed_title: Optional[str]) -> Optional[Title]:
    """
    Recognize a title set by ani-cli.

    Args:
        displayed_title (Optional[str]): Title shown by the player.

    Returns:
        Optional[Title]: Title with season 1, or None if it isn't an ani-cli title.
    """
    if not displayed_title or not displayed_title.startswith(ANI_CLI_PREFIX):
        return None

    match = ANI_CLI_RE.match(displayed_title[len(ANI_CLI_PREFIX) :].strip())
    if not match:
        return None

    episode = int(match.group("episode"))
    if episode < 1:
        return None
    return Title(match.group("title").strip(), 1, episode)


def _first_int(value: Any) -> Optional[int]:
    if isinstance(value, list):
        value = value[0] if value else None
    return value if isinstance(value, int) else None


def recognize_filename(filename: Optional[str]) -> Optional[Title]:
    """
    Recognize a title from a filename or path using guessit.

    Handles the usual release naming, e.g. "[Group] Title - 05 [1080p].mkv" or
    "Title S02E03.mkv". If the filename has no title, up to two parent folders are tried.

    Args:
        filename (Optional[str]): Filename or path of the played file.

    Returns:
        Optional[Title]: Recognized title, or None if it couldn't be recognized.
    """
    if not filename:
        return None

    try:
        path_parts = [part for part in filename.replace("\\", "/").split("/") if part]
        if not path_parts:
            return None

        guess = guessit(path_parts[-1], GUESSIT_OPTIONS)
        logger.debug("File name guess: %s -> %s", path_parts[-1], dict(guess))

        episode = guess.get("episode")
        season = guess.get("season")

        # 'episode_title': '02' in 'S2 02'
        episode_title = guess.get("episode_title")
        if episode is None and isinstance(episode_title, str) and episode_title.isdigit():
            episode = int(episode_title)

        # 'episode': [86, 13] (EIGHTY-SIX). The last one is the actual episode.
        if isinstance(episode, list):
            episode = episode[-1] if episode else None

        # 'season': [2, 3] in "S2 03"
        if isinstance(season, list):
            if episode is None and len(season) > 1:
                episode = season[-1]
            season = season[0] if season else None

        name = guess.get("title")
        if not name:
            # Title is probably in the name of the folder it's stored in
            for folder in reversed(path_parts[-3:-1]):
                folder_guess = guessit(folder, GUESSIT_OPTIONS)
                logger.debug("Folder guess: %s -> %s", folder, dict(folder_guess))
                if season is None:
                    season = _first_int(folder_guess.get("season"))
                if folder_guess.get("title"):
                    name = folder_guess["title"]
                    break

        if not name:
            logger.debug("Couldn't find title in '%s'", filename)
            return None

        episode = 1 if episode is None else int(episode)
        season = 1 if season is None else int(season)
        # Season 0 holds specials, which have entries of their own
        if episode < 1 or season < 1:
            return None

        return Title(str(name), season, episode)

    except Exception as e:
        logger.debug("Couldn't parse '%s': %s", filename, e)
        return None


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# RECOGNIZER
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


class TitleRecognizer:
    """Tries each recognition strategy in order, the first one to recognize a title wins."""

    def __init__(self) -> None:
        self.strategies: list[Callable[[Optional[str], Optional[str]], Optional[Title]]] = [
            lambda displayed_title, filename: recognize_ani_cli_title(displayed_title),
            lambda displayed_title, filename: recognize_filename(filename),
        ]

    def recognize(self, displayed_title: Optional[str] = None, filename: Optional[str] = None) -> Optional[Title]:
        """
        Recognize a title from whatever the player provides.

        Args:
            displayed_title (Optional[str]): Title shown by the player.
            filename (Optional[str]): Filename or path of the played file.

        Returns:
            Optional[Title]: Recognized title or None.
        """
        for strategy in self.strategies:
            title = strategy(displayed_title, filename)
            if title is not None:
                logger.debug("Recognized %s", title)
                return title
        return None

