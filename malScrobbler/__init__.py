"""
malScrobbler: Scrobble anime watched in local media players to MyAnimeList.
"""

__version__ = "0.5.0"
