"""
malScrobbler: Scrobble anime watched in local media players to MyAnimeList.

Recognizes the title and episode being played, resolves it to an entry in your MAL list,
and updates your progress once enough of the episode was played.
"""

import argparse
import logging
import sys
import threading
import webbrowser
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Optional

from malScrobbler import __version__
from malScrobbler.animeRelations import AnimeRelations, default_relations
from malScrobbler.config import DEFAULT_OPTIONS, Config
from malScrobbler.malClient import MalAuthenticationError, MalClient
from malScrobbler.players import MpvPlayerSource, PlayerSource, PlayerStatus
from malScrobbler.resolutionCache import ResolutionCache
from malScrobbler.titleRecognizer import Title, TitleRecognizer
from malScrobbler.titleResolver import AnimeInfo, TitleResolver

logger = logging.getLogger(__name__)

LOG_FORMAT: str = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class PlayedTitle:
    """What a player is playing, and whether it was scrobbled yet."""

    player_name: str
    anime_info: AnimeInfo
    scrobbled: bool


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# SCROBBLER
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


class MalScrobbler:
    """Ties players, title recognition, resolution and MAL updates together. Owns the session caches."""

    def __init__(
        self,
        config: Config,
        client: Optional[MalClient] = None,
        relations: Optional[AnimeRelations] = None,
        player_source: Optional[PlayerSource] = None,
    ) -> None:
        self.config = config
        self.client = client or MalClient(config)
        self.recognizer = TitleRecognizer()
        self.resolver = TitleResolver(self.client, relations or default_relations())
        self.cache = ResolutionCache()
        self.player_source: PlayerSource = player_source or MpvPlayerSource(config.options.get("MPV_SOCKETS") or [])
        self.authenticated = config.is_authenticated()

    # ──────────────────────────────────────────────────────────────────────────────────────────────────
    # AUTHENTICATION
    # ──────────────────────────────────────────────────────────────────────────────────────────────────

    def is_authenticated(self) -> bool:
        return self.authenticated

    def authenticate(self, open_browser: bool = True) -> None:
        """
        Sign in to MyAnimeList in the browser and store the tokens.

        Args:
            open_browser (bool): Open the sign in page automatically.

        Raises:
            MalAuthenticationError: If signing in fails.
        """
        authenticator = self.client.authenticator
        receiver = authenticator.start_authentication()
        print(f"Sign in to MyAnimeList: {receiver.auth_url}")
        if open_browser:
            webbrowser.open_new_tab(receiver.auth_url)

        authenticator.wait_for_auth(receiver)
        self.on_authenticated()
        osd_message("Signed in to MyAnimeList")

    def on_authenticated(self) -> None:
        # The account may be a different one, nothing cached can be trusted anymore
        self.cache.clear()
        self.authenticated = True

    def sign_out(self) -> None:
        self.config.clear_tokens()
        self.config.save()
        self.cache.clear()
        self.authenticated = False

    # ──────────────────────────────────────────────────────────────────────────────────────────────────
    # RESOLUTION & UPDATES
    # ──────────────────────────────────────────────────────────────────────────────────────────────────

    def get_anime_info(self, title: Title) -> Optional[AnimeInfo]:
        """
        Resolve a title, using the session cache when possible.

        Args:
            title (Title): Recognized title.

        Returns:
            Optional[AnimeInfo]: Resolved anime or None if it isn't in the user's list.
        """
        cached, anime_info = self.cache.lookup(title)
        if cached:
            logger.debug("Using cached resolution for %s", title)
            return anime_info

        anime_info = self.resolver.resolve(title)
        self.cache.store(title, anime_info)
        return anime_info

    def scrobble_title(self, anime_info: AnimeInfo) -> bool:
        """
        Update the episode on MAL, once per session.

        Args:
            anime_info (AnimeInfo): Resolved anime and episode.

        Returns:
            bool: True if MAL was updated.
        """
        if self.cache.is_scrobbled(anime_info):
            return False

        updated = self.client.set_title_watched(anime_info.id, anime_info.episode_watched)
        self.cache.mark_scrobbled(anime_info)

        if updated:
            osd_message(f'Updated "{anime_info.title}" to: {anime_info.episode_watched}')
            logger.info("Scrobbled anime: %s, episode %d", anime_info.title, anime_info.episode_watched)
        return updated

    def should_scrobble(self, status: PlayerStatus) -> bool:
        threshold = float(self.config.options.get("UPDATE_PERCENTAGE", 50)) / 100
        return status.is_playing and status.position > threshold

    def try_scrobble(self) -> list[PlayedTitle]:
        """
        Check every player once and scrobble what was watched far enough.

        A failure for one player is logged and doesn't stop the others. An authentication
        failure signs the scrobbler out until the user signs in again.

        Returns:
            list[PlayedTitle]: Anime currently played, per player.
        """
        if not self.authenticated:
            return []

        played: list[PlayedTitle] = []
        for status in self.player_source():
            title = self.recognizer.recognize(status.title, status.filename)
            if title is None:
                continue

            try:
                anime_info = self.get_anime_info(title)
                if anime_info is None:
                    continue
                if self.should_scrobble(status):
                    self.scrobble_title(anime_info)
            except MalAuthenticationError as e:
                logger.error("%s. Run 'malScrobbler authenticate' to sign in again.", e)
                osd_message("MyAnimeList sign in expired, please sign in again")
                self.cache.clear()
                self.authenticated = False
                return played
            except Exception as e:
                logger.error("Couldn't scrobble %s from %s: %s", title, status.player_name, e)
                continue

            played.append(PlayedTitle(status.player_name, anime_info, self.cache.is_scrobbled(anime_info)))
        return played

    def scrobble_file(self, filename: Optional[str], displayed_title: Optional[str] = None) -> AnimeInfo:
        """
        Scrobble a single file right away.

        Args:
            filename (Optional[str]): Path of the watched file.
            displayed_title (Optional[str]): Title shown by the player, if any.

        Returns:
            AnimeInfo: The scrobbled anime.

        Raises:
            Exception: If the title can't be recognized or isn't in the user's list.
        """
        anime_info = self.resolve_file(filename, displayed_title)
        self.scrobble_title(anime_info)
        return anime_info

    def resolve_file(self, filename: Optional[str], displayed_title: Optional[str] = None) -> AnimeInfo:
        title = self.recognizer.recognize(displayed_title, filename)
        if title is None:
            raise Exception(f"Couldn't recognize an anime title from {displayed_title or filename!r}")

        anime_info = self.get_anime_info(title)
        if anime_info is None:
            raise Exception("Couldn't find that anime! Make sure it is on your list and the title is correct.")
        return anime_info

    def run_daemon(self, stop_event: Optional[threading.Event] = None) -> None:
        """
        Poll players until stopped. A tick only starts after the previous one is done.

        Args:
            stop_event (Optional[threading.Event]): Set it to stop the loop.
        """
        stop_event = stop_event or threading.Event()
        interval = float(self.config.options.get("REFRESH_INTERVAL", DEFAULT_OPTIONS["REFRESH_INTERVAL"]))
        if not self.authenticated:
            logger.warning("Not signed in to MyAnimeList. Run 'malScrobbler authenticate' first.")

        while not stop_event.is_set():
            try:
                self.try_scrobble()
            except Exception as e:
                logger.error("Scrobbling failed: %s", e)
            stop_event.wait(interval)


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# MAIN ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


def osd_message(msg: str) -> None:
    """Display an on-screen display (OSD) message."""
    print(f"OSD:{msg}")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="malScrobbler", description="Scrobble anime you watch to MyAnimeList.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--config", help="Config file path")
    subparsers = parser.add_subparsers(dest="command", required=True)

    auth = subparsers.add_parser("authenticate", help="Sign in to MyAnimeList")
    auth.add_argument("--no-browser", action="store_true", help="Only print the sign in URL")

    subparsers.add_parser("sign-out", help="Forget the stored MyAnimeList tokens")

    for name, help_text in (
        ("scrobble", "Mark a watched file on MyAnimeList"),
        ("resolve", "Show what a file resolves to"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("filename", nargs="?", help="Path of the watched file")
        command.add_argument("--title", help="Title shown by the player")

    daemon = subparsers.add_parser("daemon", help="Watch mpv players and scrobble automatically")
    daemon.add_argument("--socket", action="append", default=[], help="mpv IPC socket path (repeatable)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point for the script."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        # Reconfigure to utf-8
        if sys.stdout.encoding != "utf-8":
            try:
                sys.stdout.reconfigure(encoding="utf-8")  # type: ignore
            except Exception as e_reconfigure:
                logger.warning("Couldn't reconfigure stdout to UTF-8: %s", e_reconfigure)

        config = Config.load(args.config)
        if args.command == "daemon" and args.socket:
            config.options["MPV_SOCKETS"] = args.socket

        scrobbler = MalScrobbler(config)

        if args.command == "authenticate":
            scrobbler.authenticate(open_browser=not args.no_browser)
        elif args.command == "sign-out":
            scrobbler.sign_out()
            print("Signed out.")
        elif args.command in ("scrobble", "resolve"):
            if not args.filename and not args.title:
                raise Exception("Give a filename or --title")
            if not scrobbler.is_authenticated():
                raise Exception("Not signed in to MyAnimeList. Run 'malScrobbler authenticate' first.")
            if args.command == "scrobble":
                anime_info = scrobbler.scrobble_file(args.filename, args.title)
            else:
                anime_info = scrobbler.resolve_file(args.filename, args.title)
            print(
                f"{anime_info.title}, episode {anime_info.episode_watched}/{anime_info.total_episodes or '?'}: "
                f"{anime_info.website_url}"
            )
        elif args.command == "daemon":
            try:
                scrobbler.run_daemon()
            except KeyboardInterrupt:
                logger.info("Stopped.")

    except Exception as e:
        print(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
