"""
Configuration: MyAnimeList tokens and scrobbler options, stored as JSON.
"""

# Options (set in config.json under "options"):
#   UPDATE_PERCENTAGE: Integer (0-100). How much of the episode needs to be played before it's scrobbled. Default is 50.
#   REFRESH_INTERVAL: Number. Seconds between player checks in daemon mode. Default is 20.
#   MPV_SOCKETS: List of mpv IPC socket paths (mpv --input-ipc-server=PATH) watched in daemon mode.

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

APP_NAME: str = "malScrobbler"
CONFIG_ENV: str = "MAL_SCROBBLER_CONFIG"

DEFAULT_OPTIONS: dict[str, Any] = {
    "UPDATE_PERCENTAGE": 50,
    "REFRESH_INTERVAL": 20,
    "MPV_SOCKETS": [],
}


class ConfigError(Exception):
    """Raised when the config file exists but can't be read."""


def default_config_path() -> str:
    """Config file path: $MAL_SCROBBLER_CONFIG, else $XDG_CONFIG_HOME/malScrobbler/config.json."""
    if os.environ.get(CONFIG_ENV):
        return os.environ[CONFIG_ENV]
    config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(config_home, APP_NAME, "config.json")


@dataclass
class Config:
    """Tokens and options. Unknown options are kept as they are."""

    access_token: str = ""
    refresh_token: str = ""
    options: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_OPTIONS))
    path: Optional[str] = field(default=None, compare=False)

    def is_authenticated(self) -> bool:
        return bool(self.access_token) and bool(self.refresh_token)

    def set_tokens(self, access_token: str, refresh_token: str) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token

    def clear_tokens(self) -> None:
        self.set_tokens("", "")

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """
        Load config from file, or defaults if the file doesn't exist.

        Args:
            path (Optional[str]): Config file path. Defaults to default_config_path().

        Returns:
            Config: Loaded configuration.

        Raises:
            ConfigError: If the file can't be read or isn't valid JSON.
        """
        path = path or default_config_path()
        if not os.path.exists(path):
            logger.warning("No config file found at %s - loading defaults", path)
            return cls(path=path)

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Could not read config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")

        options = dict(DEFAULT_OPTIONS)
        options.update(data.get("options") or {})
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token", ""),
            options=options,
            path=path,
        )

    def save(self) -> None:
        """Write config to its file, creating the directory if needed."""
        path = self.path or default_config_path()
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        data = {"access_token": self.access_token, "refresh_token": self.refresh_token, "options": self.options}
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        self.path = path
