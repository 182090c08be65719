"""
Media players: what is being played, read over mpv's JSON IPC.

Start mpv with --input-ipc-server=PATH and add PATH to the MPV_SOCKETS option.
"""

import json
import logging
import socket
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

IPC_TIMEOUT: float = 2.0


@dataclass(frozen=True)
class PlayerStatus:
    """Playback state of one player."""

    player_name: str
    is_playing: bool
    # Fraction of the file played, 0 to 1
    position: float
    title: Optional[str] = None
    filename: Optional[str] = None


# Returns the status of every active player
PlayerSource = Callable[[], list[PlayerStatus]]


class MpvIpcPlayer:
    """One mpv instance listening on a Unix socket."""

    def __init__(self, socket_path: str, timeout: float = IPC_TIMEOUT) -> None:
        self.socket_path = socket_path
        self.timeout = timeout

    def send(self, payloads: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Send commands and read their replies, in order.

        Args:
            payloads (list[dict[str, Any]]): Commands, each with a unique request_id.

        Returns:
            list[dict[str, Any]]: Replies keyed back to the payloads by request_id.

        Raises:
            OSError: If the socket can't be reached.
        """
        data = b"".join(json.dumps(payload, separators=(",", ":")).encode("utf-8") + b"\n" for payload in payloads)
        wanted = {payload["request_id"] for payload in payloads}
        replies: dict[int, dict[str, Any]] = {}

        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(self.timeout)
            sock.connect(self.socket_path)
            sock.sendall(data)
            buffer = b""
            while wanted - replies.keys():
                chunk = sock.recv(4096)
                if not chunk:
                    break
                buffer += chunk
                *lines, buffer = buffer.split(b"\n")
                for line in lines:
                    if not line.strip():
                        continue
                    # Events like {"event": "..."} have no request_id and are skipped
                    message = json.loads(line)
                    if message.get("request_id") in wanted:
                        replies[message["request_id"]] = message

        return [replies.get(payload["request_id"], {}) for payload in payloads]

    def status(self) -> Optional[PlayerStatus]:
        """Current playback status, or None if nothing is loaded or mpv isn't reachable."""
        properties = ["path", "media-title", "pause", "percent-pos"]
        payloads = [{"command": ["get_property", prop], "request_id": i + 1} for i, prop in enumerate(properties)]
        try:
            replies = self.send(payloads)
        except (OSError, ValueError) as e:
            logger.debug("mpv at %s not reachable: %s", self.socket_path, e)
            return None

        values = {prop: reply.get("data") for prop, reply in zip(properties, replies) if reply.get("error") == "success"}
        if not values.get("path"):
            return None

        return PlayerStatus(
            player_name="mpv",
            is_playing=not values.get("pause", True),
            position=float(values.get("percent-pos") or 0) / 100,
            title=values.get("media-title"),
            filename=values["path"],
        )


class MpvPlayerSource:
    """Player source over a fixed list of mpv sockets."""

    def __init__(self, socket_paths: list[str]) -> None:
        self.players = [MpvIpcPlayer(path) for path in socket_paths]

    def __call__(self) -> list[PlayerStatus]:
        statuses = (player.status() for player in self.players)
        return [status for status in statuses if status is not None]
