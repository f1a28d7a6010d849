"""
Local lighting controller client.

Talks to a WLED-compatible controller on the member's own network through
its JSON state API (``POST http://{host}/json/state``). One attempt per
call with a bounded timeout; failures surface as
``ControllerUnreachableError`` and are never retried here.
"""

import logging
from typing import Any, Sequence

import requests

from neighborsync.domain.colors import BLACK, Color
from neighborsync.domain.commands import SyncCommand
from neighborsync.domain.exceptions import ControllerUnreachableError

logger = logging.getLogger(__name__)

# Controller segments accept a primary, secondary and tertiary colour
SEGMENT_COLOR_SLOTS = 3
DEFAULT_COLOR: Color = (255, 255, 255)


def build_state_payload(command: SyncCommand, colors: Sequence[Color] | None = None) -> dict[str, Any]:
    """
    Build the controller state for ``command``.

    Args:
        command: Group command being executed
        colors: This member's colours (defaults to the command colours)

    Returns:
        ``{"on": true, "bri": .., "seg": [{"fx", "sx", "ix", "pal", "col"}]}``
        with colours padded with black (or truncated) to three slots
    """
    slots = [list(c) for c in (colors if colors else command.colors)]
    if not slots:
        slots.append(list(DEFAULT_COLOR))
    while len(slots) < SEGMENT_COLOR_SLOTS:
        slots.append(list(BLACK))

    return {
        "on": True,
        "bri": command.brightness,
        "seg": [
            {
                "fx": command.effect_id,
                "sx": command.speed,
                "ix": command.intensity,
                "pal": command.palette_id,
                "col": slots[:SEGMENT_COLOR_SLOTS],
            }
        ],
    }


class WLEDClient:
    """
    HTTP client for one WLED controller.

    Attributes:
        host (str): Controller address (``ip`` or ``ip:port``) on the local network.
        timeout (float): Request timeout in seconds.
    """

    def __init__(self, host: str, timeout: float = 3.0, session: requests.Session | None = None):
        if not host:
            raise ValueError("Controller host is required")
        self.host = host
        self.timeout = float(timeout)
        self._http = session or requests

    @property
    def state_url(self) -> str:
        return f"http://{self.host}/json/state"

    def apply_state(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        """
        Send a state payload to the controller.

        Returns:
            The controller's JSON reply, if any.

        Raises:
            ControllerUnreachableError: timeout, connection or HTTP error.
        """
        try:
            response = self._http.post(self.state_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ControllerUnreachableError(
                f"Error controlling lights at {self.state_url}: {e}",
                detail={"host": self.host},
            ) from e

        logger.debug("Applied state on %s: %s", self.host, payload)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def get_state(self) -> dict[str, Any]:
        """Read the controller's current state."""
        try:
            response = self._http.get(self.state_url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ControllerUnreachableError(
                f"Error reading state from {self.state_url}: {e}",
                detail={"host": self.host},
            ) from e

    def is_reachable(self) -> bool:
        """Cheap reachability check used for presence updates."""
        try:
            self.get_state()
        except ControllerUnreachableError as e:
            logger.info("Controller %s unreachable: %s", self.host, e)
            return False
        return True
