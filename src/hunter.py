"""Hunter integration: dropping node entries after removal.

Two transports:
- HTTP: DELETE {hunter_url}/nodes?names=<csv> when hunter.url is configured
- CLI: `<hunter command> remove-node <csv>` otherwise
"""

import logging
import shlex

import requests

from common import run_command
from config import ProfileConfig
from errors import ProfileError

logger = logging.getLogger(__name__)


class HunterError(ProfileError):
    """Hunter could not be updated."""

    def __init__(self, message: str, names: list[str]):
        super().__init__("E700", message, names)


class HunterClient:
    """Client for the hunter node inventory."""

    def __init__(self, config: ProfileConfig, timeout: int = 30):
        self.command = config.hunter_command
        self.url = config.hunter_url.rstrip('/') if config.hunter_url else None
        self.timeout = timeout

    def remove_node(self, names_csv: str) -> None:
        """Remove comma-separated node names from hunter.

        Raises:
            HunterError: If hunter rejects or cannot be reached
        """
        names = [n for n in names_csv.split(',') if n]
        if self.url:
            self._remove_http(names_csv, names)
        else:
            self._remove_cli(names_csv, names)
        logger.info(f"Removed hunter entries: {names_csv}")

    def _remove_http(self, names_csv: str, names: list[str]) -> None:
        try:
            resp = requests.delete(
                f"{self.url}/nodes",
                params={'names': names_csv},
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise HunterError(f"Cannot connect to hunter at {self.url}: {e}", names) from e
        except requests.exceptions.Timeout as e:
            raise HunterError(f"Timeout connecting to hunter at {self.url}", names) from e

        if resp.status_code not in (200, 202, 204):
            raise HunterError(
                f"Unexpected hunter response {resp.status_code}: {resp.text[:100]}", names
            )

    def _remove_cli(self, names_csv: str, names: list[str]) -> None:
        cmd = shlex.split(self.command) + ['remove-node', names_csv]
        rc, out, err = run_command(cmd, timeout=self.timeout)
        if rc != 0:
            error_msg = err[-500:] if err else out[-500:]
            raise HunterError(f"Hunter removal failed: {error_msg}", names)
