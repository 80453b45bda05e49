"""
Database manager that also forwards finished games to the statistics server.
Use this instead of database.GameDatabase when server integration is needed.
"""
import logging
import os
import random
import time
import uuid
from typing import Any, Dict, List, Optional

import requests

from config import get_config
from database import GameDatabase
from shared.models import GameRecord

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
BASE_DELAY = 1  # seconds


def get_client_id(path: Optional[str] = None) -> str:
    """
    Read the identifier of this client, generating and storing one if needed.

    Args:
        path: File holding the client ID
    """
    path = path or get_config().client_id_file
    if os.path.exists(path):
        with open(path, "r") as f:
            client_id = f.read().strip()
        if client_id:
            return client_id

    client_id = str(uuid.uuid4())
    with open(path, "w") as f:
        f.write(client_id)
    return client_id


def normalize_server_url(server_url: str) -> str:
    """Add the http:// scheme when missing and make sure the URL ends with a slash."""
    if server_url and not server_url.startswith(('http://', 'https://')):
        server_url = 'http://' + server_url
    if server_url and not server_url.endswith('/'):
        server_url += '/'
    return server_url


class SyncGameDatabase(GameDatabase):
    """
    Database manager that extends GameDatabase with server synchronization.
    Games are always stored locally first; the server copy is best effort
    and never changes what the caller gets back.
    """

    def __init__(self, db_file="memory_game.db", server_url=None, client_id=None,
                 sleep=time.sleep):
        """
        Initialize the database connection with sync capabilities.

        Args:
            db_file: Path to the local SQLite database file
            server_url: Base URL of the statistics server
            client_id: Identifier sent along with every game
            sleep: Function used to wait between retries
        """
        super().__init__(db_file)
        self.server_url = normalize_server_url(server_url or get_config().server_url)
        self.client_id = client_id or get_client_id()
        self.sleep = sleep
        self.online = False
        logger.info("Initializing sync database with server URL: %s", self.server_url)

    def _url(self, path: str) -> str:
        return f"{self.server_url.rstrip('/')}/{path.lstrip('/')}"

    def check_server_connection(self) -> bool:
        """Check if the server is available."""
        try:
            response = requests.get(self._url("health"), timeout=5)
            self.online = response.status_code == 200
        except requests.exceptions.RequestException as e:
            self.online = False
            logger.warning("Server connection to %s failed: %s", self.server_url, e)
        return self.online

    def save_game(self, record: GameRecord) -> int:
        """
        Save a finished game locally and push it to the server.

        The server is tried up to MAX_RETRIES times with exponential
        backoff. Client errors other than 429 are not retried.

        Returns:
            ID of the local record, -1 if the local save failed
        """
        local_id = super().save_game(record)
        if local_id < 0:
            return local_id

        if not (self.online or self.check_server_connection()):
            logger.warning("Server offline, game %s kept locally only", local_id)
            return local_id

        payload = record.to_dict()
        payload["id"] = None
        payload["client_id"] = self.client_id
        payload["local_id"] = local_id

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = requests.post(self._url("api/games"), json=payload,
                                         timeout=10 + attempt * 5)

                if response.status_code == 200:
                    logger.info("Saved game %s of player %s to server", local_id, record.player_id)
                    return local_id

                if response.status_code == 409:
                    logger.info("Game %s already stored on server", local_id)
                    return local_id

                logger.warning("Attempt %d: server refused game %s with status %d",
                               attempt, local_id, response.status_code)
                if response.status_code < 500 and response.status_code != 429:
                    logger.error("Server rejected game %s, not retrying", local_id)
                    return local_id

            except requests.exceptions.RequestException as e:
                logger.warning("Attempt %d: network error saving game %s: %s", attempt, local_id, e)

            if attempt < MAX_RETRIES:
                # Exponential backoff with jitter
                delay = BASE_DELAY * (2 ** (attempt - 1)) * (0.5 + random.random())
                self.sleep(delay)

        # Next save checks the server again before retrying
        self.online = False
        logger.error("Failed to save game %s to server after %d attempts", local_id, MAX_RETRIES)
        return local_id

    def get_remote_leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Get the leaderboard from the server, falling back to local data.

        Rows coming from the local database are flagged with cached=True.
        """
        try:
            response = requests.get(self._url("api/leaderboard"), params={"limit": limit},
                                    headers={"Cache-Control": "no-cache"}, timeout=5)
            if response.status_code == 200:
                self.online = True
                return response.json().get("leaderboard", [])
            logger.warning("Leaderboard request failed with status %d", response.status_code)
        except (requests.exceptions.RequestException, ValueError) as e:
            self.online = False
            logger.warning("Could not fetch remote leaderboard: %s", e)

        local_data = self.get_leaderboard(limit)
        for row in local_data:
            row["cached"] = True
        return local_data


_sync_db: Optional[SyncGameDatabase] = None


def get_sync_database(server_url=None, db_file=None) -> SyncGameDatabase:
    """
    Get the syncing database instance.

    Args:
        server_url: Optional URL of the server to use.
                    If it differs from the current one, a new instance is created.
        db_file: Optional path of the local database file
    """
    global _sync_db
    config = get_config()
    server_url = normalize_server_url(server_url or config.server_url)
    db_file = db_file or config.db_path

    if _sync_db is None or _sync_db.server_url != server_url or _sync_db.db_file != db_file:
        _sync_db = SyncGameDatabase(db_file, server_url=server_url)
    return _sync_db
