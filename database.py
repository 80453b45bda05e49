import datetime
import logging
import os
import sqlite3
from contextlib import closing, contextmanager
from typing import Any, Dict, List, Optional

from config import get_config
from shared.models import GameRecord, PlayerStats, validate_username

logger = logging.getLogger(__name__)

GAME_COLUMNS = '''id, player_id, pairs_count, moves_count, start_time, end_time,
                  duration_seconds, status, score'''

# Seconds a connection waits for another writer to release the database
BUSY_TIMEOUT = 30


def _rows(cursor) -> List[Dict[str, Any]]:
    columns = [col[0] for col in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


class GameDatabase:
    """
    Class to handle SQLite database operations for storing players,
    finished games and the leaderboard of the memory game.

    Every operation opens its own connection, so one instance can be
    shared between the threads of the statistics server.
    """

    def __init__(self, db_file="memory_game.db"):
        """
        Initialize the database.

        Args:
            db_file: Path to the SQLite database file
        """
        self.db_file = db_file
        self.initialize_db()

    @contextmanager
    def connect(self):
        """Open a connection, commit on success, roll back on error, always close."""
        with closing(sqlite3.connect(self.db_file, timeout=BUSY_TIMEOUT)) as conn:
            with conn:
                yield conn

    def initialize_db(self) -> None:
        """Create the database and tables if they don't exist."""
        try:
            # Create database directory if it doesn't exist
            db_dir = os.path.dirname(self.db_file)
            if db_dir and not os.path.exists(db_dir):
                os.makedirs(db_dir)

            with self.connect() as conn:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS players (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        username TEXT NOT NULL UNIQUE,
                        created_at TIMESTAMP NOT NULL
                    )
                ''')

                conn.execute('''
                    CREATE TABLE IF NOT EXISTS games (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        player_id INTEGER NOT NULL,
                        pairs_count INTEGER NOT NULL,
                        moves_count INTEGER NOT NULL,
                        start_time REAL NOT NULL,
                        end_time REAL,
                        duration_seconds INTEGER,
                        status TEXT NOT NULL,
                        score INTEGER NOT NULL,
                        FOREIGN KEY (player_id) REFERENCES players(id)
                    )
                ''')

            logger.debug("Database initialized at %s", self.db_file)
        except sqlite3.Error as e:
            logger.error("Database initialization error: %s", e)

    def create_player(self, username: str) -> int:
        """
        Register a player, or look up the existing one with that name.

        Args:
            username: Name of the player

        Returns:
            ID of the player, -1 on database error

        Raises:
            ValidationError: If the username is not acceptable
        """
        username = validate_username(username)
        try:
            with self.connect() as conn:
                conn.execute('''
                    INSERT OR IGNORE INTO players (username, created_at) VALUES (?, ?)
                ''', (username, datetime.datetime.now().isoformat(sep=' ', timespec='seconds')))
                row = conn.execute('''
                    SELECT id FROM players WHERE username = ?
                ''', (username,)).fetchone()
            return row[0]
        except sqlite3.Error as e:
            logger.error("Error creating player %s: %s", username, e)
            return -1

    def _get_one_player(self, where: str, value) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            rows = _rows(conn.execute(f'''
                SELECT id, username, created_at FROM players WHERE {where} = ?
            ''', (value,)))
        return rows[0] if rows else None

    def get_player(self, player_id: int) -> Optional[Dict[str, Any]]:
        try:
            return self._get_one_player("id", player_id)
        except sqlite3.Error as e:
            logger.error("Error retrieving player %s: %s", player_id, e)
            return None

    def get_player_by_name(self, username: str) -> Optional[Dict[str, Any]]:
        try:
            return self._get_one_player("username", username.strip())
        except sqlite3.Error as e:
            logger.error("Error retrieving player %s: %s", username, e)
            return None

    def save_game(self, record: GameRecord) -> int:
        """
        Save a finished game to the database.

        Args:
            record: The finished game

        Returns:
            ID of the inserted record, -1 on database error
        """
        duration = record.duration_seconds
        if duration is None and record.end_time is not None:
            duration = max(0, int(record.end_time) - int(record.start_time))

        try:
            with self.connect() as conn:
                cursor = conn.execute('''
                    INSERT INTO games
                    (player_id, pairs_count, moves_count, start_time, end_time,
                     duration_seconds, status, score)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''', (
                    record.player_id, record.pairs_count, record.moves_count,
                    record.start_time, record.end_time, duration,
                    record.status, record.score
                ))
                return cursor.lastrowid
        except sqlite3.Error as e:
            logger.error("Error saving game for player %s: %s", record.player_id, e)
            return -1

    def get_player_games(self, player_id: int, limit: Optional[int] = None) -> List[GameRecord]:
        """
        Retrieve the games of a player, most recent first.

        Args:
            player_id: ID of the player
            limit: Maximum number of games to return, all if None

        Returns:
            List of GameRecord objects
        """
        query = f'''
            SELECT {GAME_COLUMNS}
            FROM games
            WHERE player_id = ?
            ORDER BY start_time DESC, id DESC
        '''
        params: List[Any] = [player_id]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        try:
            with self.connect() as conn:
                rows = _rows(conn.execute(query, params))
            return [GameRecord.from_dict(row) for row in rows]
        except sqlite3.Error as e:
            logger.error("Error retrieving games of player %s: %s", player_id, e)
            return []

    def get_player_stats(self, player_id: int) -> Optional[PlayerStats]:
        """
        Build the aggregate statistics of a player.

        Args:
            player_id: ID of the player

        Returns:
            PlayerStats, or None if the player does not exist
        """
        player = self.get_player(player_id)
        if player is None:
            return None
        return PlayerStats.from_records(player_id, player['username'],
                                        self.get_player_games(player_id))

    def get_leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Get the best players, ranked by their best score.

        Args:
            limit: Maximum number of players to return

        Returns:
            List of dictionaries with player_id, username, best_score,
            total_games and completed_games
        """
        try:
            with self.connect() as conn:
                return _rows(conn.execute('''
                    SELECT p.id AS player_id,
                           p.username AS username,
                           MAX(CASE WHEN g.status = 'completed' THEN g.score END) AS best_score,
                           COUNT(g.id) AS total_games,
                           SUM(CASE WHEN g.status = 'completed' THEN 1 ELSE 0 END) AS completed_games
                    FROM players p
                    INNER JOIN games g ON p.id = g.player_id
                    GROUP BY p.id, p.username
                    HAVING completed_games > 0
                    ORDER BY best_score DESC, completed_games DESC, p.id ASC
                    LIMIT ?
                ''', (limit,)))
        except sqlite3.Error as e:
            logger.error("Error retrieving leaderboard: %s", e)
            return []

    def get_game_count(self) -> int:
        """Get the total number of games recorded in the database."""
        try:
            with self.connect() as conn:
                return conn.execute("SELECT COUNT(*) FROM games").fetchone()[0]
        except sqlite3.Error as e:
            logger.error("Error getting game count: %s", e)
            return 0

    def get_recent_games(self, limit: int = 10) -> List[GameRecord]:
        try:
            with self.connect() as conn:
                rows = _rows(conn.execute(f'''
                    SELECT {GAME_COLUMNS}
                    FROM games
                    ORDER BY start_time DESC, id DESC
                    LIMIT ?
                ''', (limit,)))
            return [GameRecord.from_dict(row) for row in rows]
        except sqlite3.Error as e:
            logger.error("Error retrieving recent games: %s", e)
            return []


_db: Optional[GameDatabase] = None


def get_database(db_file: Optional[str] = None) -> GameDatabase:
    """
    Get the shared database instance, creating it on first use.

    Args:
        db_file: Database path; a different path replaces the shared instance
    """
    global _db
    db_file = db_file or get_config().db_path
    if _db is None or _db.db_file != db_file:
        _db = GameDatabase(db_file)
    return _db
