"""
Shared data models for the game, the local database and the statistics server.
This ensures consistency in data structures across components.
"""
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 25
_USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

# Checked top to bottom: (min level, min success rate, min best score, title)
RANKS = [
    (15, 95, 2000, "Millennium Pharaoh"),
    (12, 90, 1800, "King of Games"),
    (10, 85, 1600, "Card Master"),
    (8, 80, 0, "Duelist Kingdom Champion"),
    (6, 75, 0, "Regional Champion"),
    (5, 70, 0, "Expert Duelist"),
    (4, 65, 0, "Seasoned Duelist"),
    (3, 60, 0, "Apprentice Duelist"),
]


class ValidationError(ValueError):
    """Raised when an object is created or restored from invalid data."""


def validate_username(username: str) -> str:
    """
    Check a player name and return it trimmed.

    Args:
        username: The requested name

    Returns:
        The trimmed name

    Raises:
        ValidationError: If the name is empty, too short, too long or
            contains characters other than letters, digits, dashes and
            underscores
    """
    clean = str(username or "").strip()
    if not clean:
        raise ValidationError("Username cannot be empty")
    if len(clean) < USERNAME_MIN_LENGTH:
        raise ValidationError(f"Username must be at least {USERNAME_MIN_LENGTH} characters long")
    if len(clean) > USERNAME_MAX_LENGTH:
        raise ValidationError(f"Username cannot exceed {USERNAME_MAX_LENGTH} characters")
    if not _USERNAME_PATTERN.match(clean):
        raise ValidationError("Username can only contain letters, digits, dashes and underscores")
    return clean


def round_half_up(numerator: int, denominator: int, places: int = 0) -> Decimal:
    """
    Divide two integers and round the exact quotient, halves away from zero.

    Args:
        numerator: Dividend
        denominator: Divisor, must not be zero
        places: Number of decimal places to keep
    """
    quotient = Decimal(numerator) / Decimal(denominator)
    return quotient.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def is_valid_username(username: str) -> bool:
    try:
        validate_username(username)
        return True
    except ValidationError:
        return False


@dataclass
class GameRecord:
    """A finished game as stored by the persistence layer."""
    player_id: int
    pairs_count: int
    moves_count: int
    start_time: float
    end_time: Optional[float]
    duration_seconds: Optional[int]
    status: str
    score: int
    id: Optional[int] = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    @classmethod
    def from_dict(cls, data):
        """
        Create a GameRecord object from a dictionary.

        Numeric fields are converted, so a non-numeric value raises
        ValueError or TypeError.
        """
        start_time = float(data.get('start_time', 0.0))
        end_time = data.get('end_time')
        if end_time is not None:
            end_time = float(end_time)

        duration = data.get('duration_seconds')
        if duration is not None:
            duration = int(duration)
        elif end_time is not None:
            duration = max(0, int(end_time) - int(start_time))

        record_id = data.get('id')
        return cls(
            player_id=int(data.get('player_id', 0)),
            pairs_count=int(data.get('pairs_count', 0)),
            moves_count=int(data.get('moves_count', 0)),
            start_time=start_time,
            end_time=end_time,
            duration_seconds=duration,
            status=str(data.get('status', '')),
            score=int(data.get('score', 0)),
            id=int(record_id) if record_id is not None else None
        )

    def to_dict(self):
        """Convert the GameRecord object to a dictionary."""
        return {
            'player_id': self.player_id,
            'pairs_count': self.pairs_count,
            'moves_count': self.moves_count,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'duration_seconds': self.duration_seconds,
            'status': self.status,
            'score': self.score,
            'id': self.id
        }


@dataclass
class PlayerStats:
    """Aggregate statistics and progression of a player."""
    player_id: int
    username: str
    total_games: int = 0
    completed_games: int = 0
    best_score: int = 0
    abandoned_games: int = 0
    average_score: Optional[int] = None
    best_duration: Optional[int] = None
    average_time: Optional[float] = None
    average_moves: Optional[float] = None

    def update_stats(self, record: GameRecord) -> None:
        """Account for one more finished game."""
        self.total_games += 1
        if record.status == "abandoned":
            self.abandoned_games += 1
        if not record.completed:
            return

        self.completed_games += 1
        if record.score > self.best_score:
            self.best_score = record.score

        duration = record.duration_seconds
        if duration is not None and (self.best_duration is None or duration < self.best_duration):
            self.best_duration = duration

    def calculate_average_stats(self, records: Iterable[GameRecord]) -> None:
        """Average score, duration and moves over the completed games."""
        completed = [record for record in records if record.completed]
        if not completed:
            self.average_score = None
            self.average_time = None
            self.average_moves = None
            return

        self.average_score = int(round_half_up(sum(r.score for r in completed), len(completed)))
        self.average_moves = float(round_half_up(sum(r.moves_count for r in completed),
                                                 len(completed), places=1))

        durations = [r.duration_seconds for r in completed if r.duration_seconds is not None]
        self.average_time = (float(round_half_up(sum(durations), len(durations), places=1))
                             if durations else None)

    @property
    def success_rate(self) -> float:
        if self.total_games == 0:
            return 0.0
        return float(round_half_up(self.completed_games * 100, self.total_games, places=1))

    @property
    def level(self) -> int:
        return max(1, self.completed_games // 10 + 1)

    @property
    def experience_to_next_level(self) -> int:
        return max(0, self.level * 10 - self.completed_games)

    @property
    def rank(self) -> str:
        """Title earned from level, success rate and best score."""
        level = self.level
        rate = self.success_rate
        for min_level, min_rate, min_score, title in RANKS:
            if level >= min_level and rate >= min_rate and self.best_score >= min_score:
                return title

        if self.completed_games >= 10:
            return "Academy Student"
        if self.completed_games >= 5:
            return "Promising Beginner"
        return "New Duelist"

    def sort_key(self):
        """Key ordering players best first: score, then success rate, then completed games."""
        return (-self.best_score, -self.success_rate, -self.completed_games)

    @classmethod
    def from_records(cls, player_id: int, username: str, records: Iterable[GameRecord]):
        """Build a player's statistics from all of their recorded games."""
        records = list(records)
        stats = cls(player_id=player_id, username=username)
        for record in records:
            stats.update_stats(record)
        stats.calculate_average_stats(records)
        return stats

    def get_profile(self):
        return {
            'id': self.player_id,
            'username': self.username,
            'level': self.level,
            'rank': self.rank,
            'total_games': self.total_games,
            'completed_games': self.completed_games,
            'abandoned_games': self.abandoned_games,
            'success_rate': self.success_rate,
            'best_score': self.best_score,
            'average_score': self.average_score,
            'best_duration': self.best_duration,
            'average_time': self.average_time,
            'average_moves': self.average_moves,
            'experience_to_next_level': self.experience_to_next_level,
        }
