"""
Game service: keeps live games by handle and saves them when they end.

Games are held as serialized records, the way a web session or a
database row would hold them, and restored for every action.
"""
import logging
import random
import time
import uuid
from typing import Any, Callable, Dict, Optional

from classes import FlipResult, Game, GameView, STATUS_COMPLETED, deserialize, new_game, serialize

logger = logging.getLogger(__name__)


class GameSessionStore:
    """In-memory storage of serialized games keyed by handle."""

    def __init__(self):
        self._games: Dict[str, Dict[str, Any]] = {}

    def put(self, handle: str, record: Dict[str, Any]) -> None:
        self._games[handle] = record

    def get(self, handle: str) -> Optional[Dict[str, Any]]:
        return self._games.get(handle)

    def discard(self, handle: str) -> None:
        self._games.pop(handle, None)

    def __contains__(self, handle) -> bool:
        return handle in self._games

    def __len__(self) -> int:
        return len(self._games)


class GameService:
    """
    Runs games on behalf of callers.

    Each game lives under an opaque handle returned by start_game().
    Completed games are handed to the repository exactly once; a failing
    repository is logged and does not undo the completion.
    """

    def __init__(self, store: Optional[GameSessionStore] = None, repository=None,
                 rng: Optional[random.Random] = None,
                 clock: Optional[Callable[[], float]] = None):
        """
        Args:
            store: Where live games are kept
            repository: Object with save_game(record) -> id, e.g. GameDatabase
            rng: Random generator used to deal new games
            clock: Callable returning the current UNIX time
        """
        self.store = store if store is not None else GameSessionStore()
        self.repository = repository
        self.rng = rng
        self.clock = clock or time.time

    def start_game(self, player_id: int, pairs_count: int) -> str:
        """
        Deal a new game.

        Raises:
            ValidationError: If pairs_count is out of range
        """
        game = new_game(player_id, pairs_count, rng=self.rng, clock=self.clock)
        handle = uuid.uuid4().hex
        self.store.put(handle, serialize(game))
        logger.info("Player %s started a %d-pair game (%s)", player_id, pairs_count, handle)
        return handle

    def _load(self, handle: str) -> Optional[Game]:
        record = self.store.get(handle)
        if record is None:
            return None
        return deserialize(record, clock=self.clock)

    def flip(self, handle: str, card_id) -> FlipResult:
        game = self._load(handle)
        if game is None:
            return FlipResult(False, "No game in progress")

        result = game.flip_card(card_id)
        if result.game_completed:
            self._persist(game)
        self.store.put(handle, serialize(game))
        return result

    def _persist(self, game: Game) -> None:
        if self.repository is None or game.status != STATUS_COMPLETED:
            return
        try:
            game_id = self.repository.save_game(game.to_record())
        except Exception:
            logger.exception("Could not save completed game of player %s", game.player_id)
            return

        if game_id is None or game_id < 0:
            logger.error("Repository did not store completed game of player %s", game.player_id)
            return
        game.id = game_id

    def abandon(self, handle: str) -> bool:
        """
        Abandon the game under handle.

        Returns:
            False if there is no such game, True otherwise
        """
        game = self._load(handle)
        if game is None:
            return False
        game.abandon_game()
        self.store.put(handle, serialize(game))
        return True

    def state(self, handle: str) -> Optional[GameView]:
        game = self._load(handle)
        return game.get_game_state() if game is not None else None

    def reset(self, handle: str) -> None:
        """Forget the game under handle."""
        self.store.discard(handle)
