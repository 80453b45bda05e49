import logging
import random
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from shared.models import GameRecord, ValidationError

logger = logging.getLogger(__name__)

MIN_PAIRS = 3
MAX_PAIRS = 12

STATUS_PLAYING = "playing"
STATUS_COMPLETED = "completed"
STATUS_ABANDONED = "abandoned"
STATUSES = (STATUS_PLAYING, STATUS_COMPLETED, STATUS_ABANDONED)

# Card faces shipped with the game, one per possible pair
IMAGE_POOL = [
    "dark-magician.svg",
    "blue-eyes-dragon.svg",
    "red-eyes-dragon.svg",
    "exodia.svg",
    "kuriboh.svg",
    "summoned-skull.svg",
    "celtic-guardian.svg",
    "time-wizard.svg",
    "baby-dragon.svg",
    "flame-swordsman.svg",
    "mystical-elf.svg",
    "gaia-the-fierce-knight.svg",
]

_IMAGE_CHARS = re.compile(r"[^a-zA-Z0-9\-_.]")


def sanitize_image_path(image_path: str) -> str:
    """
    Clean an image file name so it can be safely used as a card face.

    Args:
        image_path: Raw image file name

    Returns:
        The cleaned file name

    Raises:
        ValidationError: If nothing usable is left or the file is not an SVG
    """
    clean_path = _IMAGE_CHARS.sub("", str(image_path).strip())
    if not clean_path:
        raise ValidationError("Image path cannot be empty")
    if not clean_path.lower().endswith(".svg"):
        raise ValidationError("Only SVG images are allowed")
    return clean_path


def validate_pairs_count(pairs_count) -> int:
    """Check that the number of pairs is within the playable range."""
    if isinstance(pairs_count, bool) or not isinstance(pairs_count, int):
        raise ValidationError("Number of pairs must be an integer")
    if pairs_count < MIN_PAIRS or pairs_count > MAX_PAIRS:
        raise ValidationError(f"Number of pairs must be between {MIN_PAIRS} and {MAX_PAIRS}")
    return pairs_count


def shuffle_cards(cards: list, rng: Optional[random.Random] = None) -> list:
    """
    Shuffle a list of cards in place using Fisher-Yates.

    Args:
        cards: The list to shuffle
        rng: Random generator to draw from (module-level one if omitted)

    Returns:
        The same list, shuffled
    """
    rng = rng or random
    for i in range(len(cards) - 1, 0, -1):
        j = rng.randint(0, i)
        cards[i], cards[j] = cards[j], cards[i]
    return cards


def select_images(pairs_count: int, rng: Optional[random.Random] = None,
                  image_pool: Optional[Sequence[str]] = None) -> List[str]:
    """
    Pick distinct card faces for a new game.

    Args:
        pairs_count: Number of pairs the game will hold
        rng: Random generator used for the selection
        image_pool: Candidate images (defaults to IMAGE_POOL)

    Returns:
        List of pairs_count distinct, sanitized image names
    """
    rng = rng or random
    pool = []
    for image in (IMAGE_POOL if image_pool is None else image_pool):
        image = sanitize_image_path(image)
        if image not in pool:
            pool.append(image)

    if len(pool) < pairs_count:
        raise ValidationError(f"Not enough images. Need at least {pairs_count} distinct images.")

    return rng.sample(pool, pairs_count)


def calculate_score(pairs_count: int, moves_count: int, duration_seconds: int) -> int:
    """
    Compute the final score of a completed game.

    Every move beyond the minimum costs 10 points. Finishing within
    two seconds per pair earns up to 200 bonus points, and each pair
    above the minimum is worth 25 more.

    Args:
        pairs_count: Number of pairs in the game
        moves_count: Number of cards flipped
        duration_seconds: Whole seconds between start and completion

    Returns:
        The score, never negative
    """
    base_score = 100
    min_moves = pairs_count * 2
    move_penalty = max(0, (moves_count - min_moves) * 10)

    time_bonus = 0
    reference_time = pairs_count * 2
    if 0 < duration_seconds <= reference_time:
        time_bonus = min(200, (reference_time - duration_seconds) / reference_time * 200)

    difficulty_bonus = (pairs_count - MIN_PAIRS) * 25

    return max(0, int(base_score - move_penalty + time_bonus + difficulty_bonus))


class Card:
    """
    A class representing a memory card in the memory card game.
    Each card has a fixed identity (id, pair and image) and can be face up
    or face down, matched or unmatched. Once matched it stays face up for good.
    """

    def __init__(self, card_id: int, image: str, pair_id: int):
        """
        Initialize a new card.

        Args:
            card_id: Identifier of the card, unique within a game
            image: SVG file shown when the card is face up
            pair_id: Identifier shared with the card's partner
        """
        if isinstance(card_id, bool) or not isinstance(card_id, int) or card_id < 0:
            raise ValidationError("Card id must be a non-negative integer")
        self._card_id = card_id
        self._image = sanitize_image_path(image)
        self._pair_id = int(pair_id)
        self._is_flipped = False
        self._is_matched = False

    @property
    def card_id(self) -> int:
        return self._card_id

    @property
    def image(self) -> str:
        return self._image

    @property
    def pair_id(self) -> int:
        return self._pair_id

    @property
    def is_flipped(self) -> bool:
        return self._is_flipped

    @property
    def is_matched(self) -> bool:
        return self._is_matched

    def flip(self) -> bool:
        """
        Flip the card over.

        Returns:
            False if the card is already matched, True otherwise
        """
        if self._is_matched:
            return False
        self._is_flipped = not self._is_flipped
        return True

    def hide(self) -> None:
        """Turn the card face down unless it has been matched."""
        if not self._is_matched:
            self._is_flipped = False

    def set_matched(self) -> None:
        """Mark the card as matched. This cannot be undone."""
        self._is_matched = True
        self._is_flipped = True

    def matches(self, other: "Card") -> bool:
        """Check whether another card is this card's partner."""
        return self._pair_id == other.pair_id and self._card_id != other.card_id

    def can_be_flipped(self) -> bool:
        return not self._is_matched and not self._is_flipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self._card_id,
            "image": self._image,
            "pair_id": self._pair_id,
            "is_flipped": self._is_flipped,
            "is_matched": self._is_matched,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Card":
        """Rebuild a card, including its flip and match state, from a dictionary."""
        try:
            card = cls(data["id"], data["image"], data["pair_id"])
        except (KeyError, TypeError) as e:
            raise ValidationError(f"Malformed card record: {e}") from e
        if data.get("is_matched"):
            card.set_matched()
        elif data.get("is_flipped"):
            card._is_flipped = True
        return card

    def __str__(self):
        status = "matched" if self._is_matched else "face up" if self._is_flipped else "face down"
        return f"Card #{self._card_id} (pair {self._pair_id}, {status})"

    def __repr__(self):
        return (f"Card(card_id={self._card_id}, image={self._image!r}, pair_id={self._pair_id}, "
                f"is_flipped={self._is_flipped}, is_matched={self._is_matched})")


@dataclass
class FlipResult:
    """Outcome of a flip request. Failures carry a reason and leave the game untouched."""
    success: bool
    message: str
    match: Optional[bool] = None
    game_completed: Optional[bool] = None
    final_score: Optional[int] = None
    internal_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": self.success, "message": self.message}
        if self.match is not None:
            result["match"] = self.match
        if self.game_completed is not None:
            result["game_completed"] = self.game_completed
        if self.final_score is not None:
            result["final_score"] = self.final_score
        if self.internal_error:
            result["internal_error"] = True
        return result


@dataclass(frozen=True)
class CardView:
    card_id: int
    image: str
    pair_id: int
    is_flipped: bool
    is_matched: bool


@dataclass(frozen=True)
class GameView:
    """Read-only snapshot of a game, meant for rendering."""
    player_id: int
    pairs_count: int
    moves_count: int
    matched_pairs: int
    status: str
    score: int
    duration_seconds: Optional[int]
    face_up_count: int
    cards: Tuple[CardView, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "pairs_count": self.pairs_count,
            "moves_count": self.moves_count,
            "matched_pairs": self.matched_pairs,
            "status": self.status,
            "score": self.score,
            "duration_seconds": self.duration_seconds,
            "face_up_count": self.face_up_count,
            "cards": [
                {
                    "id": card.card_id,
                    "image": card.image,
                    "pair_id": card.pair_id,
                    "is_flipped": card.is_flipped,
                    "is_matched": card.is_matched,
                }
                for card in self.cards
            ],
        }


class Game:
    """
    Main game class that enforces the rules of a single memory game.

    The game owns its cards and is only ever changed through flip_card()
    and abandon_game(). A game is not safe to share between threads;
    whoever holds it must serialize access.
    """

    def __init__(self, player_id: int, pairs_count: int,
                 rng: Optional[random.Random] = None,
                 clock: Optional[Callable[[], float]] = None,
                 image_pool: Optional[Sequence[str]] = None,
                 cards: Optional[List[Card]] = None):
        """
        Initialize a new memory game.

        Args:
            player_id: Identifier of the player
            pairs_count: Number of pairs to find (3 to 12)
            rng: Random generator for image selection and shuffling
            clock: Callable returning the current UNIX time
            image_pool: Candidate card faces (defaults to IMAGE_POOL)
            cards: Pre-built cards, used when restoring a saved game
        """
        self.pairs_count = validate_pairs_count(pairs_count)
        self.id: Optional[int] = None
        self.player_id = player_id
        self.clock = clock or time.time
        self.moves_count = 0
        self.matched_pairs = 0
        self.status = STATUS_PLAYING
        self.score = 0
        self.start_time = self.clock()
        self.end_time: Optional[float] = None
        self.duration_seconds: Optional[int] = None
        self.face_up_ids: List[int] = []

        if cards is None:
            self.cards = self._create_cards(rng, image_pool)
        else:
            if len(cards) != pairs_count * 2:
                raise ValidationError(f"Expected {pairs_count * 2} cards, got {len(cards)}")
            self.cards = list(cards)

    def _create_cards(self, rng, image_pool) -> List[Card]:
        images = select_images(self.pairs_count, rng, image_pool)
        cards = []
        card_id = 0
        for pair_id, image in enumerate(images):
            cards.append(Card(card_id, image, pair_id))
            cards.append(Card(card_id + 1, image, pair_id))
            card_id += 2
        return shuffle_cards(cards, rng)

    def get_card(self, card_id) -> Optional[Card]:
        """
        Find a card by its ID.

        Args:
            card_id: The ID of the card to find

        Returns:
            The card, or None if no card in this game has that ID
        """
        for card in self.cards:
            if card.card_id == card_id:
                return card
        return None

    def flip_card(self, card_id) -> FlipResult:
        """
        Flip a card and apply the rules of the game.

        If the previous turn left two unmatched cards face up, they are
        turned back down before the new card is flipped.

        Args:
            card_id: ID of the card to flip

        Returns:
            FlipResult describing what happened
        """
        if self.status != STATUS_PLAYING:
            return FlipResult(False, "Game is over")

        card = self.get_card(card_id)
        if card is None:
            return FlipResult(False, "Card not found")

        if not card.can_be_flipped():
            return FlipResult(False, "This card cannot be flipped")

        if len(self.face_up_ids) >= 2:
            self._hide_face_up_cards()

        card.flip()
        self.face_up_ids.append(card.card_id)
        self.moves_count += 1

        if len(self.face_up_ids) == 2:
            return self._check_for_match()

        return FlipResult(True, "Card flipped")

    def _hide_face_up_cards(self) -> None:
        for card_id in self.face_up_ids:
            card = self.get_card(card_id)
            if card is not None and not card.is_matched:
                card.hide()
        self.face_up_ids = []

    def _check_for_match(self) -> FlipResult:
        first = self.get_card(self.face_up_ids[0])
        second = self.get_card(self.face_up_ids[1])

        if first is None or second is None:
            logger.error("Face-up card missing from game of player %s: %s",
                         self.player_id, self.face_up_ids)
            return FlipResult(False, "Internal error: card not found", internal_error=True)

        if not first.matches(second):
            return FlipResult(True, "No match", match=False)

        first.set_matched()
        second.set_matched()
        self.matched_pairs += 1
        self.face_up_ids = []

        if self.matched_pairs == self.pairs_count:
            self._complete_game()
            return FlipResult(True, "Pair found! Game completed!", match=True,
                              game_completed=True, final_score=self.score)

        return FlipResult(True, "Pair found!", match=True)

    def _stamp_end(self) -> None:
        self.end_time = self.clock()
        self.duration_seconds = max(0, int(self.end_time) - int(self.start_time))

    def _complete_game(self) -> None:
        self._stamp_end()
        self.status = STATUS_COMPLETED
        self.score = calculate_score(self.pairs_count, self.moves_count, self.duration_seconds)
        logger.info("Player %s completed a %d-pair game in %d moves, %ds, score %d",
                    self.player_id, self.pairs_count, self.moves_count,
                    self.duration_seconds, self.score)

    def abandon_game(self) -> None:
        """Give up the game. Has no effect once the game is over."""
        if self.status != STATUS_PLAYING:
            return
        self._stamp_end()
        self.status = STATUS_ABANDONED
        self.score = 0
        logger.info("Player %s abandoned a %d-pair game after %d moves",
                    self.player_id, self.pairs_count, self.moves_count)

    def is_over(self) -> bool:
        return self.status != STATUS_PLAYING

    def get_game_state(self) -> GameView:
        """
        Get a read-only view of the game for rendering.

        Returns:
            GameView with the cards in layout order and the counters
        """
        return GameView(
            player_id=self.player_id,
            pairs_count=self.pairs_count,
            moves_count=self.moves_count,
            matched_pairs=self.matched_pairs,
            status=self.status,
            score=self.score,
            duration_seconds=self.duration_seconds,
            face_up_count=len(self.face_up_ids),
            cards=tuple(
                CardView(card.card_id, card.image, card.pair_id, card.is_flipped, card.is_matched)
                for card in self.cards
            ),
        )

    def to_record(self) -> GameRecord:
        """Build the record handed to persistence once the game is over."""
        return GameRecord(
            player_id=self.player_id,
            pairs_count=self.pairs_count,
            moves_count=self.moves_count,
            start_time=self.start_time,
            end_time=self.end_time,
            duration_seconds=self.duration_seconds,
            status=self.status,
            score=self.score,
            id=self.id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "player_id": self.player_id,
            "pairs_count": self.pairs_count,
            "moves_count": self.moves_count,
            "matched_pairs": self.matched_pairs,
            "status": self.status,
            "score": self.score,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_seconds": self.duration_seconds,
            "face_up_ids": list(self.face_up_ids),
            "cards": [card.to_dict() for card in self.cards],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  clock: Optional[Callable[[], float]] = None) -> "Game":
        """
        Restore a game from a dictionary produced by to_dict().

        Args:
            data: The saved game
            clock: Callable returning the current UNIX time

        Returns:
            The restored game, cards kept in their saved order

        Raises:
            ValidationError: If the record is incomplete or inconsistent
        """
        try:
            cards = [Card.from_dict(card_data) for card_data in data["cards"]]
            game = cls(data["player_id"], data["pairs_count"], clock=clock, cards=cards)
            game.id = data.get("id")
            game.moves_count = int(data["moves_count"])
            game.matched_pairs = int(data["matched_pairs"])
            game.status = data["status"]
            game.score = int(data["score"])
            game.start_time = float(data["start_time"])
            game.end_time = data.get("end_time")
            game.duration_seconds = data.get("duration_seconds")
            game.face_up_ids = [int(card_id) for card_id in data.get("face_up_ids", [])]
        except ValidationError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed game record: {e}") from e

        if game.status not in STATUSES:
            raise ValidationError(f"Unknown game status: {game.status}")
        if len(game.face_up_ids) > 2:
            raise ValidationError("At most two cards can be face up")
        if not 0 <= game.matched_pairs <= game.pairs_count:
            raise ValidationError("Matched pairs out of range")
        if len({card.card_id for card in cards}) != len(cards):
            raise ValidationError("Duplicate card ids")
        if any(count != 2 for count in Counter(card.pair_id for card in cards).values()):
            raise ValidationError("Every pair id must appear on exactly two cards")
        if sum(1 for card in cards if card.is_matched) != game.matched_pairs * 2:
            raise ValidationError("Matched pairs do not agree with the matched cards")
        if len(set(game.face_up_ids)) != len(game.face_up_ids):
            raise ValidationError("Duplicate face-up card ids")
        for card_id in game.face_up_ids:
            card = game.get_card(card_id)
            if card is None:
                raise ValidationError(f"Face-up card {card_id} is not part of the game")
            if not card.is_flipped or card.is_matched:
                raise ValidationError(f"Card {card_id} cannot be one of the face-up cards")
        return game

    def __str__(self):
        return (f"Game of player {self.player_id}: {self.status}, "
                f"{self.matched_pairs}/{self.pairs_count} pairs, {self.moves_count} moves")


def new_game(player_id: int, pairs_count: int,
             rng: Optional[random.Random] = None,
             clock: Optional[Callable[[], float]] = None) -> Game:
    """Start a fresh, shuffled game."""
    return Game(player_id, pairs_count, rng=rng, clock=clock)


def flip_card(game: Game, card_id) -> FlipResult:
    return game.flip_card(card_id)


def abandon_game(game: Game) -> None:
    game.abandon_game()


def serialize(game: Game) -> Dict[str, Any]:
    """Turn a game into a plain, JSON-compatible record."""
    return game.to_dict()


def deserialize(record: Dict[str, Any],
                clock: Optional[Callable[[], float]] = None) -> Game:
    """Rebuild a game from a record produced by serialize()."""
    return Game.from_dict(record, clock=clock)


def export_state(game: Game) -> GameView:
    return game.get_game_state()
