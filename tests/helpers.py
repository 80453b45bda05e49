from collections import defaultdict


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def pairs_of(game_or_view):
    """Map each pair id to the ids of its two cards, in layout order."""
    pairs = defaultdict(list)
    for card in game_or_view.cards:
        pairs[card.pair_id].append(card.card_id)
    return dict(pairs)


def play_perfect_game(game):
    """Flip every pair back to back. Returns the result of the last flip."""
    result = None
    for first, second in pairs_of(game).values():
        game.flip_card(first)
        result = game.flip_card(second)
    return result
