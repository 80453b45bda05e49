import unittest

from shared.models import (
    GameRecord,
    PlayerStats,
    ValidationError,
    is_valid_username,
    validate_username,
)


def record(status="completed", score=100, duration=10, **kwargs):
    data = dict(player_id=1, pairs_count=3, moves_count=6, start_time=1000.0,
                end_time=1000.0 + (duration or 0), duration_seconds=duration,
                status=status, score=score)
    data.update(kwargs)
    return GameRecord(**data)


class UsernameTestCase(unittest.TestCase):
    def test_valid_usernames(self):
        self.assertEqual(validate_username("  yugi_muto "), "yugi_muto")
        self.assertTrue(is_valid_username("kaiba-99"))

    def test_invalid_usernames(self):
        for name in ("", "   ", "ab", "x" * 26, "joey wheeler", "mai@valentine"):
            with self.subTest(name=name):
                self.assertFalse(is_valid_username(name))
                with self.assertRaises(ValidationError):
                    validate_username(name)


class GameRecordTestCase(unittest.TestCase):
    def test_dict_round_trip(self):
        original = record(id=4)
        self.assertEqual(GameRecord.from_dict(original.to_dict()), original)

    def test_duration_derived_when_missing(self):
        data = record().to_dict()
        del data["duration_seconds"]
        data["end_time"] = 1042.7
        self.assertEqual(GameRecord.from_dict(data).duration_seconds, 42)

    def test_numeric_fields_converted(self):
        data = record().to_dict()
        data.update(player_id="1", score="150", moves_count=8.0, start_time="1000")
        converted = GameRecord.from_dict(data)
        self.assertEqual(converted.player_id, 1)
        self.assertEqual(converted.score, 150)
        self.assertEqual(converted.moves_count, 8)
        self.assertEqual(converted.start_time, 1000.0)

    def test_non_numeric_fields_rejected(self):
        for key, value in (("score", "abc"), ("pairs_count", "x"), ("end_time", "later"),
                           ("player_id", None), ("moves_count", [6])):
            data = record().to_dict()
            data[key] = value
            with self.subTest(key=key):
                with self.assertRaises((TypeError, ValueError)):
                    GameRecord.from_dict(data)


class PlayerStatsTestCase(unittest.TestCase):
    def test_new_player(self):
        stats = PlayerStats(1, "yugi")
        self.assertEqual(stats.success_rate, 0.0)
        self.assertEqual(stats.level, 1)
        self.assertEqual(stats.experience_to_next_level, 10)
        self.assertEqual(stats.rank, "New Duelist")
        self.assertIsNone(stats.average_score)

    def test_from_records(self):
        records = [
            record(score=120, duration=30),
            record(score=200, duration=12),
            record(status="abandoned", score=0, duration=5),
        ]
        stats = PlayerStats.from_records(1, "yugi", records)
        self.assertEqual(stats.total_games, 3)
        self.assertEqual(stats.completed_games, 2)
        self.assertEqual(stats.best_score, 200)
        self.assertEqual(stats.best_duration, 12)
        self.assertEqual(stats.average_score, 160)
        self.assertEqual(stats.success_rate, 66.7)

    def test_averages_over_completed_games(self):
        records = [
            record(score=120, duration=30, moves_count=6),
            record(score=200, duration=12, moves_count=9),
            record(status="abandoned", score=0, duration=5, moves_count=2),
        ]
        stats = PlayerStats.from_records(1, "yugi", records)
        self.assertEqual(stats.abandoned_games, 1)
        self.assertEqual(stats.average_moves, 7.5)
        self.assertEqual(stats.average_time, 21.0)

    def test_averages_without_completed_games(self):
        stats = PlayerStats.from_records(1, "yugi", [record(status="abandoned", score=0)])
        self.assertEqual(stats.abandoned_games, 1)
        self.assertEqual(stats.completed_games, 0)
        self.assertIsNone(stats.average_time)
        self.assertIsNone(stats.average_moves)

    def test_halves_round_away_from_zero(self):
        stats = PlayerStats.from_records(1, "yugi", [
            record(score=100, duration=10, moves_count=1),
            record(score=101, duration=10, moves_count=0),
            record(score=101, duration=10, moves_count=0),
            record(score=100, duration=11, moves_count=0),
        ])
        self.assertEqual(stats.average_score, 101)
        self.assertEqual(stats.average_time, 10.3)
        self.assertEqual(stats.average_moves, 0.3)

        stats = PlayerStats.from_records(1, "yugi", [record(score=100), record(score=101)])
        self.assertEqual(stats.average_score, 101)

        self.assertEqual(PlayerStats(1, "yugi", total_games=16, completed_games=1).success_rate, 6.3)
        self.assertEqual(PlayerStats(1, "yugi", total_games=8, completed_games=1).success_rate, 12.5)

    def test_level_progression(self):
        stats = PlayerStats(1, "yugi", total_games=25, completed_games=23)
        self.assertEqual(stats.level, 3)
        self.assertEqual(stats.experience_to_next_level, 7)

    def test_ranks(self):
        cases = [
            (dict(total_games=150, completed_games=150, best_score=2100), "Millennium Pharaoh"),
            (dict(total_games=150, completed_games=150, best_score=1900), "King of Games"),
            (dict(total_games=100, completed_games=100, best_score=100), "Duelist Kingdom Champion"),
            (dict(total_games=40, completed_games=20, best_score=100), "Academy Student"),
            (dict(total_games=20, completed_games=6, best_score=100), "Promising Beginner"),
            (dict(total_games=20, completed_games=2, best_score=100), "New Duelist"),
        ]
        for kwargs, rank in cases:
            with self.subTest(rank=rank):
                self.assertEqual(PlayerStats(1, "yugi", **kwargs).rank, rank)

    def test_ordering(self):
        players = [
            PlayerStats(1, "joey", total_games=10, completed_games=5, best_score=300),
            PlayerStats(2, "kaiba", total_games=10, completed_games=9, best_score=300),
            PlayerStats(3, "yugi", total_games=1, completed_games=1, best_score=400),
        ]
        ordered = sorted(players, key=PlayerStats.sort_key)
        self.assertEqual([p.username for p in ordered], ["yugi", "kaiba", "joey"])

    def test_profile(self):
        profile = PlayerStats(3, "yugi", total_games=2, completed_games=1, best_score=90).get_profile()
        self.assertEqual(profile["username"], "yugi")
        self.assertEqual(profile["success_rate"], 50.0)
        self.assertEqual(profile["rank"], "New Duelist")

    def test_profile_includes_averages(self):
        records = [record(score=120, duration=30, moves_count=6),
                   record(status="abandoned", score=0)]
        profile = PlayerStats.from_records(3, "yugi", records).get_profile()
        self.assertEqual(profile["abandoned_games"], 1)
        self.assertEqual(profile["average_time"], 30.0)
        self.assertEqual(profile["average_moves"], 6.0)
        self.assertEqual(profile["average_score"], 120)


if __name__ == "__main__":
    unittest.main()
