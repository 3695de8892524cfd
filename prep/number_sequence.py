"""
Prep — Number Sequence  (prep/number_sequence.py)
=================================================
Adaptive digit-span memory game.  The player is shown a run of digits
(1–9) and taps them back.  Sequence length starts at 3 and adapts every
round: it grows after every second consecutive success (up to 9) and
shrinks after a miss (down to 3).  A session is 15 rounds.

Games are held in-process, one per user, until the last round is scored.
"""
from __future__ import annotations

import random
import statistics
import threading
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional

from prep.api_exceptions import ConflictError, ResourceNotFoundError


START_LENGTH         = 3
MIN_LENGTH           = 3
MAX_LENGTH           = 9
TOTAL_ROUNDS         = 15
HESITATION_THRESHOLD = 2000   # ms between taps


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


@dataclass
class Attempt:
    round:           int
    sequence_length: int
    correct:         bool
    target:          list[int]
    answer:          list[int]
    accuracy:        float
    input_speed:     float   # ms per digit


@dataclass
class NumberSequenceGame:
    rng:                  random.Random = field(default_factory=random.Random, repr=False)
    sequence_length:      int = START_LENGTH
    round:                int = 1
    streak:               int = 0
    best_streak:          int = 0
    score:                int = 0
    max_sequence_reached: int = START_LENGTH
    sequence:             list[int] = field(default_factory=list)
    attempts:             list[Attempt] = field(default_factory=list)
    errors:               list[dict] = field(default_factory=list)
    hesitations:          list[dict] = field(default_factory=list)
    started_at:           int = field(default_factory=_now_ms)
    finished:             bool = False

    def __post_init__(self):
        if not self.sequence:
            self.new_round()

    def new_round(self) -> list[int]:
        self.sequence = [self.rng.randint(1, 9) for _ in range(self.sequence_length)]
        return self.sequence

    def submit(self, answer: list[int], tap_intervals_ms: Optional[list[int]] = None) -> dict:
        if self.finished:
            raise ConflictError("Game already finished", "GAME_FINISHED")

        intervals = tap_intervals_ms or []
        for position, gap in enumerate(intervals):
            if gap > HESITATION_THRESHOLD:
                self.hesitations.append({"round": self.round, "duration": gap, "digit_position": position})

        correct_digits = 0
        for idx, digit in enumerate(self.sequence):
            if idx >= len(answer):
                self.errors.append({"round": self.round, "error_type": "omission",
                                    "expected": digit, "given": None, "position": idx})
            elif answer[idx] == digit:
                correct_digits += 1
            else:
                self.errors.append({"round": self.round, "error_type": "wrong_order",
                                    "expected": digit, "given": answer[idx], "position": idx})

        accuracy   = correct_digits / len(self.sequence) * 100
        is_correct = accuracy == 100
        self.attempts.append(Attempt(
            round           = self.round,
            sequence_length = self.sequence_length,
            correct         = is_correct,
            target          = list(self.sequence),
            answer          = list(answer),
            accuracy        = accuracy,
            input_speed     = sum(intervals) / len(answer) if answer else 0.0,
        ))

        if is_correct:
            previous_streak  = self.streak
            self.score      += 1
            self.streak     += 1
            self.best_streak = max(self.best_streak, self.streak)
            if previous_streak > 0 and previous_streak % 2 == 0 and self.sequence_length < MAX_LENGTH:
                self.sequence_length += 1
                self.max_sequence_reached = max(self.max_sequence_reached, self.sequence_length)
        else:
            self.streak = 0
            if self.sequence_length > MIN_LENGTH:
                self.sequence_length -= 1

        expected = list(self.sequence)
        if self.round < TOTAL_ROUNDS:
            self.round += 1
            self.new_round()
        else:
            self.finished = True

        return {
            "correct":       is_correct,
            "accuracy":      accuracy,
            "expected":      expected,
            "finished":      self.finished,
            "next_sequence": None if self.finished else self.sequence,
            "state":         self.state(),
        }

    def state(self) -> dict:
        return {
            "round":           self.round,
            "total_rounds":    TOTAL_ROUNDS,
            "sequence_length": self.sequence_length,
            "streak":          self.streak,
            "best_streak":     self.best_streak,
            "score":           self.score,
            "hesitations":     len(self.hesitations),
            "finished":        self.finished,
        }

    def summary(self) -> dict:
        n = len(self.attempts)
        return {
            "rounds_completed":     n,
            "correct_rounds":       self.score,
            "accuracy":             self.score / n * 100 if n else 0.0,
            "avg_sequence_length":  statistics.mean(a.sequence_length for a in self.attempts) if n else 0.0,
            "avg_input_speed":      statistics.mean(a.input_speed for a in self.attempts) if n else 0.0,
            "memory_span":          self.max_sequence_reached,
            "avg_hesitation_time":  statistics.mean(h["duration"] for h in self.hesitations) if self.hesitations else 0.0,
            "total_hesitations":    len(self.hesitations),
            "error_rate":           len(self.errors) / (n * self.sequence_length) * 100 if n else 0.0,
            "wrong_order_errors":   sum(1 for e in self.errors if e["error_type"] == "wrong_order"),
            "omission_errors":      sum(1 for e in self.errors if e["error_type"] == "omission"),
            "best_streak":          self.best_streak,
            "duration_ms":          _now_ms() - self.started_at,
            "attempts":             [asdict(a) for a in self.attempts],
        }

    def session_data(self) -> dict:
        """Telemetry in the shape the cognitive-session builder expects."""
        s = self.summary()
        return {
            "accuracy":          s["accuracy"],
            "score":             self.score,
            "totalRounds":       s["rounds_completed"],
            "avgReactionTime":   s["avg_input_speed"],
            "totalGameDuration": s["duration_ms"],
            "memorySpan":        s["memory_span"],
            "errorRate":         s["error_rate"],
            "totalHesitations":  s["total_hesitations"],
            "avgSequenceLength": s["avg_sequence_length"],
        }


# ──────────────────────────────────────────────
# PER-USER GAME TABLE
# ──────────────────────────────────────────────

_games: dict[str, NumberSequenceGame] = {}
_games_lock = threading.Lock()


def start_game(user_id: str, rng: Optional[random.Random] = None) -> NumberSequenceGame:
    """Start (or restart) the user's game."""
    game = NumberSequenceGame(rng=rng or random.Random())
    with _games_lock:
        _games[user_id] = game
    return game


def get_game(user_id: str) -> NumberSequenceGame:
    with _games_lock:
        game = _games.get(user_id)
    if game is None:
        raise ResourceNotFoundError("Number sequence game", user_id, "GAME_NOT_STARTED")
    return game


def end_game(user_id: str) -> None:
    with _games_lock:
        _games.pop(user_id, None)
