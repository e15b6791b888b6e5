"""Points for a single answer.

Correct answers earn BASE_POINTS plus a speed bonus that shrinks linearly
over TIME_WINDOW_MS; wrong answers earn nothing. The same function runs on
participant devices for instant feedback and, optionally, on the host.
"""

import math

BASE_POINTS = 1000
TIME_WINDOW_MS = 10000
BONUS_RATE = 0.1


def calculate_score(is_correct: bool, elapsed_ms: float) -> int:
    """Return the points for an answer given after ``elapsed_ms``."""
    if not is_correct:
        return 0
    # Clock skew can produce negative elapsed times; never pay above the cap
    elapsed_ms = max(0, elapsed_ms)
    bonus = max(0, TIME_WINDOW_MS - elapsed_ms) * BONUS_RATE
    return int(math.floor(BASE_POINTS + bonus))
