"""Scoring and round constants shared by the core services."""

DEFAULT_MAX_RESPONSE_TIME_MS: int = 15000
SPEED_BONUS_RATIO: float = 0.3
MINIMUM_MATCHED_POINTS: int = 1

DEFAULT_QUESTIONS_PER_ROUND: int = 5
ROUND_LEADERBOARD_SIZE: int = 10

MIN_OPTIONS: int = 2
MAX_OPTIONS: int = 8

RESPONSE_STATS_TIME_CAP_MS: int = 60000
