"""Konchina scoring constants and rule defaults."""

import os

from konchina.common.card import Card, Rank, Suit

# Round bonuses
MOST_CLUBS_POINTS = 1
MORE_CARDS_POINTS = 2
TEN_OF_DIAMONDS_POINTS = 1
TWO_OF_CLUBS_POINTS = 1

TEN_OF_DIAMONDS = Card(Suit.DIAMONDS, Rank.TEN)
TWO_OF_CLUBS = Card(Suit.CLUBS, Rank.TWO)

# The rank that sweeps the whole table
CAPTURE_ALL_RANK = Rank.JACK

DECK_SIZE = 52
HAND_SIZE = 4
TABLE_SIZE = 4
MAX_PLAYERS = 2

SUPPORTED_WIN_THRESHOLDS = (16, 21)
DEFAULT_WIN_THRESHOLD = 16
WIN_THRESHOLD_ENV = "KONCHINA_WIN_THRESHOLD"

# Who opens every round after the first
FIRST_PLAYER_ORIGINAL = "original_player_one"
FIRST_PLAYER_ALTERNATE = "alternate"
FIRST_PLAYER_POLICIES = (FIRST_PLAYER_ORIGINAL, FIRST_PLAYER_ALTERNATE)


def default_win_threshold() -> int:
    """
    Win threshold for rooms that do not configure one.

    Read from the KONCHINA_WIN_THRESHOLD environment variable on every call;
    a value that is not an integer raises ValueError.
    """
    raw = os.environ.get(WIN_THRESHOLD_ENV)
    if raw is None:
        return DEFAULT_WIN_THRESHOLD
    try:
        return int(raw)
    except ValueError:
        raise ValueError(
            f"{WIN_THRESHOLD_ENV} must be an integer, got {raw!r}"
        ) from None
