"""
Konchina card game module.

This module provides the implementation for the Konchina card game,
including state models, capture rules, scoring and state transitions.
"""

from konchina.game.state import (
    GameState as GameState,
    PlayerState as PlayerState,
    Move as Move,
    GameStatus as GameStatus,
    GameRules as GameRules,
)
from konchina.game.scoring import (
    RoundScoreResult as RoundScoreResult,
    PlayerRoundScore as PlayerRoundScore,
    score_round as score_round,
    determine_winner as determine_winner,
)
from konchina.game.captures import (
    legal_captures as legal_captures,
    is_legal_capture as is_legal_capture,
)
from konchina.game.transitions import StateTransitionEngine as StateTransitionEngine

__all__ = [
    "GameState",
    "PlayerState",
    "Move",
    "GameStatus",
    "GameRules",
    "RoundScoreResult",
    "PlayerRoundScore",
    "score_round",
    "determine_winner",
    "legal_captures",
    "is_legal_capture",
    "StateTransitionEngine",
]
