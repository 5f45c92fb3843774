"""
Round scoring and win determination for Konchina.

At the end of every round each player's capture pile is scored:

* most clubs: +1 to the player holding strictly more clubs,
* more cards: +2 to the player holding strictly more cards,
* ten of diamonds: +1 to whoever captured it,
* two of clubs: +1 to whoever captured it.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from konchina.common.card import Suit
from konchina.game.constants import (
    MORE_CARDS_POINTS,
    MOST_CLUBS_POINTS,
    TEN_OF_DIAMONDS,
    TEN_OF_DIAMONDS_POINTS,
    TWO_OF_CLUBS,
    TWO_OF_CLUBS_POINTS,
)

if TYPE_CHECKING:
    from konchina.game.state import GameState, PlayerState


@dataclass(frozen=True)
class PlayerRoundScore:
    """
    Points one player earned in a round and the bonuses behind them.

    Attributes:
        player_id: The scored player
        points: Total points awarded this round
        most_clubs: Whether the player had strictly more clubs
        more_cards: Whether the player had strictly more cards
        has_ten_of_diamonds: Whether the player captured the ten of diamonds
        has_two_of_clubs: Whether the player captured the two of clubs
    """

    player_id: str
    points: int = 0
    most_clubs: bool = False
    more_cards: bool = False
    has_ten_of_diamonds: bool = False
    has_two_of_clubs: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playerId": self.player_id,
            "points": self.points,
            "details": {
                "mostClubs": self.most_clubs,
                "moreCards": self.more_cards,
                "hasTenDiamonds": self.has_ten_of_diamonds,
                "hasTwoClubs": self.has_two_of_clubs,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlayerRoundScore":
        details = data.get("details", {})
        return cls(
            player_id=data["playerId"],
            points=data.get("points", 0),
            most_clubs=details.get("mostClubs", False),
            more_cards=details.get("moreCards", False),
            has_ten_of_diamonds=details.get("hasTenDiamonds", False),
            has_two_of_clubs=details.get("hasTwoClubs", False),
        )


@dataclass(frozen=True)
class RoundScoreResult:
    """The outcome of scoring one round for both players."""

    player1: PlayerRoundScore
    player2: PlayerRoundScore
    round_number: int = 0

    def points_for(self, player_id: str) -> int:
        for score in (self.player1, self.player2):
            if score.player_id == player_id:
                return score.points
        raise KeyError(player_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player1": self.player1.to_dict(),
            "player2": self.player2.to_dict(),
            "roundNumber": self.round_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoundScoreResult":
        return cls(
            player1=PlayerRoundScore.from_dict(data["player1"]),
            player2=PlayerRoundScore.from_dict(data["player2"]),
            round_number=data.get("roundNumber", 0),
        )


def _score_player(
    player: "PlayerState", own_clubs: int, other_clubs: int, other_count: int
) -> PlayerRoundScore:
    most_clubs = own_clubs > other_clubs
    more_cards = len(player.captures) > other_count
    has_ten = TEN_OF_DIAMONDS in player.captures
    has_two = TWO_OF_CLUBS in player.captures

    points = 0
    if most_clubs:
        points += MOST_CLUBS_POINTS
    if more_cards:
        points += MORE_CARDS_POINTS
    if has_ten:
        points += TEN_OF_DIAMONDS_POINTS
    if has_two:
        points += TWO_OF_CLUBS_POINTS

    return PlayerRoundScore(
        player_id=player.id,
        points=points,
        most_clubs=most_clubs,
        more_cards=more_cards,
        has_ten_of_diamonds=has_ten,
        has_two_of_clubs=has_two,
    )


def score_round(
    player1: "PlayerState", player2: "PlayerState", round_number: int = 0
) -> RoundScoreResult:
    """
    Score a finished round from both players' capture piles.

    Ties on clubs or on card count award those bonuses to nobody; the two
    card bonuses are checked for each player on their own.

    Args:
        player1: First player, with this round's captures
        player2: Second player, with this round's captures
        round_number: The round being scored, kept for display

    Returns:
        The points and bonus breakdown for both players
    """
    clubs1 = sum(1 for card in player1.captures if card.suit == Suit.CLUBS)
    clubs2 = sum(1 for card in player2.captures if card.suit == Suit.CLUBS)

    return RoundScoreResult(
        player1=_score_player(player1, clubs1, clubs2, len(player2.captures)),
        player2=_score_player(player2, clubs2, clubs1, len(player1.captures)),
        round_number=round_number,
    )


def determine_winner(state: "GameState") -> Optional[str]:
    """
    Work out who won a finished game.

    A forfeit always hands the win to the other player, whatever the scores.
    Otherwise the winner is the player at or above the win threshold with the
    strictly higher score; equal scores at the threshold are a draw.

    Args:
        state: A game state, normally a finished one

    Returns:
        The winner's id, or None for a draw or an undecided game
    """
    if state.forfeited_by is not None:
        return state.opponent_id(state.forfeited_by)

    threshold = state.rules.win_threshold
    if len(state.players) < 2:
        return None

    first, second = (state.players[pid] for pid in state.player_order[:2])
    for player, other in ((first, second), (second, first)):
        if player.score >= threshold and player.score > other.score:
            return player.id
    return None
