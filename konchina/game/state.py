"""
Immutable state models for the Konchina card game.

This module provides dataclasses for representing the state of a Konchina room
in an immutable manner. These classes are designed to be used with pure
transition functions that create new state instances rather than modifying
existing ones, and they round-trip through the plain-dict document stored in
the shared room document.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import time

from konchina.common.card import Card
from konchina.game.constants import (
    DECK_SIZE,
    FIRST_PLAYER_ORIGINAL,
    FIRST_PLAYER_POLICIES,
    HAND_SIZE,
    TABLE_SIZE,
    default_win_threshold,
)
from konchina.game.scoring import RoundScoreResult


class GameStatus(Enum):
    """Lifecycle of a room. Transitions only ever move forward."""

    WAITING = "waiting"
    ACTIVE = "active"
    FINISHED = "finished"


def _cards_to_dicts(cards: List[Card]) -> List[Dict[str, Any]]:
    return [card.to_dict() for card in cards]


def _cards_from_dicts(data: Optional[List[Dict[str, Any]]]) -> List[Card]:
    return [Card.from_dict(item) for item in data or []]


@dataclass(frozen=True)
class PlayerState:
    """
    Immutable representation of a seated player.

    Attributes:
        id: Unique identifier for this player
        hand: Cards in the player's hand; order only matters for display
        captures: Cards captured during the current round
        score: Points accumulated over completed rounds
        is_turn: Whether this player is due to move
    """

    id: str
    hand: List[Card] = field(default_factory=list)
    captures: List[Card] = field(default_factory=list)
    score: int = 0
    is_turn: bool = False

    def has_card(self, card: Card) -> bool:
        return card in self.hand

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "hand": _cards_to_dicts(self.hand),
            "captures": _cards_to_dicts(self.captures),
            "score": self.score,
            "isTurn": self.is_turn,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlayerState":
        return cls(
            id=data["id"],
            hand=_cards_from_dicts(data.get("hand")),
            captures=_cards_from_dicts(data.get("captures")),
            score=data.get("score", 0),
            is_turn=data.get("isTurn", False),
        )


@dataclass(frozen=True)
class Move:
    """
    Record of the latest turn, kept so clients can animate it.

    Attributes:
        player_id: The player who moved
        played_card: The card played from hand
        captured_cards: Table cards taken with it (empty when the card was laid)
        timestamp: Wall-clock time of the move, in milliseconds
        sequence: Position of the move in the room's move sequence
    """

    player_id: str
    played_card: Card
    captured_cards: List[Card] = field(default_factory=list)
    timestamp: int = 0
    sequence: int = 0

    @property
    def key(self) -> str:
        """A stable identifier clients can use to animate each move once."""
        return f"{self.player_id}-{self.sequence}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playerId": self.player_id,
            "playedCard": self.played_card.to_dict(),
            "capturedCards": _cards_to_dicts(self.captured_cards),
            "timestamp": self.timestamp,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Move":
        return cls(
            player_id=data["playerId"],
            played_card=Card.from_dict(data["playedCard"]),
            captured_cards=_cards_from_dicts(data.get("capturedCards")),
            timestamp=data.get("timestamp", 0),
            sequence=data.get("sequence", 0),
        )


@dataclass(frozen=True)
class GameRules:
    """
    Immutable representation of the rules for a Konchina room.

    Attributes:
        win_threshold: Score that ends the game at a round boundary
        hand_size: Cards dealt to each player per deal
        table_size: Cards laid face up at the start of a round
        first_player_policy: Who opens each new round
    """

    win_threshold: int = field(default_factory=default_win_threshold)
    hand_size: int = HAND_SIZE
    table_size: int = TABLE_SIZE
    first_player_policy: str = FIRST_PLAYER_ORIGINAL

    def __post_init__(self):
        if self.win_threshold <= 0:
            raise ValueError(f"Invalid win threshold: {self.win_threshold}")
        if self.hand_size <= 0 or self.table_size < 0:
            raise ValueError("Hand and table sizes must be positive")
        # After the opening deal the rest of the deck must split into whole
        # deals, or a round reaches empty hands with cards left in the deck.
        rest = DECK_SIZE - self.table_size - 2 * self.hand_size
        if rest < 0 or rest % (2 * self.hand_size) != 0:
            raise ValueError(
                f"Hand size {self.hand_size} and table size {self.table_size} "
                f"do not split a {DECK_SIZE}-card deck into whole deals"
            )
        if self.first_player_policy not in FIRST_PLAYER_POLICIES:
            raise ValueError(
                f"Unknown first player policy: {self.first_player_policy}"
            )

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "GameRules":
        """
        Build rules from a configuration dictionary merged over the defaults.

        Unknown keys are ignored so one config dict can also carry
        synchronization settings.
        """
        default_config = {
            "hand_size": HAND_SIZE,
            "table_size": TABLE_SIZE,
            "first_player_policy": FIRST_PLAYER_ORIGINAL,
        }
        known = set(default_config) | {"win_threshold"}
        if config:
            default_config.update(
                {key: value for key, value in config.items() if key in known}
            )
        return cls(**default_config)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "winThreshold": self.win_threshold,
            "handSize": self.hand_size,
            "tableSize": self.table_size,
            "firstPlayerPolicy": self.first_player_policy,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GameRules":
        data = data or {}
        return cls(
            win_threshold=data.get("winThreshold") or default_win_threshold(),
            hand_size=data.get("handSize", HAND_SIZE),
            table_size=data.get("tableSize", TABLE_SIZE),
            first_player_policy=data.get("firstPlayerPolicy", FIRST_PLAYER_ORIGINAL),
        )


@dataclass(frozen=True)
class GameState:
    """
    Immutable representation of a Konchina room.

    Attributes:
        room_id: Identifier of the shared room document
        table_cards: Face-up cards that can be captured
        deck: Cards not dealt yet, dealt from the front
        players: Seated players by id (one or two entries)
        player_order: Player ids in the order they joined
        current_player_id: Player due to move
        last_move: The most recent move, for animation
        game_status: Waiting, active or finished
        last_round_score: Result of the last completed round until acknowledged
        last_capture_player_id: Who captured most recently this round
        forfeited_by: Player who forfeited, if any
        current_hand: Deal counter within the current round, starting at 1
        current_round: Round counter, starting at 1
        consecutive_timeouts: Turns each player let expire in a row
        move_sequence: Number of moves applied to the room
        round_sequence: Number of rounds completed in the room
        processed_sequences: Highest sequence each player handled per
            side-effect key, so round and game end effects run once
        rules: Rules for this room
        timestamp: Time when this state was created
    """

    room_id: str = ""
    table_cards: List[Card] = field(default_factory=list)
    deck: List[Card] = field(default_factory=list)
    players: Dict[str, PlayerState] = field(default_factory=dict)
    player_order: Tuple[str, ...] = ()
    current_player_id: Optional[str] = None
    last_move: Optional[Move] = None
    game_status: GameStatus = GameStatus.WAITING
    last_round_score: Optional[RoundScoreResult] = None
    last_capture_player_id: Optional[str] = None
    forfeited_by: Optional[str] = None
    current_hand: int = 1
    current_round: int = 1
    consecutive_timeouts: Dict[str, int] = field(default_factory=dict)
    move_sequence: int = 0
    round_sequence: int = 0
    processed_sequences: Dict[str, Dict[str, int]] = field(default_factory=dict)
    rules: GameRules = field(default_factory=GameRules)
    timestamp: float = field(default_factory=lambda: time.time())

    def player(self, player_id: str) -> Optional[PlayerState]:
        return self.players.get(player_id)

    def opponent_id(self, player_id: str) -> Optional[str]:
        """Get the id of the other seated player, if there is one."""
        for other in self.player_order:
            if other != player_id:
                return other
        return None

    @property
    def current_player(self) -> Optional[PlayerState]:
        if self.current_player_id is None:
            return None
        return self.players.get(self.current_player_id)

    @property
    def is_full(self) -> bool:
        return len(self.players) >= 2

    @property
    def is_finished(self) -> bool:
        return self.game_status == GameStatus.FINISHED

    @property
    def hands_empty(self) -> bool:
        return all(not player.hand for player in self.players.values())

    @property
    def is_round_over(self) -> bool:
        """A round is over exactly when the deck and every hand are empty."""
        return not self.deck and self.hands_empty

    def card_count(self) -> int:
        """Count the cards in play: table, deck, hands and capture piles."""
        return (
            len(self.table_cards)
            + len(self.deck)
            + sum(len(p.hand) + len(p.captures) for p in self.players.values())
        )

    def with_player(self, player: PlayerState) -> "GameState":
        """Return a copy of this state with one player replaced."""
        players = dict(self.players)
        players[player.id] = player
        return replace(self, players=players)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the game state to the shared document representation.

        Returns:
            Dictionary representation of the game state
        """
        return {
            "roomId": self.room_id,
            "tableCards": _cards_to_dicts(self.table_cards),
            "deck": _cards_to_dicts(self.deck),
            "players": {pid: p.to_dict() for pid, p in self.players.items()},
            "playerOrder": list(self.player_order),
            "currentPlayerId": self.current_player_id,
            "lastMove": self.last_move.to_dict() if self.last_move else None,
            "gameStatus": self.game_status.value,
            "lastRoundScore": (
                self.last_round_score.to_dict() if self.last_round_score else None
            ),
            "lastCapturePlayerId": self.last_capture_player_id,
            "forfeitedBy": self.forfeited_by,
            "currentHand": self.current_hand,
            "currentRound": self.current_round,
            "consecutiveTimeouts": dict(self.consecutive_timeouts),
            "moveSequence": self.move_sequence,
            "roundSequence": self.round_sequence,
            "processedSequences": {
                pid: dict(keys) for pid, keys in self.processed_sequences.items()
            },
            "rules": self.rules.to_dict(),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameState":
        """
        Rebuild a game state from its document representation.

        Optional fields missing from older documents fall back to defaults.
        """
        players = {
            pid: PlayerState.from_dict(p) for pid, p in (data.get("players") or {}).items()
        }
        order = tuple(data.get("playerOrder") or players.keys())
        last_move = data.get("lastMove")
        last_round_score = data.get("lastRoundScore")
        return cls(
            room_id=data.get("roomId", ""),
            table_cards=_cards_from_dicts(data.get("tableCards")),
            deck=_cards_from_dicts(data.get("deck")),
            players=players,
            player_order=order,
            current_player_id=data.get("currentPlayerId"),
            last_move=Move.from_dict(last_move) if last_move else None,
            game_status=GameStatus(data.get("gameStatus", GameStatus.WAITING.value)),
            last_round_score=(
                RoundScoreResult.from_dict(last_round_score)
                if last_round_score
                else None
            ),
            last_capture_player_id=data.get("lastCapturePlayerId"),
            forfeited_by=data.get("forfeitedBy"),
            current_hand=data.get("currentHand") or 1,
            current_round=data.get("currentRound") or 1,
            consecutive_timeouts=dict(data.get("consecutiveTimeouts") or {}),
            move_sequence=data.get("moveSequence", 0),
            round_sequence=data.get("roundSequence", 0),
            processed_sequences={
                pid: dict(keys)
                for pid, keys in (data.get("processedSequences") or {}).items()
            },
            rules=GameRules.from_dict(data.get("rules")),
            timestamp=data.get("timestamp", time.time()),
        )

    def deep_copy(self) -> "GameState":
        """Return an independent copy that shares no mutable containers."""
        return GameState.from_dict(self.to_dict())
