"""
State transition functions for the Konchina card game.

This module provides pure functions for transitioning between game states,
without modifying the original state objects. The synchronization layer runs
them inside a transaction against the freshly read room document, so they must
not have side effects: a transaction that loses a race simply calls them again.
"""

import logging
import random
import time
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from konchina.common.card import Card
from konchina.common.deck import deal_table_layout, new_shuffled_deck
from konchina.errors import IllegalMoveError, InvariantViolation, RoomFullError
from konchina.game.captures import is_legal_capture
from konchina.game.constants import FIRST_PLAYER_ALTERNATE, MAX_PLAYERS
from konchina.game.scoring import score_round
from konchina.game.state import GameRules, GameState, GameStatus, Move, PlayerState

logger = logging.getLogger(__name__)


def _take(deck: List[Card], count: int) -> List[Card]:
    if count > len(deck):
        raise InvariantViolation(f"Cannot deal {count} cards from {len(deck)}")
    dealt = deck[:count]
    del deck[:count]
    return dealt


def _without(cards: Sequence[Card], removed: Sequence[Card]) -> List[Card]:
    removed_set = set(removed)
    return [card for card in cards if card not in removed_set]


class StateTransitionEngine:
    """
    Pure functions for state transitions in Konchina.

    This class contains static methods that implement game state transitions.
    Each method takes a state and returns a new state, without modifying the
    original. Moves that fail a precondition return the state unchanged.
    """

    @staticmethod
    def create_room(
        room_id: str,
        player_id: str,
        rules: Optional[GameRules] = None,
        rng: Optional[random.Random] = None,
        timestamp: Optional[float] = None,
    ) -> GameState:
        """
        Create a new room with its first player seated.

        The creator is dealt a hand, the table layout is dealt without jacks
        and the room waits for a second player.

        Args:
            room_id: Identifier of the room document
            player_id: ID of the creating player
            rules: Rules for the room (defaults if None)
            rng: Optional random generator for the shuffle
            timestamp: Optional creation time

        Returns:
            A new game state in the waiting status
        """
        game_rules = rules or GameRules()
        deck = new_shuffled_deck(rng)
        hand = _take(deck, game_rules.hand_size)
        table, deck = deal_table_layout(deck, game_rules.table_size)

        logger.debug("Creating room %s for player %s", room_id, player_id)

        return GameState(
            room_id=room_id,
            table_cards=table,
            deck=deck,
            players={player_id: PlayerState(id=player_id, hand=hand, is_turn=True)},
            player_order=(player_id,),
            current_player_id=player_id,
            game_status=GameStatus.WAITING,
            consecutive_timeouts={player_id: 0},
            rules=game_rules,
            timestamp=timestamp if timestamp is not None else time.time(),
        )

    @staticmethod
    def join_room(state: GameState, player_id: str) -> GameState:
        """
        Seat a second player and start the game.

        Args:
            state: Current game state
            player_id: ID of the joining player

        Returns:
            New game state with the player seated, or the same state if the
            player was already seated or the game is already over

        Raises:
            RoomFullError: If two other players already hold the seats
        """
        if player_id in state.players:
            return state
        if state.is_finished:
            logger.warning(
                "Rejected join of %s: room %s is finished", player_id, state.room_id
            )
            return state
        if len(state.players) >= MAX_PLAYERS:
            raise RoomFullError(f"Room {state.room_id} is full")

        deck = list(state.deck)
        hand = _take(deck, state.rules.hand_size)

        players = dict(state.players)
        players[player_id] = PlayerState(id=player_id, hand=hand, is_turn=False)

        timeouts = dict(state.consecutive_timeouts)
        timeouts[player_id] = 0

        logger.debug("Player %s joined room %s", player_id, state.room_id)

        return replace(
            state,
            deck=deck,
            players=players,
            player_order=state.player_order + (player_id,),
            consecutive_timeouts=timeouts,
            game_status=(
                GameStatus.ACTIVE if len(players) == MAX_PLAYERS else state.game_status
            ),
        )

    @staticmethod
    def apply_move(
        state: GameState,
        player_id: str,
        played_card: Card,
        captured_cards: Sequence[Card] = (),
        timestamp: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ) -> GameState:
        """
        Play a card, capturing the chosen table cards or laying it down.

        The capture itself is not re-validated here; callers check it with
        `is_legal_capture` first (see `validated_move`). Handles the mid-round
        deal when both hands run out, and the round end when the deck is
        exhausted too: the table sweep, scoring, and either the game end or
        a fresh round.

        Args:
            state: Current game state
            player_id: ID of the moving player
            played_card: Card played from the player's hand
            captured_cards: Table cards taken; empty to lay the card down
            timestamp: Move time in milliseconds (now if None)
            rng: Optional random generator for a new round's shuffle

        Returns:
            New game state after the move
        """
        if state.game_status != GameStatus.ACTIVE:
            logger.warning("Rejected move in room %s: game not active", state.room_id)
            return state
        if state.current_player_id != player_id:
            logger.warning(
                "Rejected move in room %s: not %s's turn", state.room_id, player_id
            )
            return state
        mover = state.players.get(player_id)
        if mover is None or not mover.has_card(played_card):
            logger.warning(
                "Rejected move in room %s: %s not in %s's hand",
                state.room_id,
                played_card,
                player_id,
            )
            return state

        opponent_id = state.opponent_id(player_id)
        captured = list(captured_cards)

        hand = [card for card in mover.hand if card != played_card]
        table = list(state.table_cards)
        captures = list(mover.captures)
        last_capture_player_id = state.last_capture_player_id

        if captured:
            table = _without(table, captured)
            captures.extend(captured)
            captures.append(played_card)
            last_capture_player_id = player_id
        else:
            table.append(played_card)

        players: Dict[str, PlayerState] = dict(state.players)
        players[player_id] = replace(mover, hand=hand, captures=captures, is_turn=False)
        players[opponent_id] = replace(players[opponent_id], is_turn=True)

        timeouts = dict(state.consecutive_timeouts)
        timeouts[player_id] = 0

        move_sequence = state.move_sequence + 1
        move = Move(
            player_id=player_id,
            played_card=played_card,
            captured_cards=captured,
            timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
            sequence=move_sequence,
        )

        new_state = replace(
            state,
            table_cards=table,
            players=players,
            current_player_id=opponent_id,
            last_move=move,
            last_capture_player_id=last_capture_player_id,
            consecutive_timeouts=timeouts,
            move_sequence=move_sequence,
        )

        hand_size = state.rules.hand_size
        if new_state.hands_empty and len(new_state.deck) >= 2 * hand_size:
            new_state = StateTransitionEngine.deal_hands(
                new_state, first_player_id=player_id
            )

        if new_state.is_round_over:
            new_state = StateTransitionEngine.end_round(new_state, player_id, rng=rng)

        return new_state

    @staticmethod
    def deal_hands(state: GameState, first_player_id: str) -> GameState:
        """
        Deal a fresh hand to both players from the remaining deck.

        Args:
            state: Current game state
            first_player_id: Player who receives the first batch of cards

        Returns:
            New game state with both hands refilled and the hand counter
            advanced
        """
        deck = list(state.deck)
        players = dict(state.players)
        for pid in (first_player_id, state.opponent_id(first_player_id)):
            players[pid] = replace(
                players[pid], hand=_take(deck, state.rules.hand_size)
            )

        logger.debug(
            "Dealt hand %d in room %s, %d cards left",
            state.current_hand + 1,
            state.room_id,
            len(deck),
        )

        return replace(
            state, deck=deck, players=players, current_hand=state.current_hand + 1
        )

    @staticmethod
    def end_round(
        state: GameState, last_mover_id: str, rng: Optional[random.Random] = None
    ) -> GameState:
        """
        Close a round once the deck and both hands are exhausted.

        Cards left on the table go to the last player who captured, or to the
        last mover if nobody captured this round. Both capture piles are then
        scored and cleared. If the game is decided it finishes; otherwise a new
        round is dealt from a fresh deck.

        Args:
            state: Game state with an empty deck and empty hands
            last_mover_id: Player who made the final move of the round
            rng: Optional random generator for the new round's shuffle

        Returns:
            New game state after scoring
        """
        players = dict(state.players)

        if state.table_cards:
            sweeper_id = state.last_capture_player_id or last_mover_id
            sweeper = players[sweeper_id]
            players[sweeper_id] = replace(
                sweeper, captures=list(sweeper.captures) + list(state.table_cards)
            )
            logger.debug(
                "Swept %d table cards to %s", len(state.table_cards), sweeper_id
            )

        first_id, second_id = state.player_order[:2]
        result = score_round(
            players[first_id], players[second_id], round_number=state.current_round
        )

        for score in (result.player1, result.player2):
            player = players[score.player_id]
            players[score.player_id] = replace(
                player, score=player.score + score.points, captures=[]
            )

        logger.info(
            "Round %d of room %s scored: %s %d, %s %d",
            state.current_round,
            state.room_id,
            first_id,
            result.player1.points,
            second_id,
            result.player2.points,
        )

        scored = replace(
            state,
            table_cards=[],
            players=players,
            last_round_score=result,
            last_capture_player_id=None,
            round_sequence=state.round_sequence + 1,
        )

        if StateTransitionEngine.is_game_decided(scored):
            logger.info("Game in room %s finished", state.room_id)
            return replace(scored, game_status=GameStatus.FINISHED)

        return StateTransitionEngine.start_round(scored, rng=rng)

    @staticmethod
    def is_game_decided(state: GameState) -> bool:
        """
        Check whether the scores end the game.

        Someone must be at or above the win threshold and strictly ahead. When
        both players are level at or above the threshold another round is
        played to break the tie.
        """
        threshold = state.rules.win_threshold
        scores = [p.score for p in state.players.values()]
        if max(scores) < threshold:
            return False
        return len(scores) < 2 or scores[0] != scores[1]

    @staticmethod
    def round_opener(state: GameState) -> str:
        """
        Choose who opens the next round under the room's first player policy.

        The default policy always picks the room's original first player; the
        alternate policy swaps the opener every round.
        """
        first_id, second_id = state.player_order[:2]
        if state.rules.first_player_policy == FIRST_PLAYER_ALTERNATE:
            return first_id if state.round_sequence % 2 == 0 else second_id
        return first_id

    @staticmethod
    def start_round(state: GameState, rng: Optional[random.Random] = None) -> GameState:
        """
        Deal a new round from a freshly shuffled deck.

        Args:
            state: Scored game state between rounds
            rng: Optional random generator for the shuffle

        Returns:
            New game state at hand 1 of the next round
        """
        opener = StateTransitionEngine.round_opener(state)
        other = state.opponent_id(opener)

        deck = new_shuffled_deck(rng)
        hand_size = state.rules.hand_size
        players = dict(state.players)
        players[opener] = replace(
            players[opener], hand=_take(deck, hand_size), is_turn=True
        )
        players[other] = replace(
            players[other], hand=_take(deck, hand_size), is_turn=False
        )
        table, deck = deal_table_layout(deck, state.rules.table_size)

        logger.debug(
            "Round %d of room %s opened by %s",
            state.current_round + 1,
            state.room_id,
            opener,
        )

        return replace(
            state,
            table_cards=table,
            deck=deck,
            players=players,
            current_player_id=opener,
            current_hand=1,
            current_round=state.current_round + 1,
            last_capture_player_id=None,
        )

    @staticmethod
    def validated_move(
        state: GameState,
        player_id: str,
        played_card: Card,
        captured_cards: Sequence[Card] = (),
        timestamp: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ) -> GameState:
        """
        Apply a move after checking the capture against the current table.

        Raises:
            IllegalMoveError: If the capture is not legal on the current table
        """
        if not is_legal_capture(played_card, captured_cards, state.table_cards):
            raise IllegalMoveError(
                f"{played_card} cannot capture "
                f"{', '.join(str(c) for c in captured_cards)}"
            )
        return StateTransitionEngine.apply_move(
            state, player_id, played_card, captured_cards, timestamp=timestamp, rng=rng
        )

    @staticmethod
    def forfeit(state: GameState, player_id: str) -> GameState:
        """
        End the game with the given player conceding.

        The opponent's score is raised to at least the win threshold so that
        collaborators reading only the scores still see them as the winner.

        Args:
            state: Current game state
            player_id: ID of the forfeiting player

        Returns:
            New game state, finished, with `forfeited_by` set
        """
        if state.is_finished or player_id not in state.players:
            return state

        opponent_id = state.opponent_id(player_id)
        players = dict(state.players)
        if opponent_id is not None:
            opponent = players[opponent_id]
            players[opponent_id] = replace(
                opponent,
                score=max(opponent.score, state.rules.win_threshold),
                is_turn=True,
            )
        players[player_id] = replace(players[player_id], is_turn=False)

        logger.info("Player %s forfeited room %s", player_id, state.room_id)

        return replace(
            state,
            players=players,
            game_status=GameStatus.FINISHED,
            forfeited_by=player_id,
            current_player_id=opponent_id or state.current_player_id,
        )

    @staticmethod
    def record_timeout(state: GameState, player_id: str) -> GameState:
        """
        Count a turn that expired without a move.

        Only counts while the game is active and it is that player's turn. The
        counter is reset by the player's next move.
        """
        if state.game_status != GameStatus.ACTIVE or state.current_player_id != player_id:
            return state

        timeouts = dict(state.consecutive_timeouts)
        timeouts[player_id] = timeouts.get(player_id, 0) + 1
        return replace(state, consecutive_timeouts=timeouts)

    @staticmethod
    def clear_round_score(state: GameState) -> GameState:
        """Acknowledge the last round's result. Clearing twice is harmless."""
        if state.last_round_score is None:
            return state
        return replace(state, last_round_score=None)

    @staticmethod
    def needs_processing(
        state: GameState, player_id: str, key: str, sequence: int
    ) -> bool:
        """
        Check whether a player still has to run a side effect.

        Args:
            state: Current game state
            player_id: Player running the side effect
            key: Name of the side effect, such as "round_end" or "payout"
            sequence: Sequence number the side effect belongs to

        Returns:
            True if the player has not recorded this sequence yet
        """
        done = state.processed_sequences.get(player_id, {}).get(key, 0)
        return sequence > done

    @staticmethod
    def mark_processed(
        state: GameState, player_id: str, key: str, sequence: int
    ) -> GameState:
        """
        Record that a player ran a side effect up to a sequence number.

        The stored value never decreases, so replays are harmless.
        """
        if not StateTransitionEngine.needs_processing(state, player_id, key, sequence):
            return state

        processed = {pid: dict(keys) for pid, keys in state.processed_sequences.items()}
        processed.setdefault(player_id, {})[key] = sequence
        return replace(state, processed_sequences=processed)
