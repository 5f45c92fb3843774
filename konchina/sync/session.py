"""
Room sessions: transactional access to a shared Konchina room.

Each client owns a `RoomSession`. Every change it makes runs through
`run_transaction`, which reads the room document, applies a pure transition
from `StateTransitionEngine` to that fresh state, and writes the result back
with a compare-and-swap. If the other client wrote in between, the whole
read-apply-write cycle is retried against the newer state.

The session also follows the room through the store's subscription, keeps the
player's private card selection, and publishes events on the `EventBus` once a
write has been committed.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from konchina.common.card import Card
from konchina.errors import (
    RoomNotFoundError,
    TransactionAbortedError,
    VersionConflictError,
)
from konchina.events import EngineEventType, EventBus
from konchina.game.captures import is_legal_capture, legal_captures
from konchina.game.scoring import determine_winner
from konchina.game.state import GameRules, GameState, GameStatus
from konchina.game.transitions import StateTransitionEngine
from konchina.sync.store import DocumentStore, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF = 0.01

UpdateFn = Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]]


async def run_transaction(
    store: DocumentStore,
    doc_id: str,
    update_fn: UpdateFn,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff: float = DEFAULT_BACKOFF,
) -> Optional[Snapshot]:
    """
    Run an optimistic read-modify-write transaction on one document.

    `update_fn` receives the freshly read document (None if it does not
    exist) and returns the new document, or None to leave it untouched. It
    may run several times and must not have side effects. Exceptions it
    raises abort the transaction and propagate.

    Args:
        store: The document store
        doc_id: Identifier of the document
        update_fn: Pure function from the current document to the new one
        max_attempts: How many times to try before giving up
        backoff: Initial delay between attempts, doubled after each conflict

    Returns:
        The committed snapshot, or the unchanged one (None if absent) when
        `update_fn` declined to write

    Raises:
        TransactionAbortedError: If every attempt lost the race
    """
    delay = backoff
    for attempt in range(1, max_attempts + 1):
        snapshot = store.get(doc_id)
        current = snapshot.data if snapshot else None
        version = snapshot.version if snapshot else 0

        updated = update_fn(current)
        if updated is None:
            return snapshot

        try:
            return store.compare_and_swap(doc_id, version, updated)
        except VersionConflictError as e:
            logger.warning(
                "Transaction on %s conflicted (attempt %d/%d): %s",
                doc_id,
                attempt,
                max_attempts,
                e,
            )
            EventBus.get_instance().emit(
                EngineEventType.TRANSACTION_RETRY,
                {"doc_id": doc_id, "attempt": attempt, "max_attempts": max_attempts},
            )
            if attempt < max_attempts:
                await asyncio.sleep(delay)
                delay *= 2

    raise TransactionAbortedError(
        f"Transaction on {doc_id} failed after {max_attempts} attempts"
    )


def normalize_room_id(room_id: str) -> str:
    """Room ids are case-insensitive; documents are keyed in lower case."""
    return room_id.strip().lower()


class RoomSession:
    """
    A player's connection to one shared room.

    Attributes:
        store: The shared document store
        room_id: Normalized room identifier (the document id)
        player_id: The player this session acts for
        rules: Rules used if this session creates the room
        state: Latest room state seen through the subscription
        selected_card: Hand card the player picked, private to this client
        selected_table_cards: Table cards the player picked, private too
    """

    def __init__(
        self,
        store: DocumentStore,
        room_id: str,
        player_id: str,
        config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize a session.

        Args:
            store: The shared document store
            room_id: Room to create or join
            player_id: The player this session acts for
            config: Optional rules and transaction settings
        """
        self.store = store
        self.room_id = normalize_room_id(room_id)
        self.player_id = player_id
        self.config = config or {}
        self.rules = GameRules.from_config(self.config)
        self.max_attempts = self.config.get("max_transaction_attempts", DEFAULT_MAX_ATTEMPTS)
        self.backoff = self.config.get("transaction_backoff", DEFAULT_BACKOFF)
        self.event_bus = EventBus.get_instance()

        self.state: Optional[GameState] = None
        self.version = 0
        self.selected_card: Optional[Card] = None
        self.selected_table_cards: List[Card] = []

        self._listeners: List[Callable[[GameState], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    # Subscription

    def connect(self) -> None:
        """Start following the room document."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self.room_id, self._on_snapshot)

    def disconnect(self) -> None:
        """Stop following the room document."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def add_listener(self, listener: Callable[[GameState], None]) -> Callable[[], None]:
        """
        Register a callback for every new room state this session sees.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        # Notifications from concurrent writers can arrive out of order
        if snapshot.version <= self.version:
            return
        self.version = snapshot.version
        self.state = GameState.from_dict(snapshot.data)
        logger.debug(
            "Room %s updated to version %d for %s",
            self.room_id,
            snapshot.version,
            self.player_id,
        )
        self.event_bus.emit(
            EngineEventType.STATE_UPDATED,
            {
                "room_id": self.room_id,
                "player_id": self.player_id,
                "version": snapshot.version,
            },
        )
        for listener in list(self._listeners):
            listener(self.state)

    # Transactions

    async def _transact(
        self, transition: Callable[[GameState], GameState]
    ) -> Optional[Tuple[GameState, GameState]]:
        """
        Apply a transition to the current room state, transactionally.

        Returns:
            The (before, after) states of the attempt that committed, or None
            if the transition left the state unchanged
        """
        attempt: List[GameState] = []

        def update(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            attempt.clear()
            if current is None:
                raise RoomNotFoundError(f"Room {self.room_id} not found")
            before = GameState.from_dict(current)
            after = transition(before)
            if after is before:
                return None
            attempt.extend((before, after))
            return after.to_dict()

        snapshot = await run_transaction(
            self.store,
            self.room_id,
            update,
            max_attempts=self.max_attempts,
            backoff=self.backoff,
        )
        if snapshot is not None:
            self._on_snapshot(snapshot)
        if not attempt:
            return None
        return attempt[0], attempt[1]

    async def initialize_room(self) -> GameState:
        """
        Create the room with this player seated, or join it as second player.

        Runs as a single transaction so two players joining at once cannot
        both take the second seat. Rejoining a room this player already sits
        in changes nothing.

        Raises:
            RoomFullError: If two other players already hold the seats
        """
        outcome: List[str] = []

        def update(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            outcome.clear()
            if current is None:
                outcome.append("created")
                return StateTransitionEngine.create_room(
                    self.room_id, self.player_id, rules=self.rules
                ).to_dict()
            state = GameState.from_dict(current)
            joined = StateTransitionEngine.join_room(state, self.player_id)
            if joined is state:
                return None
            outcome.append("joined")
            return joined.to_dict()

        snapshot = await run_transaction(
            self.store,
            self.room_id,
            update,
            max_attempts=self.max_attempts,
            backoff=self.backoff,
        )
        self.connect()
        self._on_snapshot(snapshot)
        state = GameState.from_dict(snapshot.data)

        if outcome == ["created"]:
            logger.info("Player %s created room %s", self.player_id, self.room_id)
            self.event_bus.emit(
                EngineEventType.ROOM_CREATED,
                {"room_id": self.room_id, "player_id": self.player_id},
            )
        elif outcome == ["joined"]:
            logger.info("Player %s joined room %s", self.player_id, self.room_id)
            self.event_bus.emit(
                EngineEventType.PLAYER_JOINED,
                {"room_id": self.room_id, "player_id": self.player_id},
            )
            if state.game_status == GameStatus.ACTIVE:
                self.event_bus.emit(
                    EngineEventType.GAME_STARTED,
                    {"room_id": self.room_id, "players": list(state.player_order)},
                )
        return state

    async def make_move(
        self, played_card: Card, captured_cards: Sequence[Card] = ()
    ) -> Optional[GameState]:
        """
        Submit a move for this player.

        The move is re-applied to the authoritative state inside the
        transaction. If that state no longer lets this player move (the turn
        moved on, or the card is gone) nothing is written and None is
        returned. The local selection is reset either way.

        Returns:
            The committed state, or None if the move was not applied
        """
        try:
            result = await self._transact(
                lambda state: StateTransitionEngine.apply_move(
                    state, self.player_id, played_card, captured_cards
                )
            )
        finally:
            self.reset_selections()

        if result is None:
            logger.warning(
                "Move %s by %s in room %s was not applied",
                played_card,
                self.player_id,
                self.room_id,
            )
            return None

        before, after = result
        self._emit_move_events(before, after)
        return after

    def _emit_move_events(self, before: GameState, after: GameState) -> None:
        move = after.last_move
        self.event_bus.emit(
            EngineEventType.PLAYER_ACTION,
            {
                "room_id": self.room_id,
                "player_id": move.player_id,
                "played_card": str(move.played_card),
                "captured_cards": [str(c) for c in move.captured_cards],
                "sequence": move.sequence,
            },
        )
        if move.captured_cards:
            self.event_bus.emit(
                EngineEventType.CARDS_CAPTURED,
                {
                    "room_id": self.room_id,
                    "player_id": move.player_id,
                    "count": len(move.captured_cards) + 1,
                },
            )
        if after.round_sequence == before.round_sequence and (
            after.current_hand > before.current_hand
        ):
            self.event_bus.emit(
                EngineEventType.HAND_DEALT,
                {"room_id": self.room_id, "hand": after.current_hand},
            )
        if after.round_sequence > before.round_sequence:
            result = after.last_round_score
            self.event_bus.emit(
                EngineEventType.ROUND_ENDED,
                {
                    "room_id": self.room_id,
                    "round_number": result.round_number,
                    "result": result.to_dict(),
                },
            )
        self._emit_game_end(before, after)

    def _emit_game_end(self, before: GameState, after: GameState) -> None:
        if before.is_finished or not after.is_finished:
            return
        self.event_bus.emit(
            EngineEventType.GAME_ENDED,
            {
                "room_id": self.room_id,
                "winner": determine_winner(after),
                "forfeited_by": after.forfeited_by,
                "scores": {pid: p.score for pid, p in after.players.items()},
            },
        )

    async def forfeit(self) -> Optional[GameState]:
        """Concede the game; the opponent wins whatever the scores."""
        result = await self._transact(
            lambda state: StateTransitionEngine.forfeit(state, self.player_id)
        )
        if result is None:
            return None
        before, after = result
        self.event_bus.emit(
            EngineEventType.PLAYER_FORFEITED,
            {"room_id": self.room_id, "player_id": self.player_id},
        )
        self._emit_game_end(before, after)
        return after

    async def record_timeout(self, player_id: Optional[str] = None) -> Optional[GameState]:
        """
        Record that a player's turn expired without a move.

        Args:
            player_id: The player who timed out (this session's player if None)
        """
        target = player_id or self.player_id
        result = await self._transact(
            lambda state: StateTransitionEngine.record_timeout(state, target)
        )
        if result is None:
            return None
        _, after = result
        self.event_bus.emit(
            EngineEventType.PLAYER_TIMEOUT,
            {
                "room_id": self.room_id,
                "player_id": target,
                "consecutive": after.consecutive_timeouts.get(target, 0),
            },
        )
        return after

    async def clear_round_score(self) -> Optional[GameState]:
        """
        Acknowledge the last round summary. Safe to call repeatedly.

        Returns:
            The current room state
        """
        result = await self._transact(StateTransitionEngine.clear_round_score)
        if result is not None:
            self.event_bus.emit(
                EngineEventType.ROUND_SCORE_CLEARED, {"room_id": self.room_id}
            )
        return self.state

    def needs_processing(self, key: str, sequence: int) -> bool:
        """Check the room document for whether this player handled `sequence`."""
        if self.state is None:
            return False
        return StateTransitionEngine.needs_processing(
            self.state, self.player_id, key, sequence
        )

    async def mark_processed(self, key: str, sequence: int) -> bool:
        """
        Record in the room document that this player handled a side effect.

        Stored with the room rather than on the client, so a reload or a
        reconnect does not run the side effect twice.

        Returns:
            True if this call recorded it, False if it was already recorded
        """
        result = await self._transact(
            lambda state: StateTransitionEngine.mark_processed(
                state, self.player_id, key, sequence
            )
        )
        return result is not None

    # Local selection

    def select_card(self, card: Optional[Card]) -> None:
        """Pick a hand card to play; clears any table selection."""
        self.selected_card = card
        self.selected_table_cards = []

    def toggle_table_card(self, card: Card) -> None:
        """Add a table card to the capture selection, or remove it."""
        if card in self.selected_table_cards:
            self.selected_table_cards = [
                c for c in self.selected_table_cards if c != card
            ]
        else:
            self.selected_table_cards = self.selected_table_cards + [card]

    def reset_selections(self) -> None:
        self.selected_card = None
        self.selected_table_cards = []

    def capture_options(self) -> List[List[Card]]:
        """Captures the selected card could make on the last known table."""
        if self.state is None or self.selected_card is None:
            return []
        return legal_captures(self.selected_card, self.state.table_cards)

    def selection_is_legal(self) -> bool:
        """Check the current selection against the last known table."""
        if self.state is None or self.selected_card is None:
            return False
        return is_legal_capture(
            self.selected_card, self.selected_table_cards, self.state.table_cards
        )

    async def play_selection(self) -> Optional[GameState]:
        """
        Submit the selected card and table cards as a move.

        Returns None without writing if the selection is empty or illegal on
        the last known table.
        """
        if not self.selection_is_legal():
            logger.warning(
                "Illegal selection by %s in room %s", self.player_id, self.room_id
            )
            self.reset_selections()
            return None
        return await self.make_move(self.selected_card, self.selected_table_cards)

    # Convenience

    @property
    def my_player(self):
        if self.state is None:
            return None
        return self.state.player(self.player_id)

    @property
    def is_my_turn(self) -> bool:
        return (
            self.state is not None
            and self.state.game_status == GameStatus.ACTIVE
            and self.state.current_player_id == self.player_id
        )

    @property
    def winner(self) -> Optional[str]:
        if self.state is None or self.state.game_status != GameStatus.FINISHED:
            return None
        return determine_winner(self.state)
