"""
Tests for room sessions and the transaction runner.

Two sessions share one in-memory store, the way two clients share one room
document. Crafted room states are written straight into the store so the
hands on the table are known.
"""

import asyncio

import pytest
from unittest.mock import MagicMock, patch

from konchina.common.card import Card
from konchina.errors import (
    RoomFullError,
    RoomNotFoundError,
    TransactionAbortedError,
    VersionConflictError,
)
from konchina.events import EngineEventType, EventBus
from konchina.game.state import GameRules, GameState, GameStatus, PlayerState
from konchina.game.transitions import StateTransitionEngine
from konchina.sync import InMemoryDocumentStore, RoomSession, Snapshot, run_transaction


def make_state(hand1, hand2, table, deck=(), score1=0, score2=0, current="p1"):
    return GameState(
        room_id="room",
        table_cards=list(table),
        deck=list(deck),
        players={
            "p1": PlayerState(id="p1", hand=list(hand1), score=score1, is_turn=current == "p1"),
            "p2": PlayerState(id="p2", hand=list(hand2), score=score2, is_turn=current == "p2"),
        },
        player_order=("p1", "p2"),
        current_player_id=current,
        game_status=GameStatus.ACTIVE,
        consecutive_timeouts={"p1": 0, "p2": 0},
    )


def install(store, state):
    """Overwrite the room document with a crafted state."""
    snapshot = store.get(state.room_id)
    store.compare_and_swap(
        state.room_id, snapshot.version if snapshot else 0, state.to_dict()
    )


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def events():
    """Record every event published on the bus as (name, data) pairs."""
    recorded = []
    EventBus.get_instance().on_any(recorded.append)
    return recorded


def names(events):
    return [name for name, _ in events]


@pytest.fixture
def sessions(store):
    """Two connected sessions, one per player, on the same room."""
    first = RoomSession(store, "room", "p1")
    second = RoomSession(store, "room", "p2")
    return first, second


def connect(*sessions):
    for session in sessions:
        session.connect()


class TestRunTransaction:
    """Tests for the optimistic transaction runner."""

    @pytest.mark.asyncio
    async def test_creates_document(self, store):
        snapshot = await run_transaction(store, "doc", lambda current: {"n": 1})
        assert snapshot.version == 1
        assert store.get("doc").data == {"n": 1}

    @pytest.mark.asyncio
    async def test_declined_update_writes_nothing(self, store):
        store.compare_and_swap("doc", 0, {"n": 1})

        snapshot = await run_transaction(store, "doc", lambda current: None)

        assert snapshot.version == 1
        assert store.get("doc").version == 1

    @pytest.mark.asyncio
    async def test_retries_after_conflict(self, store, events):
        store.compare_and_swap("doc", 0, {"n": 1})
        real = store.compare_and_swap
        seen = []

        def racing(doc_id, version, data):
            if not seen:
                # Another writer commits between our read and our write
                real(doc_id, version, {"n": 100})
            seen.append(version)
            return real(doc_id, version, data)

        def increment(current):
            return {"n": current["n"] + 1}

        with patch.object(store, "compare_and_swap", side_effect=racing):
            snapshot = await run_transaction(store, "doc", increment, backoff=0)

        assert seen == [1, 2]
        assert snapshot.version == 3
        assert store.get("doc").data == {"n": 101}
        assert names(events) == [EngineEventType.TRANSACTION_RETRY.name]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, store):
        store.compare_and_swap("doc", 0, {"n": 1})
        update = MagicMock(return_value={"n": 2})

        with patch.object(
            store, "compare_and_swap", side_effect=VersionConflictError("doc", 1, 2)
        ) as cas:
            with pytest.raises(TransactionAbortedError):
                await run_transaction(store, "doc", update, max_attempts=3, backoff=0)

        assert cas.call_count == 3
        assert update.call_count == 3

    @pytest.mark.asyncio
    async def test_update_errors_propagate(self, store):
        def explode(current):
            raise RoomFullError("full")

        with pytest.raises(RoomFullError):
            await run_transaction(store, "doc", explode)
        assert store.get("doc") is None


class TestInitializeRoom:
    """Tests for creating and joining rooms through sessions."""

    @pytest.mark.asyncio
    async def test_create_then_join(self, sessions, events):
        first, second = sessions

        created = await first.initialize_room()
        assert created.game_status == GameStatus.WAITING
        assert first.state.player_order == ("p1",)

        joined = await second.initialize_room()
        assert joined.game_status == GameStatus.ACTIVE
        assert joined.player_order == ("p1", "p2")

        # The first session follows the room through its subscription
        assert first.state.game_status == GameStatus.ACTIVE
        assert first.version == second.version == 2
        assert first.is_my_turn
        assert not second.is_my_turn

        assert names(events).count(EngineEventType.ROOM_CREATED.name) == 1
        assert names(events).count(EngineEventType.PLAYER_JOINED.name) == 1
        assert names(events).count(EngineEventType.GAME_STARTED.name) == 1

    @pytest.mark.asyncio
    async def test_room_id_is_normalized(self, store):
        first = RoomSession(store, "  Kitchen ", "p1")
        second = RoomSession(store, "KITCHEN", "p2")

        await first.initialize_room()
        state = await second.initialize_room()

        assert first.room_id == "kitchen"
        assert state.is_full
        assert store.get("kitchen").version == 2

    @pytest.mark.asyncio
    async def test_rejoin_changes_nothing(self, store, sessions, events):
        first, second = sessions
        await first.initialize_room()
        await second.initialize_room()
        events.clear()

        state = await first.initialize_room()

        assert state.player_order == ("p1", "p2")
        assert store.get("room").version == 2
        assert EngineEventType.PLAYER_JOINED.name not in names(events)

    @pytest.mark.asyncio
    async def test_third_player_rejected(self, store, sessions):
        first, second = sessions
        await first.initialize_room()
        await second.initialize_room()

        with pytest.raises(RoomFullError):
            await RoomSession(store, "room", "p3").initialize_room()

    @pytest.mark.asyncio
    async def test_join_after_creator_forfeits(self, store, sessions, events):
        first, second = sessions
        await first.initialize_room()
        await first.forfeit()
        events.clear()

        state = await second.initialize_room()

        assert state.game_status == GameStatus.FINISHED
        assert state.player_order == ("p1",)
        assert store.get("room").version == 2
        assert EngineEventType.PLAYER_JOINED.name not in names(events)
        assert EngineEventType.GAME_STARTED.name not in names(events)

    @pytest.mark.asyncio
    async def test_concurrent_joins_seat_one_player(self, store):
        await RoomSession(store, "room", "p1").initialize_room()

        results = await asyncio.gather(
            RoomSession(store, "room", "p2").initialize_room(),
            RoomSession(store, "room", "p3").initialize_room(),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], RoomFullError)
        assert len(GameState.from_dict(store.get("room").data).players) == 2

    @pytest.mark.asyncio
    async def test_config_sets_rules(self, store):
        session = RoomSession(
            store,
            "room",
            "p1",
            config={"win_threshold": 21, "max_transaction_attempts": 2},
        )
        state = await session.initialize_room()

        assert session.max_attempts == 2
        assert state.rules == GameRules(win_threshold=21)


class TestMoves:
    """Tests for submitting moves."""

    @pytest.mark.asyncio
    async def test_capture_move(self, store, sessions, events, cards):
        first, second = sessions
        install(
            store,
            make_state(cards("4♠ K♥"), cards("2♥ 3♥"), cards("4♥ 9♣"), deck=cards("5♦ 6♦")),
        )
        connect(first, second)

        state = await first.make_move(Card.from_label("4♠"), cards("4♥"))

        assert state.table_cards == cards("9♣")
        assert first.version == second.version == 2
        assert second.is_my_turn
        assert second.state.last_move.key == "p1-1"

        action = dict(events)[EngineEventType.PLAYER_ACTION.name]
        assert action["captured_cards"] == ["4♥"]
        assert dict(events)[EngineEventType.CARDS_CAPTURED.name]["count"] == 2

    @pytest.mark.asyncio
    async def test_out_of_turn_move_is_dropped(self, store, sessions, cards):
        first, second = sessions
        install(store, make_state(cards("4♠"), cards("2♥"), cards("9♣"), deck=cards("5♦")))
        connect(first, second)
        second.select_card(Card.from_label("2♥"))

        assert await second.make_move(Card.from_label("2♥")) is None

        assert store.get("room").version == 1
        assert second.selected_card is None

    @pytest.mark.asyncio
    async def test_double_submit_applies_once(self, store, sessions, cards):
        first, _ = sessions
        install(
            store, make_state(cards("4♠ 5♠"), cards("2♥"), cards("9♣"), deck=cards("5♦"))
        )
        connect(first)

        results = await asyncio.gather(
            first.make_move(Card.from_label("4♠")),
            first.make_move(Card.from_label("5♠")),
        )

        assert sum(1 for r in results if r is not None) == 1
        assert store.get("room").version == 2
        assert GameState.from_dict(store.get("room").data).move_sequence == 1

    @pytest.mark.asyncio
    async def test_move_retried_against_newer_state(self, store, sessions, events, cards):
        first, _ = sessions
        install(store, make_state(cards("4♠"), cards("2♥"), cards("9♣"), deck=cards("5♦")))
        connect(first)
        real = store.compare_and_swap
        raced = []

        def racing(doc_id, version, data):
            if not raced:
                raced.append(version)
                current = GameState.from_dict(store.get(doc_id).data)
                real(
                    doc_id,
                    version,
                    StateTransitionEngine.record_timeout(current, "p1").to_dict(),
                )
            return real(doc_id, version, data)

        first.backoff = 0
        with patch.object(store, "compare_and_swap", side_effect=racing):
            state = await first.make_move(Card.from_label("4♠"))

        assert state.move_sequence == 1
        assert state.consecutive_timeouts["p1"] == 0
        assert store.get("room").version == 3
        assert EngineEventType.TRANSACTION_RETRY.name in names(events)

    @pytest.mark.asyncio
    async def test_missing_room(self, store, cards):
        session = RoomSession(store, "ghost", "p1")
        session.select_card(Card.from_label("4♠"))

        with pytest.raises(RoomNotFoundError):
            await session.make_move(Card.from_label("4♠"))
        assert session.selected_card is None

    @pytest.mark.asyncio
    async def test_hand_dealt_event(self, store, sessions, events, cards):
        first, _ = sessions
        install(
            store,
            make_state(
                cards("9♣"), [], cards("Q♦"), deck=cards("A♠ 2♠ 3♠ 4♠ A♥ 2♥ 3♥ 4♥")
            ),
        )
        connect(first)

        state = await first.make_move(Card.from_label("9♣"))

        assert state.current_hand == 2
        assert dict(events)[EngineEventType.HAND_DEALT.name]["hand"] == 2
        assert EngineEventType.ROUND_ENDED.name not in names(events)

    @pytest.mark.asyncio
    async def test_round_and_game_end(self, store, sessions, events, cards):
        first, second = sessions
        install(store, make_state(cards("3♠"), [], cards("5♥"), score1=15, score2=14))
        connect(first, second)

        state = await first.make_move(Card.from_label("3♠"))

        assert state.game_status == GameStatus.FINISHED
        assert first.winner == second.winner == "p1"

        ended = dict(events)
        assert ended[EngineEventType.ROUND_ENDED.name]["round_number"] == 1
        assert ended[EngineEventType.GAME_ENDED.name]["winner"] == "p1"
        assert ended[EngineEventType.GAME_ENDED.name]["scores"] == {"p1": 17, "p2": 14}


class TestSessionActions:
    """Tests for forfeits, timeouts and acknowledgements."""

    @pytest.mark.asyncio
    async def test_forfeit(self, store, sessions, events, cards):
        first, second = sessions
        install(store, make_state(cards("3♠"), cards("4♠"), []))
        connect(first, second)

        state = await first.forfeit()

        assert state.forfeited_by == "p1"
        assert second.winner == "p2"
        assert names(events).count(EngineEventType.PLAYER_FORFEITED.name) == 1
        assert dict(events)[EngineEventType.GAME_ENDED.name]["forfeited_by"] == "p1"

        assert await second.forfeit() is None

    @pytest.mark.asyncio
    async def test_record_timeout(self, store, sessions, events, cards):
        first, second = sessions
        install(store, make_state(cards("3♠"), cards("4♠"), []))
        connect(first, second)

        await second.record_timeout("p1")
        state = await first.record_timeout()

        assert state.consecutive_timeouts["p1"] == 2
        assert dict(events)[EngineEventType.PLAYER_TIMEOUT.name]["consecutive"] == 2
        # Not p2's turn, so nothing is recorded
        assert await second.record_timeout() is None

    @pytest.mark.asyncio
    async def test_clear_round_score(self, store, sessions, events, cards):
        first, second = sessions
        install(store, make_state(cards("3♠"), [], cards("5♥")))
        connect(first, second)
        await first.make_move(Card.from_label("3♠"))
        assert second.state.last_round_score is not None

        await second.clear_round_score()
        state = await first.clear_round_score()

        assert state.last_round_score is None
        assert names(events).count(EngineEventType.ROUND_SCORE_CLEARED.name) == 1

    @pytest.mark.asyncio
    async def test_mark_processed_once(self, store, sessions, cards):
        first, second = sessions
        install(store, make_state(cards("3♠"), cards("4♠"), []))
        connect(first, second)

        assert first.needs_processing("round_end", 1)
        assert await first.mark_processed("round_end", 1)
        assert not await first.mark_processed("round_end", 1)
        assert not first.needs_processing("round_end", 1)
        # Each player keeps its own record
        assert second.needs_processing("round_end", 1)


class TestLocalState:
    """Tests for the selection and subscription handling kept by a session."""

    @pytest.mark.asyncio
    async def test_play_selection(self, store, sessions, cards):
        first, _ = sessions
        install(
            store,
            make_state(cards("9♠ K♥"), cards("2♥"), cards("4♥ 5♣ Q♦"), deck=cards("5♦")),
        )
        connect(first)

        first.select_card(Card.from_label("9♠"))
        assert first.capture_options() == [cards("4♥ 5♣")]

        first.toggle_table_card(Card.from_label("4♥"))
        assert not first.selection_is_legal()
        first.toggle_table_card(Card.from_label("5♣"))
        assert first.selection_is_legal()

        state = await first.play_selection()

        assert state.table_cards == cards("Q♦")
        assert first.selected_card is None
        assert first.selected_table_cards == []

    @pytest.mark.asyncio
    async def test_illegal_selection_is_not_sent(self, store, sessions, cards):
        first, _ = sessions
        install(store, make_state(cards("9♠"), cards("2♥"), cards("4♥"), deck=cards("5♦")))
        connect(first)

        first.select_card(Card.from_label("9♠"))
        first.toggle_table_card(Card.from_label("4♥"))

        assert await first.play_selection() is None
        assert store.get("room").version == 1
        assert first.selected_table_cards == []

    def test_toggle_table_card(self, store):
        session = RoomSession(store, "room", "p1")
        card = Card.from_label("4♥")

        session.toggle_table_card(card)
        assert session.selected_table_cards == [card]
        session.toggle_table_card(card)
        assert session.selected_table_cards == []

    def test_older_snapshots_are_ignored(self, store, cards):
        session = RoomSession(store, "room", "p1")
        newer = make_state(cards("3♠"), cards("4♠"), [])
        older = make_state(cards("3♠ 5♠"), cards("4♠"), [])

        session._on_snapshot(Snapshot("room", 3, newer.to_dict()))
        session._on_snapshot(Snapshot("room", 2, older.to_dict()))

        assert session.version == 3
        assert session.my_player.hand == cards("3♠")

    def test_listener_and_disconnect(self, store, cards):
        session = RoomSession(store, "room", "p1")
        listener = MagicMock()
        session.add_listener(listener)
        session.connect()

        install(store, make_state(cards("3♠"), cards("4♠"), []))
        listener.assert_called_once()
        assert isinstance(listener.call_args.args[0], GameState)

        session.disconnect()
        install(store, make_state(cards("5♠"), cards("4♠"), []))
        listener.assert_called_once()
        assert session.version == 1
