"""
This module contains the Deck class and the dealing helpers used to start a round.

>>> deck = Deck()
>>> deck.size
52
>>> deck.deal()
Card(Suit.SPADES, Rank.ACE)
>>> deck.size
51
"""

import random
from typing import List, Optional, Tuple, Union

from konchina.common.card import Card, Rank, Suit
from konchina.errors import InvariantViolation

TABLE_LAYOUT_SIZE = 4


class Deck:
    """
    A class representing a deck of cards. Cards are dealt from the front.
    """

    # Precompute the default deck
    _default_deck = [
        Card(suit, rank)
        for suit in [Suit.SPADES, Suit.HEARTS, Suit.DIAMONDS, Suit.CLUBS]
        for rank in Rank
    ]

    def __init__(self, cards: Union[List[Card], None] = None):
        """
        Initialize a Deck instance.

        :param cards: A list of Card instances to populate the deck (optional).
                      If not provided, a default deck will be constructed.
        """
        if cards is None:
            self.cards: List[Card] = self.initialize_default_deck()
        else:
            self.cards = cards.copy()

    def initialize_default_deck(self) -> List[Card]:
        """
        Construct a default deck with all possible combinations of suits and ranks.

        :return: A list of Card instances representing the default deck.
        """
        return self._default_deck.copy()

    def shuffle(self, rng: Optional[random.Random] = None):
        """
        Shuffle the cards in the deck.

        `random.shuffle` is a Fisher-Yates shuffle, so every ordering is
        equally likely. Pass a seeded `random.Random` for reproducible decks.
        """
        (rng or random).shuffle(self.cards)
        return self

    def deal(self, num_cards=1) -> Union[Card, List[Card]]:
        """
        Take cards from the front of the deck.

        :return: A card instance or a list of card instances.
        """
        if num_cards > len(self.cards):
            raise InvariantViolation(
                f"Cannot deal {num_cards} cards from a deck of {len(self.cards)}"
            )
        if num_cards == 1:
            return self.cards.pop(0)
        dealt = self.cards[:num_cards]
        del self.cards[:num_cards]
        return dealt

    @property
    def size(self) -> int:
        """
        Return the number of remaining cards in the deck.
        """
        return len(self.cards)

    def is_empty(self) -> bool:
        return len(self.cards) == 0

    def __repr__(self) -> str:
        return f"Deck({[repr(card) for card in self.cards]})"

    def __str__(self) -> str:
        return f"Deck of {len(self.cards)} cards"


def new_shuffled_deck(rng: Optional[random.Random] = None) -> List[Card]:
    """
    Build a full 52-card deck in a uniformly random order.

    Args:
        rng: Optional random generator, for reproducible decks

    Returns:
        A new list holding each (suit, rank) pair exactly once
    """
    return Deck().shuffle(rng).cards


def deal_table_layout(
    deck: List[Card], count: int = TABLE_LAYOUT_SIZE
) -> Tuple[List[Card], List[Card]]:
    """
    Deal the face-up table layout for a new round.

    No jack may be dealt to the table. When the front card is a jack, the
    first non-jack found deeper in the deck is dealt in its place and the jack
    stays at the front of the deck. If the deck holds no non-jack card at all
    the jack is dealt anyway; a full deck always has 48 non-jacks.

    Args:
        deck: The deck to deal from; it is not modified
        count: Number of table cards

    Returns:
        A tuple of (table cards, remaining deck)
    """
    if len(deck) < count:
        raise InvariantViolation(
            f"Cannot lay out {count} table cards from a deck of {len(deck)}"
        )

    remaining = list(deck)
    table: List[Card] = []

    while len(table) < count:
        card = remaining.pop(0)
        if card.rank != Rank.JACK:
            table.append(card)
            continue

        replacement_index = next(
            (i for i, c in enumerate(remaining) if c.rank != Rank.JACK), None
        )
        if replacement_index is None:
            table.append(card)
            continue

        table.append(remaining.pop(replacement_index))
        remaining.insert(0, card)

    return table, remaining
