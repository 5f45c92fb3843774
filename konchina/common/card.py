"""
This module defines the `Suit`, `Rank`, and `Card` classes, which are used to represent playing cards.

- `Suit`: An enum representing the four suits of a standard deck of playing
cards: Spades, Hearts, Diamonds and Clubs.

- `Rank`: An enum representing the thirteen ranks of a standard deck of playing
cards: Ace, Two through Ten, Jack, Queen and King.

- `Card`: An immutable playing card. A card has a suit and a rank, and derives
its color and its numeric value (used for summation captures) from them.

This module is part of the `konchina` package.
"""

from enum import Enum, unique
from typing import Any, Dict


@unique
class CardColor(Enum):
    """Color of a card, derived from its suit."""

    RED = "red"
    BLACK = "black"

    def __str__(self) -> str:
        return self.value


@unique
class Suit(Enum):
    """
    Enum for suits in a card deck.
    """

    SPADES = "♠"
    HEARTS = "♥"
    DIAMONDS = "♦"
    CLUBS = "♣"

    @property
    def color(self) -> CardColor:
        if self in (Suit.HEARTS, Suit.DIAMONDS):
            return CardColor.RED
        return CardColor.BLACK

    def __str__(self) -> str:
        return self.value


@unique
class Rank(Enum):
    """
    Enum for ranks in a card deck, valued by their printed label.
    """

    ACE = "A"
    TWO = "2"
    THREE = "3"
    FOUR = "4"
    FIVE = "5"
    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"

    @property
    def numeric_value(self) -> int:
        """
        The value used in summation captures.

        Ace counts 1, number cards count their face value and the face cards
        count 0 (they can never take part in a sum).
        """
        if self == Rank.ACE:
            return 1
        if self in (Rank.JACK, Rank.QUEEN, Rank.KING):
            return 0
        return int(self.value)

    @property
    def is_face(self) -> bool:
        return self in (Rank.JACK, Rank.QUEEN, Rank.KING)

    @classmethod
    def from_label(cls, label: str) -> "Rank":
        """Parse a printed label such as "A", "10" or "Q"."""
        try:
            return cls(label.upper())
        except ValueError:
            raise ValueError(f"Invalid rank: {label!r}") from None

    def __str__(self) -> str:
        return self.value


class Card:
    """
    Class representing a playing card.

    Cards are immutable value objects: two cards are equal when they share
    suit and rank.

    >>> card = Card(Suit.DIAMONDS, Rank.TEN)
    >>> print(card)
    10♦
    >>> card.numeric_value
    10
    """

    __slots__ = ("_suit", "_rank")

    def __init__(self, suit: Suit, rank: Rank):
        """
        Initialize a Card instance.

        :param suit: Suit of the card (one of the Suit enums)
        :param rank: Rank of the card (one of the Rank enums)
        """
        if not isinstance(suit, Suit):
            raise TypeError(f"Invalid suit: {suit}")
        if not isinstance(rank, Rank):
            raise TypeError(f"Invalid rank: {rank}")
        object.__setattr__(self, "_suit", suit)
        object.__setattr__(self, "_rank", rank)

    def __setattr__(self, name, value):
        raise AttributeError("Card is immutable")

    def __reduce__(self):
        return (Card, (self._suit, self._rank))

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    @property
    def suit(self) -> Suit:
        return self._suit

    @property
    def rank(self) -> Rank:
        return self._rank

    @property
    def color(self) -> CardColor:
        return self._suit.color

    @property
    def numeric_value(self) -> int:
        return self._rank.numeric_value

    @property
    def label(self) -> str:
        return f"{self._rank.value}{self._suit.value}"

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the card to its document representation.

        :return: A dictionary with suit, value, color and numericValue fields.
        """
        return {
            "suit": self._suit.value,
            "value": self._rank.value,
            "color": self.color.value,
            "numericValue": self.numeric_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Card":
        """
        Build a card from its document representation.

        Only suit and value are read; color and numericValue are derived.
        """
        return cls(Suit(data["suit"]), Rank.from_label(str(data["value"])))

    @classmethod
    def from_label(cls, label: str) -> "Card":
        """
        Parse a label such as "10♦" or "Q♠".

        >>> Card.from_label("2♣")
        Card(Suit.CLUBS, Rank.TWO)
        """
        if len(label) < 2:
            raise ValueError(f"Invalid card label: {label!r}")
        return cls(Suit(label[-1]), Rank.from_label(label[:-1]))

    def __eq__(self, other):
        """
        Checks if this card is equal to another card.

        :param other: The other card to compare to.
        :return: True if the cards have the same rank and suit, False otherwise.
        """
        if isinstance(other, Card):
            return self._rank == other._rank and self._suit == other._suit
        return NotImplemented

    def __hash__(self):
        return hash((self._suit, self._rank))

    def __repr__(self) -> str:
        return f"Card(Suit.{self._suit.name}, Rank.{self._rank.name})"

    def __str__(self) -> str:
        return self.label
