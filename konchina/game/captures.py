"""
Capture rules for Konchina.

A played card can take table cards in three ways:

* a jack takes the whole table,
* any card takes a single table card of the same rank,
* a number card (ace counts one) takes any group of number cards whose values
  add up to its own value.

`legal_captures` lists every choice open to the player so a client can offer
them, and `is_legal_capture` checks a selection the player made by hand. The
two agree: every listed combination is legal and every non-empty legal
selection is listed.
"""

from collections import Counter
from typing import List, Sequence

from konchina.common.card import Card
from konchina.game.constants import CAPTURE_ALL_RANK


def _summation_captures(cards: Sequence[Card], target: int) -> List[List[Card]]:
    """
    Find every subset of `cards` whose numeric values sum to `target`.

    Plain include/exclude backtracking. Cards with equal values are distinct
    elements, so two threes can both appear in one combination. The table
    rarely holds more than a dozen cards, so the exponential worst case is
    acceptable.
    """
    results: List[List[Card]] = []
    path: List[Card] = []

    def backtrack(index: int, total: int) -> None:
        if total == target and path:
            results.append(list(path))
            return
        if total > target or index >= len(cards):
            return

        backtrack(index + 1, total)

        path.append(cards[index])
        backtrack(index + 1, total + cards[index].numeric_value)
        path.pop()

    backtrack(0, 0)
    return results


def legal_captures(played_card: Card, table_cards: Sequence[Card]) -> List[List[Card]]:
    """
    Enumerate every capture the played card could make.

    Args:
        played_card: The card being played from hand
        table_cards: Cards currently face up on the table

    Returns:
        A list of alternative combinations; empty when nothing can be taken
    """
    if played_card.rank == CAPTURE_ALL_RANK:
        return [list(table_cards)] if table_cards else []

    combinations: List[List[Card]] = [
        [card] for card in table_cards if card.rank == played_card.rank
    ]

    target = played_card.numeric_value
    if target > 0:
        number_cards = [card for card in table_cards if card.numeric_value > 0]
        for combo in _summation_captures(number_cards, target):
            # A lone card summing to the target has the same rank and is
            # already offered as a single match.
            if len(combo) > 1:
                combinations.append(combo)

    return combinations


def is_legal_capture(
    played_card: Card, chosen_cards: Sequence[Card], table_cards: Sequence[Card]
) -> bool:
    """
    Check whether a hand-picked selection of table cards may be captured.

    An empty selection is always legal: the card is laid on the table.

    Args:
        played_card: The card being played from hand
        chosen_cards: The table cards the player selected
        table_cards: Cards currently face up on the table

    Returns:
        True if the selection is a legal capture
    """
    if not chosen_cards:
        return True

    chosen = Counter(chosen_cards)
    if any(count > 1 for count in chosen.values()):
        return False
    table = set(table_cards)
    if not all(card in table for card in chosen):
        return False

    if played_card.rank == CAPTURE_ALL_RANK:
        return len(chosen) == len(table)

    if len(chosen_cards) == 1:
        return chosen_cards[0].rank == played_card.rank

    if any(card.numeric_value <= 0 for card in chosen_cards):
        return False
    return sum(card.numeric_value for card in chosen_cards) == played_card.numeric_value


def has_capture(played_card: Card, table_cards: Sequence[Card]) -> bool:
    """Return True if the played card can take anything from the table."""
    return bool(legal_captures(played_card, table_cards))
