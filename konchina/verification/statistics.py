"""
Statistical validation of the Konchina deck engine.

This module checks that shuffled decks are uniformly distributed and that the
table layout never shows a jack, by sampling many decks and testing the
observed card positions against the uniform distribution.
"""

import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import scipy.stats as stats

from konchina.common.card import Rank
from konchina.common.deck import Deck, deal_table_layout, new_shuffled_deck
from konchina.game.constants import DECK_SIZE


@dataclass
class ShuffleReport:
    """
    Results of a shuffle uniformity analysis.

    Attributes:
        samples: Number of decks sampled
        position_counts: 52x52 matrix; entry [card, position] counts how often
            the card landed at that position
        p_values: Chi-square p-value for each card's position distribution
        min_p_value: Smallest per-card p-value
        overall_p_value: Chi-square p-value over the whole matrix
        jacks_on_table: Table layouts that showed a jack
        significance: Significance level used for `passed`
    """

    samples: int
    position_counts: np.ndarray
    p_values: np.ndarray
    min_p_value: float
    overall_p_value: float
    jacks_on_table: int = 0
    significance: float = 0.001
    notes: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        """Uniform at the chosen significance and no jack on any table."""
        return self.overall_p_value >= self.significance and self.jacks_on_table == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "samples": self.samples,
            "min_p_value": self.min_p_value,
            "overall_p_value": self.overall_p_value,
            "jacks_on_table": self.jacks_on_table,
            "significance": self.significance,
            "passed": self.passed,
            "notes": list(self.notes),
        }


class ShuffleValidator:
    """
    Validates the statistical properties of the shuffler and the table deal.
    """

    def __init__(self, seed: Optional[int] = None):
        """
        Initialize the validator.

        Args:
            seed: Optional seed, for reproducible reports
        """
        self.rng = random.Random(seed)
        self._index = {card: i for i, card in enumerate(Deck().cards)}

    def position_counts(self, samples: int) -> np.ndarray:
        """
        Shuffle `samples` decks and count where each card lands.

        Returns:
            A 52x52 integer matrix indexed by [card, position]
        """
        counts = np.zeros((DECK_SIZE, DECK_SIZE), dtype=np.int64)
        positions = np.arange(DECK_SIZE)
        for _ in range(samples):
            deck = new_shuffled_deck(self.rng)
            cards = np.fromiter((self._index[c] for c in deck), dtype=np.int64)
            counts[cards, positions] += 1
        return counts

    def count_table_jacks(self, samples: int) -> int:
        """Deal `samples` table layouts and count those showing a jack."""
        jacks = 0
        for _ in range(samples):
            table, _ = deal_table_layout(new_shuffled_deck(self.rng))
            if any(card.rank == Rank.JACK for card in table):
                jacks += 1
        return jacks

    def analyze(self, samples: int = 5200, significance: float = 0.001) -> ShuffleReport:
        """
        Run the full analysis.

        Each card should land at each position with probability 1/52. A
        chi-square test per card (and over the whole matrix) compares the
        observed counts with that expectation.

        Args:
            samples: Number of decks to shuffle
            significance: Level below which the overall p-value fails

        Returns:
            A ShuffleReport with the counts and test results
        """
        if samples < DECK_SIZE:
            raise ValueError(f"Need at least {DECK_SIZE} samples, got {samples}")

        counts = self.position_counts(samples)
        expected = samples / DECK_SIZE

        p_values = np.array(
            [stats.chisquare(row, np.full(DECK_SIZE, expected)).pvalue for row in counts]
        )
        chi2 = float(((counts - expected) ** 2 / expected).sum())
        dof = (DECK_SIZE - 1) ** 2
        overall = float(stats.chi2.sf(chi2, dof))

        report = ShuffleReport(
            samples=samples,
            position_counts=counts,
            p_values=p_values,
            min_p_value=float(p_values.min()),
            overall_p_value=overall,
            jacks_on_table=self.count_table_jacks(max(1, samples // 10)),
            significance=significance,
        )
        if expected < 5:
            report.notes.append(
                "Expected count per cell is below 5; chi-square results are unreliable"
            )
        return report
