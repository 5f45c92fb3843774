"""
Tests for the shuffle validation statistics.
"""

import numpy as np
import pytest
from unittest.mock import patch

from konchina.common.deck import Deck
from konchina.verification import ShuffleReport, ShuffleValidator


@pytest.fixture(scope="module")
def report():
    """A seeded analysis shared by the tests in this module."""
    return ShuffleValidator(seed=7).analyze(samples=2600)


def test_counts_cover_every_sample(report):
    assert isinstance(report, ShuffleReport)
    assert report.position_counts.shape == (52, 52)
    # Every card lands somewhere and every position gets a card, per sample
    assert np.all(report.position_counts.sum(axis=0) == 2600)
    assert np.all(report.position_counts.sum(axis=1) == 2600)


def test_shuffle_is_uniform(report):
    assert report.p_values.shape == (52,)
    assert 0.0 <= report.min_p_value <= 1.0
    assert report.overall_p_value >= report.significance
    assert report.jacks_on_table == 0
    assert report.passed
    assert report.notes == []


def test_report_dict(report):
    data = report.to_dict()
    assert data["samples"] == 2600
    assert data["passed"] is True
    assert "position_counts" not in data


def test_seed_reproduces_counts():
    first = ShuffleValidator(seed=11).position_counts(100)
    second = ShuffleValidator(seed=11).position_counts(100)
    assert np.array_equal(first, second)


def test_unshuffled_deck_fails():
    with patch(
        "konchina.verification.statistics.new_shuffled_deck",
        side_effect=lambda rng=None: Deck().cards,
    ):
        report = ShuffleValidator(seed=1).analyze(samples=520)

    assert report.overall_p_value < report.significance
    assert not report.passed


def test_table_layout_never_shows_a_jack():
    assert ShuffleValidator(seed=3).count_table_jacks(2000) == 0


def test_small_sample_is_flagged():
    report = ShuffleValidator(seed=5).analyze(samples=52)
    assert report.notes


def test_too_few_samples():
    with pytest.raises(ValueError):
        ShuffleValidator().analyze(samples=51)
