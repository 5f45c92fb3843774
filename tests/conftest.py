"""
Pytest configuration for tests at the root level.

This module contains pytest fixtures and configuration for testing components.
"""

import random

import pytest
from konchina.common.card import Card
from konchina.events import EventBus


# Reset event bus before each test
@pytest.fixture(scope="function", autouse=True)
def reset_event_bus():
    """Reset the event bus singleton before each test."""
    EventBus._instance = None
    yield
    EventBus._instance = None


@pytest.fixture
def cards():
    """Parse a space-separated list of card labels, e.g. cards("4♠ 5♥")."""

    def parse(labels: str):
        return [Card.from_label(label) for label in labels.split()]

    return parse


@pytest.fixture
def rng():
    """A seeded random generator for reproducible decks."""
    return random.Random(1234)
