"""
Shared pytest fixtures for the postflop solver tests.

Spots are kept tiny (three hands per player) so that trees lay out and
round-trip quickly.
"""

from __future__ import annotations

import numpy as np
import pytest

from postflop.engine.action_tree import ActionTree, BoardState, TreeConfig
from postflop.engine.card_config import CardConfig, range_from_hands
from postflop.engine.cards import str_to_card
from postflop.solvers.game import PostFlopGame

OOP_HANDS = ['AsAh', 'KsKh', '7c7d']
IP_HANDS = ['QsQh', 'JsJh', '8c8d']
RIVER_BOARD = 'Td9d6hQc2s'
TURN_BOARD = 'Td9d6hQc'


def hand(*card_strs: str) -> tuple[int, ...]:
    """Build a card tuple from human-readable card strings.

    Examples:
        >>> hand('As', 'Ac')
        (51, 48)
        >>> hand('7c', '7d', '7h')
        (20, 21, 22)
    """
    return tuple(str_to_card(s) for s in card_strs)


def make_card_config(board: str) -> CardConfig:
    return CardConfig.from_strings(range_from_hands(OOP_HANDS), range_from_hands(IP_HANDS), board)


@pytest.fixture
def river_config() -> CardConfig:
    return make_card_config(RIVER_BOARD)


@pytest.fixture
def turn_config() -> CardConfig:
    return make_card_config(TURN_BOARD)


@pytest.fixture
def river_tree() -> ActionTree:
    """Default river tree: bet half pot, no raises, 100 pot / 100 stack."""
    return ActionTree(TreeConfig())


@pytest.fixture
def river_game(river_config, river_tree) -> PostFlopGame:
    """UNINITIALIZED river game with 9 nodes (4 action nodes of 2 actions)."""
    return PostFlopGame.with_config(river_config, river_tree)


@pytest.fixture
def allocated_game(river_game) -> PostFlopGame:
    river_game.allocate_memory()
    return river_game


@pytest.fixture
def built_game(allocated_game) -> PostFlopGame:
    allocated_game.build()
    return allocated_game


@pytest.fixture
def turn_game(turn_config) -> PostFlopGame:
    """Built turn game; street closes expand into one river child per card."""
    game = PostFlopGame.with_config(turn_config, ActionTree(TreeConfig(initial_state=BoardState.TURN)))
    game.allocate_memory()
    game.build()
    return game


def fill_storage(game: PostFlopGame) -> None:
    """Write distinct, deterministic values into every arena."""
    for arena in game.arenas:
        with arena.locked() as buffer:
            buffer[:] = (np.arange(len(buffer)) % 97 + 1).astype(buffer.dtype)
